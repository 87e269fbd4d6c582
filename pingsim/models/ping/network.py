from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv6Address
from typing import Iterable

import numpy as np

from pingsim.sim import Simulator
from .packets import (
    IPPROTO_ICMP, IPPROTO_ICMPV6, IPV6_EXT_ROUTING, build_echo_reply,
    build_error, parse_echo_request, parse_routing_header
)
from .transport import (
    Address, InboundPacket, ReceiveCallback, Transport, TransportError
)


BROADCAST_V4 = IPv4Address("255.255.255.255")


@dataclass
class Responder:
    """Узел, который отвечает на ECHO-запросы."""
    address: Address
    delay: float = 0.01            # задержка в одну сторону
    jitter: float = 0.0            # среднее экспоненциальной добавки к RTT
    loss_prob: float = 0.0
    duplicate_prob: float = 0.0
    duplicate_delay: float = 0.005
    hop_limit: int = 64
    groups: tuple[Address, ...] = ()


@dataclass
class Route:
    """Запрос, прошедший через узлы loose source routing."""
    source: Address
    destination: Address
    waypoints: tuple[IPv6Address, ...]


class SimulatedNetwork:
    """
    Имитация сети для ping: доставляет запросы ответчикам и возвращает
    ответы всем открытым транспортам узла-отправителя (как raw-сокетам).

    Если для адреса назначения нет ни одного ответчика и задан
    `gateway`, шлюз присылает Destination Unreachable.
    """
    def __init__(self, seed: int | None = None,
                 gateway: Address | None = None):
        self._rng = np.random.default_rng(seed)
        self.gateway = gateway
        self.responders: list[Responder] = []
        self.routes: list[Route] = []
        self._transports: list["SimulatedTransport"] = []

    def add_responder(self, responder: Responder) -> Responder:
        self.responders.append(responder)
        return responder

    def attach(self, transport: "SimulatedTransport") -> None:
        if transport not in self._transports:
            self._transports.append(transport)

    def detach(self, transport: "SimulatedTransport") -> None:
        if transport in self._transports:
            self._transports.remove(transport)

    def responders_for(self, destination: Address) -> list[Responder]:
        if destination == BROADCAST_V4:
            return [r for r in self.responders if r.address.version == 4]
        return [r for r in self.responders
                if r.address == destination or destination in r.groups]

    def transmit(self, sim: Simulator, source: Address, destination: Address,
                 protocol: int, data: bytes) -> None:
        """Передать запрос от `source` и запланировать ответы."""
        if protocol == IPV6_EXT_ROUTING:
            waypoints, data = parse_routing_header(data)
            self.routes.append(Route(source, destination, tuple(waypoints)))

        request = parse_echo_request(destination.version, data)
        if request is None:
            sim.logger.debug("network: not an echo request, dropped")
            return
        identifier, sequence, payload = request

        targets = self.responders_for(destination)
        if not targets:
            if self.gateway is not None:
                error = InboundPacket(
                    source=self.gateway, hop_limit=64,
                    data=build_error(destination.version, True, data[:28]),
                )
                sim.schedule(0.0, self.deliver, (source, error),
                             msg=f"{self.gateway} --(unreachable)--> {source}")
            return

        for responder in targets:
            if self._rng.random() < responder.loss_prob:
                sim.logger.debug("network: lost seq=%d to %s",
                                 sequence, responder.address)
                continue
            rtt = 2 * responder.delay
            if responder.jitter > 0:
                rtt += self._rng.exponential(responder.jitter)
            reply = InboundPacket(
                source=responder.address,
                hop_limit=responder.hop_limit,
                data=build_echo_reply(
                    destination.version, identifier, sequence, payload),
            )
            sim.schedule(rtt, self.deliver, (source, reply),
                         msg=f"{responder.address} --({sequence})--> {source}")
            if self._rng.random() < responder.duplicate_prob:
                sim.schedule(rtt + responder.duplicate_delay, self.deliver,
                             (source, reply))

    def deliver(self, sim: Simulator, destination: Address,
                packet: InboundPacket) -> None:
        """Отдать пакет всем открытым транспортам узла `destination`."""
        for transport in list(self._transports):
            if destination in transport.addresses:
                transport.receive(sim, packet)


class SimulatedTransport(Transport):
    """
    Raw ICMP-сокет узла в SimulatedNetwork.

    `fail_sends` - номера попыток отправки (с нуля), которые транспорт
    отклонит, возвращая -1.
    """
    def __init__(self, network: SimulatedNetwork,
                 addresses: Iterable[Address],
                 fail_sends: Iterable[int] = (),
                 fail_open: bool = False):
        self.network = network
        self.addresses: tuple[Address, ...] = tuple(addresses)
        self.fail_sends = set(fail_sends)
        self.fail_open = fail_open
        self.bound: Address | None = None
        self.sent: list[tuple[bytes, Address, int]] = []
        self._version: int | None = None
        self._protocol = 0
        self._on_receive: ReceiveCallback | None = None
        self._num_send_calls = 0
        self._num_protocol_changes = 0

    @property
    def is_open(self) -> bool:
        return self._on_receive is not None

    @property
    def protocol(self) -> int:
        return self._protocol

    @property
    def num_protocol_changes(self) -> int:
        return self._num_protocol_changes

    def open(self, version: int, on_receive: ReceiveCallback) -> None:
        if self.fail_open:
            raise TransportError("can not create raw socket")
        if not any(a.version == version for a in self.addresses):
            raise TransportError(f"node has no IPv{version} address")
        self._version = version
        self._protocol = IPPROTO_ICMP if version == 4 else IPPROTO_ICMPV6
        self._on_receive = on_receive
        self.network.attach(self)

    def bind(self, address: Address) -> int:
        if address not in self.addresses:
            return -1
        self.bound = address
        return 0

    def set_protocol(self, protocol: int) -> None:
        self._protocol = protocol
        self._num_protocol_changes += 1

    def _source_for(self, destination: Address) -> Address:
        if self.bound is not None:
            return self.bound
        return next(a for a in self.addresses
                    if a.version == destination.version)

    def send(self, sim: Simulator, data: bytes, destination: Address,
             tos: int = 0) -> int:
        attempt = self._num_send_calls
        self._num_send_calls += 1
        if not self.is_open or attempt in self.fail_sends:
            return -1
        self.sent.append((data, destination, tos))
        self.network.transmit(sim, self._source_for(destination),
                              destination, self._protocol, data)
        return len(data)

    def receive(self, sim: Simulator, packet: InboundPacket) -> None:
        """Прием пакета из сети: отбор по семейству и протоколу сокета."""
        if not self.is_open or packet.version != self._version:
            return
        expected = IPPROTO_ICMP if self._version == 4 else IPPROTO_ICMPV6
        if self._protocol != expected:
            sim.logger.debug("transport: protocol %d does not match, "
                             "packet from %s dropped",
                             self._protocol, packet.source)
            return
        self._on_receive(sim, packet)

    def close(self) -> None:
        self.network.detach(self)
        self._on_receive = None
