from ipaddress import IPv4Address, IPv6Address
from typing import TextIO

from pingsim.sim.logger import ModelLogger
from .application import PingApplication
from .config import Config, NetworkParams, is_multiple_destination
from .network import Responder, SimulatedNetwork, SimulatedTransport


LOCAL_V4 = IPv4Address("10.0.0.1")
LOCAL_V6 = IPv6Address("2001:db8::1")
GATEWAY_V4 = IPv4Address("10.0.0.254")
GATEWAY_V6 = IPv6Address("2001:db8::fe")
# Адреса ответчиков на групповой или широковещательный адрес
RESPONDERS_V4 = IPv4Address("10.0.1.0")
RESPONDERS_V6 = IPv6Address("2001:db8:1::")


class Model:
    """
    Узел с одним или несколькими ping-приложениями и имитируемая сеть
    с ответчиками.
    """
    def __init__(
        self,
        config: Config,
        network_params: NetworkParams,
        logger: ModelLogger,
        stop_time: float | None = None,
        num_apps: int = 1,
        out: TextIO | None = None,
    ):
        self.config = config
        self.network_params = network_params
        destination = config.destination

        gateway = None
        if network_params.unreachable and destination is not None:
            gateway = GATEWAY_V4 if destination.version == 4 else GATEWAY_V6
        self.network = SimulatedNetwork(seed=network_params.seed,
                                        gateway=gateway)
        if destination is not None and not network_params.unreachable:
            self._add_responders(destination)

        # Приложения одного узла, у каждого свой сокет
        self.transports = [
            SimulatedTransport(self.network, (LOCAL_V4, LOCAL_V6))
            for _ in range(num_apps)
        ]
        self.apps = [
            PingApplication(
                config=config,
                transport=transport,
                node_id=0,
                app_index=index,
                stop_time=stop_time,
                out=out,
            )
            for index, transport in enumerate(self.transports)
        ]

        logger.debug("Model was successfully initialized: %d app(s), "
                     "%d responder(s)", len(self.apps),
                     len(self.network.responders))

    def _add_responders(self, destination: IPv4Address | IPv6Address):
        params = self.network_params
        if is_multiple_destination(destination):
            base = RESPONDERS_V4 if destination.version == 4 else RESPONDERS_V6
            addresses = [base + i + 1 for i in range(params.num_responders)]
            groups = (destination,)
        else:
            addresses = [destination]
            groups = ()
        for address in addresses:
            self.network.add_responder(Responder(
                address=address,
                delay=params.delay,
                jitter=params.jitter,
                loss_prob=params.loss_prob,
                duplicate_prob=params.duplicate_prob,
                hop_limit=params.hop_limit,
                groups=groups,
            ))
