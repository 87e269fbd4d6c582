from enum import Enum
from ipaddress import IPv4Address, IPv6Address
import sys
from typing import TextIO

from pingsim.sim import EventId, ModelLogger, Simulator, TraceSource
from .config import Config, VerboseMode, is_multiple_destination
from .ledger import ProbeLedger
from .objects import ProbeRecord, Report
from .packets import (
    IPPROTO_ICMPV6, IPV6_EXT_ROUTING, PING_ID, SIGNATURE_SIZE, EchoReply,
    DestinationUnreachable, TimeExceeded, build_echo_request, build_payload,
    build_routing_header, decode, read_signature
)
from .report import (
    build_report, format_reply, format_report, format_startup, to_milliseconds
)
from .stats import RttStats
from .transport import InboundPacket, Transport, TransportError


class PingStartError(RuntimeError):
    """Приложение не может стартовать (ошибка неустранима)."""
    ...


def make_signature(node_id: int, app_index: int) -> int:
    """Сигнатура приложения: номер узла в старших 32 битах, индекс
    приложения на узле - в младших."""
    return ((node_id << 32) + app_index) & 0xFFFF_FFFF_FFFF_FFFF


class PingApplication:
    """
    Ping: периодически отправляет ECHO-запросы на адрес назначения,
    сопоставляет ответы с запросами, считает статистику RTT и в конце
    публикует отчет.

    Обработчики (`start`, `send`, `receive`, `stop`) вызываются ядром
    симуляции и первым аргументом получают Simulator.

    Наблюдения публикуются через источники трассировки:

    - tx_trace(sequence, probe) - транспорт принял запрос;
    - rtt_trace(sequence, delta) - первый ответ на запрос, delta в секундах;
    - drop_trace(reason, source) - Destination Unreachable / Time Exceeded;
    - report_trace(report) - итоговый отчет, ровно один раз.
    """

    class State(Enum):
        IDLE = 0
        RUNNING = 1
        STOPPING = 2
        STOPPED = 3

    def __init__(
        self,
        config: Config,
        transport: Transport,
        node_id: int = 0,
        app_index: int = 0,
        stop_time: float | None = None,
        out: TextIO | None = None,
    ):
        self.config = config
        self.node_id = node_id
        self.app_index = app_index
        self.stop_time = stop_time
        self._transport = transport
        self._out = out

        # Traces:
        self.tx_trace = TraceSource("Tx")
        self.rtt_trace = TraceSource("Rtt")
        self.drop_trace = TraceSource("Drop")
        self.report_trace = TraceSource("Report")

        # State:
        self.state = PingApplication.State.IDLE
        self.signature: int | None = None
        self.ledger = ProbeLedger()
        self.rtt = RttStats()
        self.report: Report | None = None
        self._logger: ModelLogger | None = None
        self._seq = 0
        self._started = 0.0
        self._multiple_destinations = False
        self._transport_open = False
        self._reported = False
        self._next_event: EventId | None = None
        self._stop_event: EventId | None = None
        self._early_stop_event: EventId | None = None

        # Statistics:
        self.num_received = 0
        self.num_duplicate = 0

    def __str__(self):
        return f"n{self.node_id}a{self.app_index}"

    @property
    def sequence(self) -> int:
        """Номер следующего запроса."""
        return self._seq

    def _print(self, line: str) -> None:
        print(line, file=self._out or sys.stdout)

    def _log(self, sim: Simulator) -> ModelLogger:
        if self._logger is None:
            self._logger = sim.logger.child(str(self))
        return self._logger

    # ------------------------------------------------------------------
    # Запуск и отправка запросов
    # ------------------------------------------------------------------
    def start(self, sim: Simulator) -> None:
        """
        Проверить настройки, открыть транспорт и отправить первый запрос.

        Raises:
            PingStartError: адрес назначения не задан или не IPv4/IPv6,
                транспорт не открылся, не удалась привязка к адресу,
                повторный запуск
        """
        logger = self._log(sim)
        if self.state != PingApplication.State.IDLE:
            raise PingStartError(f"ping {self} was already started")

        destination = self.config.destination
        if destination is None:
            raise PingStartError(
                "destination address must be set when starting application")
        if not isinstance(destination, (IPv4Address, IPv6Address)):
            raise PingStartError(
                "destination address must be of type IPv4 or IPv6")

        self.signature = make_signature(self.node_id, self.app_index)
        self._started = sim.time
        self._reported = False
        if self.config.verbosity != VerboseMode.SILENT:
            self._print(format_startup(destination, self.config.payload_size))

        try:
            self._transport.open(destination.version, self.receive)
        except TransportError as err:
            raise PingStartError(f"can not create socket: {err}") from err
        self._transport_open = True
        self._multiple_destinations = is_multiple_destination(destination)

        source = self.config.source_address
        if source is not None:
            status = self._transport.bind(source)
            if status != 0:
                self._transport.close()
                self._transport_open = False
                raise PingStartError(
                    f"failed to bind IPv{source.version} socket to {source}")

        # Оценка числа записей в журнале
        if self.config.count > 0:
            capacity = self.config.count
        elif self.stop_time is not None and self.stop_time > sim.time:
            capacity = int((self.stop_time - sim.time) //
                           self.config.interval) + 1
        else:
            capacity = 0
        self.ledger = ProbeLedger(capacity)

        logger.debug("started: destination=%s signature=%#018x capacity=%d",
                     destination, self.signature, capacity)
        self.state = PingApplication.State.RUNNING
        self.send(sim)

    def send(self, sim: Simulator) -> None:
        """Отправить очередной запрос и запланировать следующий."""
        logger = self._log(sim)
        self._next_event = None
        config = self.config
        destination = config.destination
        logger.debug("sending seq=%d", self._seq)

        payload = build_payload(self.signature, config.payload_size)
        probe = build_echo_request(destination.version, self._seq, payload)
        if destination.version == 4 or not config.waypoints:
            returned = self._transport.send(
                sim, probe, destination, config.traffic_class)
        else:
            probe = build_routing_header(config.waypoints) + probe
            self._transport.set_protocol(IPV6_EXT_ROUTING)
            try:
                returned = self._transport.send(
                    sim, probe, destination, config.traffic_class)
            finally:
                # Иначе сокет не примет ответы ICMPv6
                self._transport.set_protocol(IPPROTO_ICMPV6)

        if returned > 0:
            self.ledger.append(ProbeRecord(self._seq, sim.time))
            self.tx_trace(self._seq, probe)
        else:
            # Запись все равно добавляем: индекс в журнале == номер запроса
            self.ledger.append(ProbeRecord(self._seq, sim.time, sent=False))
            logger.info("send failure; socket return value: %d", returned)
        self._seq += 1

        if config.count == 0 or self._seq < config.count:
            self._next_event = sim.schedule(config.interval, self.send)

        # Все запросы отправлены, ждем ответы и завершаемся
        if config.count > 0 and self._seq == config.count:
            linger = self.linger_time()
            logger.debug("all %d requests sent, stopping in %.6f s",
                         self._seq, linger)
            self._stop_event = sim.schedule(linger, self.stop)

    def linger_time(self) -> float:
        """Время ожидания после последнего запроса, сек."""
        if self.rtt.count > 0:
            return 2 * self.rtt.max / 1000.0
        return self.config.timeout

    # ------------------------------------------------------------------
    # Прием ответов
    # ------------------------------------------------------------------
    def receive(self, sim: Simulator, packet: InboundPacket) -> None:
        """Обработать пакет, принятый транспортом."""
        if self.state != PingApplication.State.RUNNING:
            return
        logger = self._log(sim)
        envelope = decode(packet.version, packet.data)

        if isinstance(envelope, EchoReply):
            self._handle_echo_reply(sim, packet, envelope)
        elif isinstance(envelope, DestinationUnreachable):
            logger.info("Received Destination Unreachable from %s",
                        packet.source)
            self.drop_trace("destination-unreachable", packet.source)
        elif isinstance(envelope, TimeExceeded):
            logger.info("Received Time Exceeded from %s", packet.source)
            self.drop_trace("time-exceeded", packet.source)
        else:
            logger.debug("ignored ICMP type %s from %s",
                         envelope.icmp_type, packet.source)

        if (not self._multiple_destinations and self.config.count > 0
                and self.num_received == self.config.count
                and self._early_stop_event is None):
            logger.debug("all replies received")
            self._early_stop_event = sim.call(self.stop)

    def _handle_echo_reply(self, sim: Simulator, packet: InboundPacket,
                           reply: EchoReply) -> None:
        logger = self._log(sim)
        if reply.identifier != PING_ID:
            return
        size = len(packet.data)
        logger.info("Received Echo Reply size = %d bytes from %s id = %d "
                    "seq = %d TTL = %d", size, packet.source,
                    reply.identifier, reply.sequence, packet.hop_limit)

        if len(reply.data) < SIGNATURE_SIZE:
            logger.info("Packet too short, discarding")
            return
        if read_signature(reply.data) != self.signature:
            return

        record = self.ledger.find(reply.sequence)
        if record is None or not record.sent:
            logger.debug("no request with seq=%d, reply ignored",
                         reply.sequence)
            return

        delta = sim.time - record.send_time
        assert delta >= 0, "reply arrived before its request was sent"

        duplicate = record.acknowledged
        if duplicate:
            self.num_duplicate += 1
        else:
            record.acknowledged = True
            self.num_received += 1
            self.rtt.update(to_milliseconds(delta))
            self.rtt_trace(record.sequence, delta)

        if self.config.verbosity == VerboseMode.VERBOSE:
            self._print(format_reply(
                size, packet.source, record.sequence, packet.hop_limit, delta,
                duplicate and not self._multiple_destinations,
            ))

    # ------------------------------------------------------------------
    # Остановка и отчет
    # ------------------------------------------------------------------
    def stop(self, sim: Simulator) -> None:
        """Остановить приложение. Повторные вызовы ничего не делают."""
        logger = self._log(sim)
        if self.state == PingApplication.State.IDLE:
            logger.warning("stop requested, but ping %s was never started",
                           self)
            return
        if self._reported:
            return
        self.state = PingApplication.State.STOPPING

        sim.cancel(self._stop_event)
        sim.cancel(self._next_event)
        sim.cancel(self._early_stop_event)
        self._stop_event = self._next_event = None
        if self._transport_open:
            self._transport.close()
            self._transport_open = False

        self._emit_report(sim)
        self.state = PingApplication.State.STOPPED

    def _emit_report(self, sim: Simulator) -> None:
        if self._reported:
            return
        self._reported = True

        self.report = build_report(
            transmitted=self.ledger.num_sent,
            received=self.num_received,
            duplicate=self.num_duplicate,
            failed=self.ledger.num_failed,
            duration=sim.time - self._started,
            rtt=self.rtt,
        )
        if self.config.verbosity != VerboseMode.SILENT:
            self._print(format_report(self.config.destination, self.report))
        self._log(sim).info("report: %s", self.report)
        self.report_trace(self.report)
