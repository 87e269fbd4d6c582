import io
from ipaddress import IPv4Address, IPv6Address

import pytest

from pingsim.sim import build_simulation, run_simulation, ExitReason, Simulator
from pingsim.models.ping.application import (
    PingApplication, PingStartError, make_signature
)
from pingsim.models.ping.config import Config, NetworkParams, VerboseMode
from pingsim.models.ping.handlers import initialize as initialize_model
from pingsim.models.ping.handlers import finalize as finalize_model
from pingsim.models.ping.model import LOCAL_V4, LOCAL_V6
from pingsim.models.ping.network import (
    Responder, SimulatedNetwork, SimulatedTransport
)
from pingsim.models.ping.packets import (
    IPPROTO_ICMPV6, PING_ID, build_echo_reply, build_error, build_payload
)
from pingsim.models.ping.transport import InboundPacket


DESTINATION = IPv4Address('10.0.0.2')
GROUP = IPv4Address('239.1.1.1')
NODE_ID = 3
APP_INDEX = 1
SIGNATURE = make_signature(NODE_ID, APP_INDEX)


# ============================================================================
# Модель: один узел с ping-приложением и имитируемая сеть
# -------------------------------------------------------
#
# Все нужное для проверок кладем в контекст:
# - app, network, transport - объекты модели;
# - out - все, что приложение напечатало;
# - events - события трассировки в порядке поступления.
#
# injections - пакеты (время, InboundPacket), которые "сеть" доставит узлу
# помимо ответов ответчиков.
# ============================================================================
def initialize(
        sim: Simulator,
        config: Config,
        responders=(),
        fail_sends=(),
        injections=(),
        extra_stops=(),
        gateway=None,
        stop_time=None,
):
    network = SimulatedNetwork(seed=1, gateway=gateway)
    for responder in responders:
        network.add_responder(responder)
    transport = SimulatedTransport(network, (LOCAL_V4, LOCAL_V6),
                                   fail_sends=fail_sends)
    out = io.StringIO()
    app = PingApplication(config, transport, node_id=NODE_ID,
                          app_index=APP_INDEX, stop_time=stop_time, out=out)

    events = []
    app.tx_trace.connect(
        lambda seq, probe: events.append(('tx', sim.time, seq)))
    app.rtt_trace.connect(
        lambda seq, delta: events.append(('rtt', sim.time, seq, delta)))
    app.drop_trace.connect(
        lambda reason, source: events.append(
            ('drop', sim.time, reason, source)))
    app.report_trace.connect(
        lambda report: events.append(('report', sim.time, report)))

    sim.context = {
        'app': app,
        'network': network,
        'transport': transport,
        'out': out,
        'events': events,
    }
    sim.call(app.start)
    for delay, packet in injections:
        sim.schedule(delay, network.deliver, (LOCAL_V4, packet))
    for delay in extra_stops:
        sim.schedule(delay, app.stop)


def simulate(config: Config, **kwargs):
    return run_simulation(build_simulation(
        "PingTest",
        init=lambda sim: initialize(sim, config, **kwargs),
        max_real_time=10.0,
    ))


def events_of(ctx, kind):
    return [event for event in ctx['events'] if event[0] == kind]


def unicast(delay=0.02, **kwargs):
    return Responder(address=DESTINATION, delay=delay, **kwargs)


def reply_packet(sequence, payload, identifier=PING_ID, source=DESTINATION):
    return InboundPacket(
        source=source, hop_limit=64,
        data=build_echo_reply(4, identifier, sequence, payload))


# ============================================================================
# ТЕСТЫ
# ============================================================================
def test_unicast_stops_when_all_replies_received():
    """
    5 запросов с интервалом 1 сек, RTT = 40 мс. Последний ответ приходит
    в 4.04, приложение останавливается сразу, не дожидаясь 4.08.
    """
    config = Config(destination=DESTINATION, count=5,
                    verbosity=VerboseMode.QUIET)
    stats, ctx, _ = simulate(config, responders=[unicast()])
    app = ctx['app']

    assert ExitReason.NO_MORE_EVENTS == stats.exit_reason
    assert pytest.approx(4.04) == stats.sim_time
    assert PingApplication.State.STOPPED == app.state

    report = app.report
    assert 5 == report.transmitted
    assert 5 == report.received
    assert 0 == report.loss
    assert pytest.approx(4.04) == report.duration
    assert (40, 40, 40, 0) == (report.rtt_min, report.rtt_avg,
                               report.rtt_max, report.rtt_stddev)

    tx_times = [event[1] for event in events_of(ctx, 'tx')]
    assert [0, 1, 2, 3, 4] == [event[2] for event in events_of(ctx, 'tx')]
    assert tx_times == sorted(tx_times)
    rtt = events_of(ctx, 'rtt')
    assert [0, 1, 2, 3, 4] == [event[2] for event in rtt]
    assert all(pytest.approx(0.04) == event[3] for event in rtt)
    assert [report] == [event[2] for event in events_of(ctx, 'report')]
    assert not ctx['transport'].is_open


def test_multicast_waits_linger_time():
    """Для группового адреса досрочной остановки нет: ждем 2 * max RTT."""
    config = Config(destination=GROUP, count=5, verbosity=VerboseMode.QUIET)
    responder = Responder(address=IPv4Address('10.0.1.1'), delay=0.02,
                          groups=(GROUP,))
    stats, ctx, _ = simulate(config, responders=[responder])

    assert pytest.approx(4.08) == stats.sim_time
    assert 5 == ctx['app'].report.received
    assert pytest.approx(4.08) == ctx['app'].report.duration


def test_linger_without_samples_uses_timeout():
    config = Config(destination=DESTINATION, count=3, timeout=0.7,
                    verbosity=VerboseMode.QUIET)
    stats, ctx, _ = simulate(config, responders=[unicast(loss_prob=1.0)])
    report = ctx['app'].report

    assert pytest.approx(2.7) == stats.sim_time
    assert 3 == report.transmitted
    assert 0 == report.received
    assert 100 == report.loss
    assert report.rtt_min is None
    assert report.rtt_stddev is None
    assert [] == events_of(ctx, 'rtt')


def test_duplicates_counted_but_not_measured():
    config = Config(destination=DESTINATION, count=3)
    _, ctx, _ = simulate(config, responders=[unicast(duplicate_prob=1.0)])
    app = ctx['app']

    assert 3 == app.report.received
    assert 2 == app.report.duplicate  # третий дубликат после остановки
    assert 3 == app.rtt.count
    assert 3 == len(events_of(ctx, 'rtt'))
    assert 2 == ctx['out'].getvalue().count("(DUP!)")
    assert "2 duplicates" in ctx['out'].getvalue()


def test_multicast_duplicates_without_dup_suffix():
    config = Config(destination=GROUP, count=2)
    responders = [
        Responder(address=IPv4Address('10.0.1.1'), delay=0.01,
                  groups=(GROUP,)),
        Responder(address=IPv4Address('10.0.1.2'), delay=0.015,
                  groups=(GROUP,)),
    ]
    stats, ctx, _ = simulate(config, responders=responders)
    report = ctx['app'].report
    out = ctx['out'].getvalue()

    assert pytest.approx(1.04) == stats.sim_time
    assert 2 == report.received
    assert 2 == report.duplicate
    assert (20, 20) == (report.rtt_min, report.rtt_max)
    assert 4 == out.count("bytes from")
    assert "(DUP!)" not in out
    assert "from 10.0.1.2" in out


def test_send_failure():
    config = Config(destination=DESTINATION, count=3,
                    verbosity=VerboseMode.QUIET)
    stats, ctx, _ = simulate(config, responders=[unicast()],
                             fail_sends={1})
    app = ctx['app']
    report = app.report

    assert 2 == report.transmitted
    assert 2 == report.received
    assert 1 == report.failed
    assert 0 == report.loss
    # Все отправлено, но ответов меньше count: ждем 2 * max RTT
    assert pytest.approx(2.08) == stats.sim_time

    assert 3 == len(app.ledger)
    assert [True, False, True] == [record.sent for record in app.ledger]
    assert [0, 2] == [event[2] for event in events_of(ctx, 'tx')]


@pytest.mark.parametrize('packet', [
    # Данных меньше, чем размер сигнатуры
    reply_packet(0, b'\x01' * 6),
    # Чужая сигнатура
    reply_packet(0, build_payload(make_signature(9, 9), 56)),
    # Чужой идентификатор
    reply_packet(0, build_payload(SIGNATURE, 56), identifier=0x1234),
    # Запроса с таким номером не было
    reply_packet(5, build_payload(SIGNATURE, 56)),
], ids=['short', 'signature', 'identifier', 'sequence'])
def test_foreign_replies_are_discarded(packet):
    config = Config(destination=DESTINATION, count=1,
                    verbosity=VerboseMode.QUIET)
    _, ctx, _ = simulate(config, injections=[(0.5, packet)])
    app = ctx['app']

    assert 0 == app.num_received
    assert 0 == app.num_duplicate
    assert 0 == app.rtt.count
    assert not app.ledger[0].acknowledged
    assert [] == events_of(ctx, 'rtt')
    assert 100 == app.report.loss


def test_injected_valid_reply_is_accepted():
    config = Config(destination=DESTINATION, count=1,
                    verbosity=VerboseMode.QUIET)
    packet = reply_packet(0, build_payload(SIGNATURE, 56))
    stats, ctx, _ = simulate(config, injections=[(0.25, packet)])

    assert 1 == ctx['app'].report.received
    assert 250 == ctx['app'].report.rtt_max
    assert pytest.approx(0.25) == stats.sim_time


def test_destination_unreachable():
    config = Config(destination=IPv4Address('10.0.0.9'), count=2,
                    verbosity=VerboseMode.QUIET)
    gateway = IPv4Address('10.0.0.254')
    stats, ctx, _ = simulate(config, gateway=gateway)

    drops = events_of(ctx, 'drop')
    assert [('drop', 0.0, 'destination-unreachable', gateway),
            ('drop', 1.0, 'destination-unreachable', gateway)] == drops
    assert 0 == ctx['app'].report.received
    assert pytest.approx(2.0) == stats.sim_time


def test_time_exceeded_and_unknown_types():
    config = Config(destination=DESTINATION, count=1,
                    verbosity=VerboseMode.QUIET)
    router = IPv4Address('10.0.5.1')
    injections = [
        (0.3, InboundPacket(router, 60, build_error(4, False, b''))),
        (0.4, InboundPacket(router, 60, bytes([42, 0, 0, 0]))),
    ]
    _, ctx, _ = simulate(config, injections=injections)

    assert [('drop', 0.3, 'time-exceeded', router)] == events_of(ctx, 'drop')
    assert 0 == ctx['app'].num_received


def test_second_stop_does_nothing():
    config = Config(destination=DESTINATION, count=0,
                    verbosity=VerboseMode.QUIET)
    stats, ctx, _ = simulate(config, responders=[unicast()],
                             extra_stops=(2.5, 3.0))
    reports = events_of(ctx, 'report')

    assert 1 == len(reports)
    assert 2.5 == reports[0][1]
    assert 3 == reports[0][2].transmitted
    assert ExitReason.NO_MORE_EVENTS == stats.exit_reason
    assert 3.0 == stats.sim_time
    assert 1 == ctx['out'].getvalue().count("ping statistics")


def test_stop_before_start_is_ignored():
    network = SimulatedNetwork()
    transport = SimulatedTransport(network, (LOCAL_V4,))
    app = PingApplication(Config(destination=DESTINATION), transport)

    def init(sim):
        app.stop(sim)

    run_simulation(build_simulation("PingTest", init=init))

    assert PingApplication.State.IDLE == app.state
    assert app.report is None


def test_start_twice_fails():
    network = SimulatedNetwork()
    transport = SimulatedTransport(network, (LOCAL_V4,))
    app = PingApplication(Config(destination=DESTINATION, count=1), transport)

    def init(sim):
        app.start(sim)
        app.start(sim)

    with pytest.raises(PingStartError):
        run_simulation(build_simulation("PingTest", init=init))


@pytest.mark.parametrize('config, transport_kwargs', [
    (Config(), {}),
    (Config(destination=DESTINATION, source_address='10.0.0.77'), {}),
    (Config(destination=DESTINATION), {'fail_open': True}),
    (Config(destination='2001:db8::2'), {'addresses': (LOCAL_V4,)}),
], ids=['no-destination', 'bind', 'open', 'family'])
def test_fatal_start_errors(config, transport_kwargs):
    network = SimulatedNetwork()
    transport_kwargs = dict(transport_kwargs)
    addresses = transport_kwargs.pop('addresses', (LOCAL_V4, LOCAL_V6))
    transport = SimulatedTransport(network, addresses, **transport_kwargs)
    app = PingApplication(config, transport, out=io.StringIO())

    def init(sim):
        sim.call(app.start)

    with pytest.raises(PingStartError):
        run_simulation(build_simulation("PingTest", init=init))
    assert not transport.is_open
    assert [] == transport.sent


def test_bind_to_own_address():
    config = Config(destination=DESTINATION, count=1,
                    source_address=LOCAL_V4, traffic_class=0xB8,
                    verbosity=VerboseMode.SILENT)
    _, ctx, _ = simulate(config, responders=[unicast()])
    transport = ctx['transport']

    assert LOCAL_V4 == transport.bound
    assert 0xB8 == transport.sent[0][2]
    assert 1 == ctx['app'].report.received


def test_ipv6_waypoints():
    destination = IPv6Address('2001:db8::2')
    waypoints = (IPv6Address('2001:db8:a::1'), IPv6Address('2001:db8:b::1'))
    config = Config(destination=destination, count=2, waypoints=waypoints,
                    verbosity=VerboseMode.QUIET)
    responder = Responder(address=destination, delay=0.02)
    stats, ctx, _ = simulate(config, responders=[responder])
    network = ctx['network']
    transport = ctx['transport']

    assert [waypoints, waypoints] == [route.waypoints
                                      for route in network.routes]
    assert all(LOCAL_V6 == route.source for route in network.routes)
    assert IPPROTO_ICMPV6 == transport.protocol
    assert 4 == transport.num_protocol_changes
    assert 2 == ctx['app'].report.received
    assert pytest.approx(1.04) == stats.sim_time


def test_ipv4_output():
    config = Config(destination=DESTINATION, count=2)
    _, ctx, _ = simulate(config, responders=[unicast()])

    assert (
        "PING 10.0.0.2 - 56 bytes of data; 84 bytes including ICMP and IPv4 "
        "headers.\n"
        "64 bytes from 10.0.0.2: icmp_seq=0 ttl=64 time=40 ms\n"
        "64 bytes from 10.0.0.2: icmp_seq=1 ttl=64 time=40 ms\n"
        "\n"
        "--- 10.0.0.2 ping statistics ---\n"
        "2 packets transmitted, 2 received, 0% packet loss, time 1040ms\n"
        "rtt min/avg/max/mdev = 40/40/40/0 ms\n"
    ) == ctx['out'].getvalue()


def test_ipv6_output():
    destination = IPv6Address('2001:db8::2')
    config = Config(destination=destination, count=1, payload_size=100)
    responder = Responder(address=destination, delay=0.02, hop_limit=60)
    _, ctx, _ = simulate(config, responders=[responder])
    lines = ctx['out'].getvalue().splitlines()

    assert ("PING 2001:db8::2 - 100 bytes of data; 148 bytes including ICMP "
            "and IPv6 headers.") == lines[0]
    assert ("108 bytes from (2001:db8::2): icmp_seq=0 ttl=60 time=40 ms"
            == lines[1])
    assert "--- 2001:db8::2 ping statistics ---" == lines[3]


def test_quiet_and_silent():
    quiet = Config(destination=DESTINATION, count=2,
                   verbosity=VerboseMode.QUIET)
    _, ctx, _ = simulate(quiet, responders=[unicast()])
    out = ctx['out'].getvalue()
    assert out.startswith("PING 10.0.0.2")
    assert "bytes from" not in out
    assert "2 packets transmitted, 2 received" in out

    silent = Config(destination=DESTINATION, count=2,
                    verbosity=VerboseMode.SILENT)
    _, ctx, _ = simulate(silent, responders=[unicast()])
    assert "" == ctx['out'].getvalue()
    assert 2 == ctx['app'].report.received


# ----------------------------------------------------------------------------
# Модель целиком: handlers.initialize() / handlers.finalize()
# ----------------------------------------------------------------------------
def run_model(config, network_params, stop_time=None, num_apps=1,
              max_sim_time=None):
    out = io.StringIO()
    return run_simulation(build_simulation(
        "Ping",
        init=initialize_model,
        init_args=(config, network_params, stop_time, num_apps, out),
        fin=finalize_model,
        max_real_time=10.0,
        max_sim_time=max_sim_time,
    ))


def test_two_apps_on_one_node():
    """Ответы доходят до обоих сокетов, но каждое приложение принимает
    только свои (по сигнатуре)."""
    config = Config(destination=GROUP, count=3)
    _, model, reports = run_model(config, NetworkParams(), num_apps=2)

    assert 2 == len(reports)
    for report in reports:
        assert 3 == report.transmitted
        assert 3 == report.received
        assert 0 == report.duplicate
    assert [0, 1] == [app.app_index for app in model.apps]
    assert model.apps[0].signature != model.apps[1].signature


def test_deadline_stops_application():
    config = Config(destination=DESTINATION, count=0,
                    verbosity=VerboseMode.SILENT)
    stats, model, reports = run_model(config, NetworkParams(), stop_time=2.5)
    app = model.apps[0]

    assert 1 == len(reports)
    assert 3 == reports[0].transmitted
    assert 3 == reports[0].received
    assert 3 == app.ledger.capacity
    assert pytest.approx(2.5) == stats.sim_time


def test_finalizer_stops_running_applications():
    config = Config(destination=DESTINATION, count=0,
                    verbosity=VerboseMode.SILENT)
    stats, model, reports = run_model(config, NetworkParams(),
                                      max_sim_time=3.5)

    assert ExitReason.REACHED_SIM_TIME_LIMIT == stats.exit_reason
    assert PingApplication.State.STOPPED == model.apps[0].state
    assert 1 == len(reports)
    assert 5 == reports[0].transmitted


def test_unreachable_network_params():
    config = Config(destination=DESTINATION, count=2,
                    verbosity=VerboseMode.SILENT)
    _, model, reports = run_model(config, NetworkParams(unreachable=True))

    assert 0 == reports[0].received
    assert [] == model.network.responders


def test_late_duplicate_leaves_stats_unchanged():
    """Дубликат с большим RTT не влияет на min/avg/max/mdev."""
    config = Config(destination=DESTINATION, count=2,
                    verbosity=VerboseMode.QUIET)
    late = reply_packet(0, build_payload(SIGNATURE, 56))
    _, ctx, _ = simulate(config, responders=[unicast()],
                         injections=[(0.5, late)])
    app = ctx['app']
    report = app.report

    assert 2 == report.received
    assert 1 == report.duplicate
    assert 2 == app.rtt.count
    assert (40, 40, 40, 0) == (report.rtt_min, report.rtt_avg,
                               report.rtt_max, report.rtt_stddev)
    assert [0, 1] == [event[2] for event in events_of(ctx, 'rtt')]


def test_summary_with_ten_second_rtt():
    config = Config(destination=DESTINATION, count=2, timeout=20)
    stats, ctx, _ = simulate(config, responders=[unicast(delay=5.0)])
    out = ctx['out'].getvalue()

    assert pytest.approx(11.0) == stats.sim_time
    assert "icmp_seq=0 ttl=64 time=10000 ms" in out
    assert out.endswith("rtt min/avg/max/mdev = 10000/10000/10000/0 ms\n")
