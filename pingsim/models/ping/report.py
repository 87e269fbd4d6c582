from ipaddress import IPv4Address

from .objects import Report
from .packets import ECHO_HEADER_SIZE, IPV4_HEADER_SIZE, IPV6_HEADER_SIZE
from .stats import RttStats
from .transport import Address


def to_microseconds(seconds: float) -> int:
    """Интервал модельного времени в целых микросекундах."""
    return round(seconds * 1_000_000)


def to_milliseconds(seconds: float) -> int:
    """Целые миллисекунды с отбрасыванием дробной части."""
    return to_microseconds(seconds) // 1000


def loss_percent(transmitted: int, received: int) -> int:
    """
    Процент потерь с целочисленным делением, как в ping из Linux:
    99.9% не должно превращаться в 100%. Если ничего не отправлено,
    потерь нет.
    """
    if transmitted == 0:
        return 0
    return (transmitted - received) * 100 // transmitted


def build_report(transmitted: int, received: int, duplicate: int,
                 failed: int, duration: float, rtt: RttStats) -> Report:
    has_rtt = rtt.count > 0
    return Report(
        transmitted=transmitted,
        received=received,
        duplicate=duplicate,
        failed=failed,
        loss=loss_percent(transmitted, received),
        duration=duration,
        rtt_min=rtt.min if has_rtt else None,
        rtt_avg=rtt.avg if has_rtt else None,
        rtt_max=rtt.max if has_rtt else None,
        rtt_stddev=rtt.stddev if has_rtt else None,
    )


def _num(value: float) -> str:
    # Без экспоненты: 10000 мс печатаем как "10000", а не "1e+04"
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    return text or "0"


def format_startup(destination: Address, payload_size: int) -> str:
    if isinstance(destination, IPv4Address):
        header_size = IPV4_HEADER_SIZE
    else:
        header_size = IPV6_HEADER_SIZE
    total = payload_size + ECHO_HEADER_SIZE + header_size
    return (f"PING {destination} - {payload_size} bytes of data; "
            f"{total} bytes including ICMP and IPv{destination.version} "
            "headers.")


def format_reply(size: int, source: Address, sequence: int, hop_limit: int,
                 delta: float, duplicate: bool) -> str:
    src = str(source) if source.version == 4 else f"({source})"
    line = (f"{size} bytes from {src}: icmp_seq={sequence} ttl={hop_limit} "
            f"time={to_microseconds(delta) / 1000.0:g} ms")
    if duplicate:
        line += " (DUP!)"
    return line


def format_report(destination: Address, report: Report) -> str:
    lines = [
        "",
        f"--- {destination} ping statistics ---",
    ]
    summary = (f"{report.transmitted} packets transmitted, "
               f"{report.received} received, ")
    if report.duplicate:
        summary += f"{report.duplicate} duplicates, "
    summary += (f"{report.loss}% packet loss, "
                f"time {to_milliseconds(report.duration)}ms")
    lines.append(summary)
    if report.rtt_min is not None:
        lines.append(
            "rtt min/avg/max/mdev = "
            f"{int(report.rtt_min)}/{_num(report.rtt_avg)}/"
            f"{int(report.rtt_max)}/{_num(report.rtt_stddev)} ms"
        )
    return "\n".join(lines)
