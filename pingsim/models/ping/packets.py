"""
Кодирование и разбор пакетов ICMP / ICMPv6 для ping-приложения.

Работаем только с ICMP-частью пакета: IP-заголовки формирует и снимает
транспорт. Все многобайтовые поля заголовков - в сетевом порядке байт,
сигнатура в данных - little-endian.
"""
from dataclasses import dataclass
from ipaddress import IPv6Address
import struct


# Идентификатор ECHO-пакетов этого приложения. Позволяет отличить свои
# ответы от чужого ICMP-трафика на том же raw-сокете.
PING_ID = 0xBEEF

ICMPV4_ECHO_REPLY = 0
ICMPV4_DEST_UNREACH = 3
ICMPV4_ECHO = 8
ICMPV4_TIME_EXCEEDED = 11

ICMPV6_DEST_UNREACH = 1
ICMPV6_TIME_EXCEEDED = 3
ICMPV6_ECHO_REQUEST = 128
ICMPV6_ECHO_REPLY = 129

IPPROTO_ICMP = 1
IPPROTO_ICMPV6 = 58
IPV6_EXT_ROUTING = 43

IPV4_HEADER_SIZE = 20
IPV6_HEADER_SIZE = 40
ECHO_HEADER_SIZE = 8
SIGNATURE_SIZE = 8

ECHO_HEADER = struct.Struct("!BBHHH")
SIGNATURE = struct.Struct("<Q")
ROUTING_HEADER = struct.Struct("!BBBB4x")

_ECHO_TYPES = {
    4: (ICMPV4_ECHO, ICMPV4_ECHO_REPLY),
    6: (ICMPV6_ECHO_REQUEST, ICMPV6_ECHO_REPLY),
}


@dataclass(frozen=True)
class EchoReply:
    identifier: int
    sequence: int
    data: bytes


@dataclass(frozen=True)
class DestinationUnreachable:
    code: int


@dataclass(frozen=True)
class TimeExceeded:
    code: int


@dataclass(frozen=True)
class Unrecognized:
    icmp_type: int | None


Envelope = EchoReply | DestinationUnreachable | TimeExceeded | Unrecognized


def checksum(data: bytes) -> int:
    """Контрольная сумма Internet (RFC 1071)."""
    if len(data) % 2:
        data += b"\x00"
    total = 0
    for i in range(0, len(data), 2):
        total += (data[i] << 8) + data[i + 1]
    total = (total >> 16) + (total & 0xFFFF)
    total += total >> 16
    return (~total) & 0xFFFF


def write_signature(signature: int) -> bytes:
    return SIGNATURE.pack(signature & 0xFFFF_FFFF_FFFF_FFFF)


def read_signature(data: bytes) -> int:
    return SIGNATURE.unpack_from(data)[0]


def build_payload(signature: int, size: int) -> bytes:
    """Данные запроса: сигнатура, затем нули до размера `size`."""
    if size < SIGNATURE_SIZE:
        raise ValueError(f"payload of {size} bytes can not hold a signature")
    return write_signature(signature) + bytes(size - SIGNATURE_SIZE)


def _build_echo(version: int, icmp_type: int, identifier: int,
                sequence: int, payload: bytes) -> bytes:
    header = ECHO_HEADER.pack(icmp_type, 0, 0, identifier, sequence & 0xFFFF)
    if version == 4:
        csum = checksum(header + payload)
        header = ECHO_HEADER.pack(
            icmp_type, 0, csum, identifier, sequence & 0xFFFF)
    # Для ICMPv6 сумма считается с псевдозаголовком, это делает транспорт
    return header + payload


def build_echo_request(version: int, sequence: int, payload: bytes,
                       identifier: int = PING_ID) -> bytes:
    return _build_echo(version, _ECHO_TYPES[version][0], identifier,
                       sequence, payload)


def build_echo_reply(version: int, identifier: int, sequence: int,
                     payload: bytes) -> bytes:
    return _build_echo(version, _ECHO_TYPES[version][1], identifier,
                       sequence, payload)


def build_error(version: int, unreachable: bool, original: bytes,
                code: int = 0) -> bytes:
    """ICMP-ошибка (Destination Unreachable или Time Exceeded)."""
    if version == 4:
        icmp_type = ICMPV4_DEST_UNREACH if unreachable else ICMPV4_TIME_EXCEEDED
    else:
        icmp_type = ICMPV6_DEST_UNREACH if unreachable else ICMPV6_TIME_EXCEEDED
    return struct.pack("!BBH4x", icmp_type, code, 0) + original


def parse_echo_request(version: int, data: bytes) -> tuple[int, int, bytes] | None:
    """Разобрать ECHO-запрос: (identifier, sequence, payload) или None."""
    if len(data) < ECHO_HEADER_SIZE:
        return None
    icmp_type, _, _, identifier, sequence = ECHO_HEADER.unpack_from(data)
    if icmp_type != _ECHO_TYPES[version][0]:
        return None
    return identifier, sequence, bytes(data[ECHO_HEADER_SIZE:])


def decode(version: int, data: bytes) -> Envelope:
    """Определить тип входящего ICMP-сообщения."""
    if len(data) < 4:
        return Unrecognized(None)
    icmp_type, code = data[0], data[1]
    if version == 4:
        unreach, exceeded = ICMPV4_DEST_UNREACH, ICMPV4_TIME_EXCEEDED
    else:
        unreach, exceeded = ICMPV6_DEST_UNREACH, ICMPV6_TIME_EXCEEDED

    if icmp_type == _ECHO_TYPES[version][1]:
        if len(data) < ECHO_HEADER_SIZE:
            return Unrecognized(icmp_type)
        _, _, _, identifier, sequence = ECHO_HEADER.unpack_from(data)
        return EchoReply(identifier, sequence, bytes(data[ECHO_HEADER_SIZE:]))
    elif icmp_type == unreach:
        return DestinationUnreachable(code)
    elif icmp_type == exceeded:
        return TimeExceeded(code)
    return Unrecognized(icmp_type)


def build_routing_header(routers: tuple[IPv6Address, ...] | list[IPv6Address],
                         next_header: int = IPPROTO_ICMPV6) -> bytes:
    """Заголовок loose source routing (routing type 0)."""
    header = ROUTING_HEADER.pack(next_header, 2 * len(routers), 0,
                                 len(routers))
    return header + b"".join(router.packed for router in routers)


def parse_routing_header(data: bytes) -> tuple[list[IPv6Address], bytes]:
    """Снять заголовок маршрутизации: (список узлов, остаток пакета)."""
    _, ext_len, _, _ = ROUTING_HEADER.unpack_from(data)
    length = ROUTING_HEADER.size + 8 * ext_len
    routers = [
        IPv6Address(bytes(data[offset:offset + 16]))
        for offset in range(ROUTING_HEADER.size, length, 16)
    ]
    return routers, bytes(data[length:])
