from abc import ABC, abstractmethod
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv6Address
from typing import Callable

from pingsim.sim import Simulator


Address = IPv4Address | IPv6Address


class TransportError(OSError):
    """Транспорт не удалось открыть или использовать."""
    ...


@dataclass(frozen=True)
class InboundPacket:
    """Принятый пакет: ICMP-часть и поля снятого IP-заголовка."""
    source: Address
    hop_limit: int
    data: bytes

    @property
    def version(self) -> int:
        return self.source.version


ReceiveCallback = Callable[[Simulator, InboundPacket], None]


class Transport(ABC):
    """
    Raw-сокет для ICMP, через который работает ping-приложение.

    Приложение получает транспорт при создании, открывает его в `start`
    и закрывает в `stop`. Владельцем транспорта приложение не является.
    """

    @abstractmethod
    def open(self, version: int, on_receive: ReceiveCallback) -> None:
        """Открыть сокет семейства `version` (4 или 6).

        Raises:
            TransportError: если сокет создать нельзя
        """
        raise NotImplementedError

    @abstractmethod
    def bind(self, address: Address) -> int:
        """Привязать к локальному адресу. 0 - успех."""
        raise NotImplementedError

    @abstractmethod
    def send(self, sim: Simulator, data: bytes, destination: Address,
             tos: int = 0) -> int:
        """Отправить пакет; вернуть число байт (> 0) или код ошибки (<= 0)."""
        raise NotImplementedError

    @abstractmethod
    def set_protocol(self, protocol: int) -> None:
        """Номер протокола raw-сокета (для отправки и отбора входящих)."""
        raise NotImplementedError

    @property
    @abstractmethod
    def protocol(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError
