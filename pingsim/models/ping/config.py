from enum import Enum
from ipaddress import IPv4Address, IPv6Address

from pydantic import (
    BaseModel, ConfigDict, Field, IPvAnyAddress, confloat, conint,
    model_validator
)


MIN_PAYLOAD_SIZE = 16  # первые 8 байт занимает сигнатура приложения


class VerboseMode(str, Enum):
    VERBOSE = "Verbose"
    QUIET = "Quiet"
    SILENT = "Silent"


class Config(BaseModel):
    """
    Параметры ping-приложения. Объект неизменяемый, проверка значений
    выполняется при создании.
    """
    model_config = ConfigDict(frozen=True)

    destination: IPvAnyAddress | None = Field(
        None, description="Адрес IPv4 или IPv6, который пингуем. Семейство "
                          "адреса определяет режим работы (v4/v6)."
    )
    verbosity: VerboseMode = Field(
        VerboseMode.VERBOSE, description="Подробность вывода в консоль"
    )
    interval: confloat(gt=0) = Field(
        1.0, description="Интервал между запросами, сек."
    )
    payload_size: conint(ge=MIN_PAYLOAD_SIZE) = Field(
        56, description="Размер данных запроса без заголовков ICMP и IP"
    )
    count: conint(ge=0) = Field(
        0, description="Сколько запросов отправить (0 - без ограничения)"
    )
    source_address: IPvAnyAddress | None = Field(
        None, description="Локальный адрес, к которому привязать сокет"
    )
    timeout: confloat(ge=0) = Field(
        1.0, description="Ожидание ответов после последнего запроса, если "
                         "не получено ни одного замера RTT, сек."
    )
    traffic_class: conint(ge=0, le=255) = Field(
        0, description="Байт TOS / Traffic Class (включая биты ECN)"
    )
    waypoints: tuple[IPv6Address, ...] = Field(
        (), description="Промежуточные узлы для loose source routing "
                        "(только IPv6)"
    )

    @model_validator(mode="after")
    def _check_waypoints(self) -> "Config":
        if self.waypoints and not isinstance(self.destination, IPv6Address):
            raise ValueError(
                "waypoints are supported only for IPv6 destinations")
        return self


class NetworkParams(BaseModel):
    """Параметры имитируемой сети, в которой работает ping."""
    delay: confloat(ge=0) = Field(
        0.01, description="Задержка в одну сторону, сек."
    )
    jitter: confloat(ge=0) = Field(
        0.0, description="Среднее случайной (экспоненциальной) добавки "
                         "к времени оборота, сек."
    )
    loss_prob: confloat(ge=0, le=1) = Field(
        0.0, description="Вероятность потери запроса или ответа"
    )
    duplicate_prob: confloat(ge=0, le=1) = Field(
        0.0, description="Вероятность дублирования ответа"
    )
    num_responders: conint(ge=1, le=250) = Field(
        1, description="Сколько узлов отвечает на групповой адрес"
    )
    hop_limit: conint(ge=1, le=255) = Field(
        64, description="TTL / Hop Limit в ответах"
    )
    unreachable: bool = Field(
        False, description="Назначение недостижимо: шлюз отвечает "
                           "Destination Unreachable"
    )
    seed: int | None = Field(None, description="Зерно генератора случайных чисел")


def is_multiple_destination(address: IPv4Address | IPv6Address) -> bool:
    """Групповой или широковещательный адрес: ответить могут многие."""
    if isinstance(address, IPv4Address):
        return address.is_multicast or address == IPv4Address(
            "255.255.255.255")
    return address.is_multicast
