from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field


@dataclass
class ProbeRecord:
    """Запись об одной попытке отправки запроса."""
    sequence: int
    send_time: float
    acknowledged: bool = False
    sent: bool = True  # False - транспорт не принял пакет


class Report(BaseModel):
    """Итоговый отчет ping-приложения, публикуется один раз."""
    model_config = ConfigDict(frozen=True)

    transmitted: int = Field(
        ..., description="Сколько запросов принял транспорт"
    )
    received: int = Field(
        ..., description="Сколько запросов получили ответ"
    )
    duplicate: int = Field(0, description="Число повторных ответов")
    failed: int = Field(
        0, description="Сколько попыток отправки отклонил транспорт"
    )
    loss: int = Field(
        ..., description="Потери, % (целочисленное деление)"
    )
    duration: float = Field(..., description="Длительность работы, сек.")
    rtt_min: float | None = Field(None, description="Минимальный RTT, мс")
    rtt_avg: float | None = Field(None, description="Средний RTT, мс")
    rtt_max: float | None = Field(None, description="Максимальный RTT, мс")
    rtt_stddev: float | None = Field(
        None, description="СКО RTT (mdev), мс"
    )
