from typing import Iterator

from .objects import ProbeRecord


SEQ_MODULO = 1 << 16  # номер последовательности в ICMP - 16 бит


class ProbeLedger:
    """
    Журнал отправленных запросов.

    Записи только добавляются, индекс записи равен ее номеру
    последовательности. В пакете номер передается по модулю 2^16, поэтому
    поиск по номеру из ответа возвращает самую свежую запись с таким
    остатком.
    """
    def __init__(self, capacity: int = 0):
        self.capacity = capacity  # ожидаемое число записей (оценка)
        self._records: list[ProbeRecord] = []
        self._num_sent = 0

    def append(self, record: ProbeRecord) -> None:
        if record.sequence != len(self._records):
            raise ValueError(
                f"expected sequence {len(self._records)}, "
                f"got {record.sequence}")
        if self._records and record.send_time < self._records[-1].send_time:
            raise ValueError("send time went backwards")
        self._records.append(record)
        if record.sent:
            self._num_sent += 1

    def find(self, wire_sequence: int) -> ProbeRecord | None:
        """Найти запись по номеру из пакета; None, если такой нет."""
        if not 0 <= wire_sequence < SEQ_MODULO or not self._records:
            return None
        last = len(self._records) - 1
        index = last - (last - wire_sequence) % SEQ_MODULO
        if index < 0:
            return None
        return self._records[index]

    @property
    def num_sent(self) -> int:
        return self._num_sent

    @property
    def num_failed(self) -> int:
        return len(self._records) - self._num_sent

    def __getitem__(self, index: int) -> ProbeRecord:
        return self._records[index]

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ProbeRecord]:
        return iter(self._records)
