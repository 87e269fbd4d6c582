import math


class RttStats:
    """
    Накопитель статистики RTT (миллисекунды).

    Среднее и дисперсия считаются онлайн по алгоритму Уэлфорда: вместо суммы
    квадратов хранится сумма квадратов отклонений от текущего среднего (m2),
    поэтому точность не теряется на длинных прогонах.

    Пока нет ни одного замера, min, max и avg равны None. Дисперсия -
    выборочная (деление на n - 1), при count < 2 равна нулю.
    """
    def __init__(self):
        self._count = 0
        self._min: float | None = None
        self._max: float | None = None
        self._mean = 0.0
        self._m2 = 0.0

    def update(self, sample: float) -> None:
        self._count += 1
        if self._min is None or sample < self._min:
            self._min = sample
        if self._max is None or sample > self._max:
            self._max = sample
        delta = sample - self._mean
        self._mean += delta / self._count
        self._m2 += delta * (sample - self._mean)

    @property
    def count(self) -> int:
        return self._count

    @property
    def min(self) -> float | None:
        return self._min

    @property
    def max(self) -> float | None:
        return self._max

    @property
    def avg(self) -> float | None:
        return self._mean if self._count > 0 else None

    @property
    def var(self) -> float:
        return self._m2 / (self._count - 1) if self._count > 1 else 0.0

    @property
    def stddev(self) -> float:
        return math.sqrt(self.var)

    def __repr__(self):
        return (f"RttStats(count={self._count}, min={self._min}, "
                f"avg={self.avg}, max={self._max}, stddev={self.stddev:.4g})")
