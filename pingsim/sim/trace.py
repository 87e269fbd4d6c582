from typing import Any, Callable


TraceSink = Callable[..., None]


class TraceSource:
    """
    Источник трассировки.

    Модель публикует через него наблюдения (например, отправку пакета),
    а внешний код подписывается через `connect()`. Подписчики вызываются
    синхронно, в порядке подписки, с теми же аргументами, что и публикация.
    """
    def __init__(self, name: str):
        self.name = name
        self._sinks: list[TraceSink] = []

    def connect(self, sink: TraceSink) -> None:
        if not callable(sink):
            raise TypeError(f"trace sink {sink!r} is not callable")
        self._sinks.append(sink)

    def disconnect(self, sink: TraceSink) -> None:
        """Отписать `sink`; неизвестный подписчик игнорируется."""
        if sink in self._sinks:
            self._sinks.remove(sink)

    def __call__(self, *args: Any) -> None:
        for sink in list(self._sinks):
            sink(*args)

    def __len__(self) -> int:
        return len(self._sinks)

    def __repr__(self) -> str:
        return f"TraceSource({self.name!r}, sinks={len(self._sinks)})"
