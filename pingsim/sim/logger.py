from dataclasses import dataclass
import logging
from typing import Callable, Literal
import uuid
import colorama


class ColoredFormatter(logging.Formatter):
    """
    Форматтер для консоли: цвет строки зависит от уровня записи.

    Для каждого уровня заранее строится отдельный logging.Formatter,
    у которого формат обернут в escape-последовательности colorama.
    """

    DEFAULT_COLORS = {
        logging.DEBUG: colorama.Fore.LIGHTBLACK_EX,
        logging.INFO: colorama.Fore.GREEN,
        logging.WARNING: colorama.Fore.YELLOW,
        logging.ERROR: colorama.Fore.RED + colorama.Style.BRIGHT,
        logging.CRITICAL:
            colorama.Back.RED + colorama.Fore.WHITE + colorama.Style.BRIGHT,
    }

    def __init__(
        self,
        fmt: str,
        style: Literal['{', '%', '$'] = '%',
        colors: dict[int, str] | None = None,
        **kwargs
    ):
        super().__init__(fmt=fmt, style=style, **kwargs)  # type: ignore
        colors = colors or {}
        self.formatters = {
            level: logging.Formatter(
                colors.get(level, color) + fmt + colorama.Style.RESET_ALL,
                style=style  # type: ignore
            )
            for level, color in ColoredFormatter.DEFAULT_COLORS.items()
        }

    def format(self, record):
        formatter = self.formatters.get(record.levelno)
        if formatter is None:
            return super().format(record)
        return formatter.format(record)


# Формат по-умолчанию. Кроме стандартных полей используются два,
# которые добавляет ModelLogger:
#
# - simTime: модельное время (секунды)
# - runId: идентификатор прогона
#
# Пример строки в журнале:
# 000004.080000 [INFO    ] Ping.n0a0 (R:972274) (application.py:stop) - ...

MODEL_LOGGER_FORMAT = (
    "{simTime:013.06f} [{levelname:8s}] {name} (R:{runId}) "
    "({filename}:{funcName}) - {message}"
)


@dataclass
class ModelLoggerConfig:
    """Настройки модельного логгера."""
    fmt: str = MODEL_LOGGER_FORMAT
    style: Literal['%', '{', '$'] = '{'

    level: int = logging.INFO

    use_console: bool = False
    colored_console: bool = True
    console_colors: dict[int, str] | None = None
    # Уровень для консоли; 0 - использовать level
    console_level: int = 0

    # Имя лог-файла (без runId). None - в файл не писать.
    file_name: str | None = None
    file_level: int = 0
    file_name_sep: str = "_"
    file_name_no_run_id: bool = False


class ModelLogger:
    """
    Логгер моделей.

    Обертка над logging.Logger, которая добавляет к каждой записи
    модельное время (simTime) и идентификатор прогона (runId).
    Сообщения лучше передавать через формат-строку:

        `logger.debug("seq=%d", seq)`

    тогда строка собирается, только если запись реально пойдет в журнал.

    Дочерние логгеры (`child()`) разделяют с родителем часы и runId,
    а обработчики наследуют через propagate стандартного logging.
    """
    def __init__(
        self,
        model_name: str = '',
        time_getter: Callable[[], float] | None = None,
        run_id: int | None = None,
        logger: logging.Logger | None = None,
    ):
        self._logger = logger or logging.getLogger(model_name)
        self.time_getter = time_getter or (lambda: 0.0)
        self._run_id: int = run_id or uuid.uuid4().int % 1_000_000
        self._setup_was_called: bool = False

    @property
    def name(self) -> str:
        return self._logger.name

    @property
    def run_id(self) -> int:
        return self._run_id

    def set_time_getter(self, fn: Callable[[], float]) -> None:
        self.time_getter = fn

    def set_run_id(self, run_id: int) -> None:
        self._run_id = run_id

    def child(self, suffix: str) -> "ModelLogger":
        """Логгер с именем `<name>.<suffix>` и теми же часами."""
        return ModelLogger(
            time_getter=lambda: self.time_getter(),
            run_id=self._run_id,
            logger=self._logger.getChild(suffix),
        )

    def setup(
        self,
        config: ModelLoggerConfig | None = None,
        force_run: bool = False
    ) -> None:
        """
        Настроить обработчики логгера.

        Повторные вызовы игнорируются: ядро вызывает `setup()` без
        параметров при старте, и это не должно затирать конфигурацию,
        переданную ранее явно. Переопределить можно через force_run=True.
        """
        if self._setup_was_called and not force_run:
            return

        config = config or ModelLoggerConfig()
        self._logger.handlers = []
        if config.use_console:
            if config.colored_console:
                c_formatter = ColoredFormatter(
                    config.fmt,
                    style=config.style,
                    colors=config.console_colors
                )
            else:
                c_formatter = logging.Formatter(config.fmt, style=config.style)
            s_handler = logging.StreamHandler()
            s_handler.setLevel(config.console_level or config.level)
            s_handler.setFormatter(c_formatter)
            self._logger.addHandler(s_handler)

        if config.file_name is not None:
            if config.file_name_no_run_id:
                file_name = config.file_name
            else:
                file_name = ModelLogger.build_file_name(
                    config.file_name, self._run_id, config.file_name_sep)
            # Каждый прогон пишет в отдельный файл
            f_handler = logging.FileHandler(file_name, mode='w')
            f_handler.setLevel(config.file_level or config.level)
            f_handler.setFormatter(
                logging.Formatter(config.fmt, style=config.style))
            self._logger.addHandler(f_handler)

        self._logger.propagate = False
        self._logger.setLevel(config.level)
        self._setup_was_called = True

    def _extra(self) -> dict:
        return {"simTime": self.time_getter(), "runId": self._run_id}

    def log(self, level: int, msg, *args, **kwargs):
        # stacklevel=3: пропускаем log() и обертку debug()/info()/...
        kwargs.setdefault("stacklevel", 3)
        self._logger.log(level, msg, *args, extra=self._extra(), **kwargs)

    def debug(self, msg, *args, **kwargs):
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg, *args, **kwargs):
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg, *args, **kwargs):
        self.log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg, *args, **kwargs):
        self.log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg, *args, **kwargs):
        self.log(logging.ERROR, msg, *args, exc_info=True, **kwargs)

    def is_enabled_for(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    @staticmethod
    def build_file_name(file_name: str, run_id: int, sep: str = "_"):
        """Построить имя файла журнала.

        "ping.log" и run_id=123 дают "ping_123.log", "ping" - "ping_123".
        Расширение, отличное от "log", не учитывается ("ping.txt_123").
        """
        file_name = file_name.strip()
        ext_pos = file_name.rfind('.')
        if ext_pos >= 0 and file_name[ext_pos+1:].lower() == "log":
            return file_name[:ext_pos] + sep + str(run_id) + file_name[ext_pos:]
        return file_name + sep + str(run_id)
