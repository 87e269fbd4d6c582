from dataclasses import dataclass
from enum import Enum
import heapq
import itertools
import time
from typing import Any, Callable, Iterable, NewType, Tuple, Iterator

from pingsim.sim.logger import ModelLogger, ModelLoggerConfig


EventId = NewType('EventId', int)

# Сигнатуры функций, которые передаются ядру:
Finalizer = Callable[["Simulator"], object]
Initializer = Callable[..., None]
Handler = Callable[..., None]


class SchedulingInPastError(ValueError):
    """Попытка запланировать событие в прошлом (отрицательная задержка)."""
    ...


class ExitReason(Enum):
    NO_MORE_EVENTS = 0
    REACHED_REAL_TIME_LIMIT = 1
    REACHED_SIM_TIME_LIMIT = 2
    STOPPED = 3
    REACHED_EVENTS_LIMIT = 4


@dataclass
class ExecutionStats:
    '''
    Результаты одного прогона ядра.

    Some args:
        sim_time - модельное время после завершения
        time_elapsed - реальная длительность прогона в секундах
        last_handler - последний вызванный обработчик
    '''
    num_events_processed: int
    sim_time: float
    time_elapsed: float
    exit_reason: ExitReason | None
    stop_message: str = ""
    last_handler: Handler | None = None


ExecResult = Tuple[ExecutionStats, object | dict, object | None]


class Simulator:
    """
    Интерфейс ядра, который видят обработчики событий.

    Объект передается первым аргументом во все обработчики. Через него
    модель планирует и отменяет события, узнает модельное время и пишет
    в журнал. Поле `context` - общий для всех обработчиков объект модели.
    """

    def __init__(self, kernel: "Kernel", context: object | None = None):
        self._kernel = kernel
        self._context: object | dict = {} if context is None else context

    @property
    def context(self) -> object | dict:
        """Получить контекст модели."""
        return self._context

    @context.setter
    def context(self, ctx: object | dict) -> None:
        self._context = ctx

    def schedule(
            self,
            delay: float,
            handler: Handler,
            args: Iterable[Any] = (),
            msg: str = ""
    ) -> EventId:
        """Запланировать событие через `delay` и вернуть его идентификатор.

        События с одинаковым временем наступления обрабатываются в порядке
        планирования.

        Args:
            delay (float): интервал времени до наступления события
            handler (Handler): обработчик, вызывается как handler(sim, *args)
            args (Iterable[Any], optional): аргументы для обработчика
            msg (str, optional): комментарий, выводится в журнал отладки

        Raises:
            SchedulingInPastError: если `delay < 0`
            TypeError: если обработчик не является вызываемым объектом

        Returns:
            EventId: идентификатор события
        """
        return self._kernel.schedule(delay, handler, args, msg)

    def call(
            self,
            handler: Handler,
            args: Iterable[Any] = (),
            msg: str = ""
    ) -> EventId:
        """Запланировать событие на текущий момент (`schedule()` с нулем)."""
        return self._kernel.schedule(0, handler, args, msg)

    def cancel(self, event_id: EventId | None) -> int:
        """
        Отменить событие с идентификатором `event_id`.

        Если событие уже наступило, было отменено ранее или вообще не
        планировалось (в том числе `event_id is None`), метод ничего
        не делает.

        Returns:
            int: число отмененных событий (0 или 1)
        """
        return self._kernel.cancel(event_id)

    def stop(self, msg: str = "") -> None:
        """Прекратить выполнение модели."""
        self._kernel.stop(msg=msg)

    @property
    def time(self) -> float:
        """Текущее модельное время (секунды)."""
        return self._kernel.get_model_time()

    @property
    def logger(self) -> ModelLogger:
        return self._kernel.logger


class EventQueue:
    '''
    Очередь событий на основе приоритетной кучи (heapq).

    Записи кучи имеют вид [time, event_id, task]. Идентификаторы растут
    монотонно, поэтому при равном времени первым извлекается событие,
    запланированное раньше. Отмена не перестраивает кучу: у записи
    обнуляется task, а pop() такие записи пропускает.
    '''
    def __init__(self):
        self._event_list = []
        self._event_dict = {}
        self._next_id = itertools.count()

    def push(self, time, task):
        '''Добавить событие и вернуть его уникальный номер.'''
        event_id = next(self._next_id)
        event = [time, event_id, task]
        self._event_dict[event_id] = event
        heapq.heappush(self._event_list, event)
        return event_id

    def pop(self):
        '''
        Извлечь ближайшее неотмененное событие.

        :raises:
            - KeyError: если очередь пуста
        '''
        if self.empty:
            raise KeyError("pop from an empty event queue")
        (time, event_id, task) = heapq.heappop(self._event_list)
        while task is None:
            (time, event_id, task) = heapq.heappop(self._event_list)
        self._event_dict.pop(event_id)
        return time, event_id, task

    def __len__(self):
        return len(self._event_dict)

    def cancel(self, event_id):
        '''Отменить событие, вернуть его запись или None.'''
        if event_id is not None and event_id in self._event_dict:
            event = self._event_dict.pop(event_id)
            event[-1] = None
            return event
        return None

    def clear(self):
        self._event_list.clear()
        self._event_dict.clear()

    @property
    def empty(self):
        return len(self._event_dict) == 0

    def to_list(self):
        '''Неотмененные события в порядке наступления.'''
        return sorted(list(event) for event in self._event_dict.values())


class Kernel:
    '''
    Ядро дискретно-событийной симуляции.

    Some args:
        _sim_time - модельное время (секунды)
        _t_start - реальное время начала прогона
        _max_sim_time, _max_real_time, _max_num_events - условия остановки
        lhandler - последний исполненный обработчик
    '''
    def __init__(self, model_name: str):
        self._model_name = model_name
        self._logger = ModelLogger(self._model_name)
        self._logger.set_time_getter(self.get_model_time)

        self._initializer: Initializer | None = None
        self._initializer_args: Iterable[Any] = ()
        self._finalize: Finalizer | None = None

        self._queue = EventQueue()

        # Время и часы
        self._sim_time = 0.0
        self._t_start = None
        self._max_sim_time = None
        self._max_real_time = None
        self._max_num_events = None

        # Прочее
        self.context = None
        self._user_stop = False
        self.stop_reason = None
        self.stop_msg = ''
        self._num_events_served = 0
        self.lhandler = None

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def logger(self) -> ModelLogger:
        return self._logger

    def schedule(
            self,
            delay: float,
            handler: Handler,
            args: Iterable[Any] = (),
            msg: str = ""
    ) -> EventId:
        '''Планирование нового события'''
        if delay < 0:
            raise SchedulingInPastError(
                f"can not schedule event {delay} s in the past")
        if not callable(handler):
            raise TypeError(f"handler {handler!r} is not callable")
        event_id = self._queue.push(
            self._sim_time + delay, (handler, tuple(args), msg))
        if msg:
            self.logger.debug("scheduled #%d at %.6f: %s",
                              event_id, self._sim_time + delay, msg)
        return event_id

    def cancel(self, event_id: EventId | None) -> int:
        '''Отменить событие с идентификатором `event_id`'''
        return 0 if self._queue.cancel(event_id) is None else 1

    def stop(self, msg: str) -> None:
        self.stop_reason = ExitReason.STOPPED
        self._user_stop = True
        self.stop_msg = msg
        self.logger.debug('simulation stopped: %s', msg)

    def stop_conditions(self) -> bool:
        '''Возвращает True, если модель пора остановить'''
        if self._user_stop:
            return True
        if (self._max_sim_time is not None and
                self._sim_time > self._max_sim_time):
            self.stop_reason = ExitReason.REACHED_SIM_TIME_LIMIT
            return True
        if (self._max_real_time is not None and
                self.real_time_elapsed > self._max_real_time):
            self.stop_reason = ExitReason.REACHED_REAL_TIME_LIMIT
            return True
        if (self._max_num_events is not None and
                self._num_events_served >= self._max_num_events):
            self.stop_reason = ExitReason.REACHED_EVENTS_LIMIT
            return True
        return False

    def get_model_time(self) -> float:
        return self._sim_time

    def set_initializer(
            self,
            fn: Initializer,
            args: Iterable[Any] = ()
    ) -> None:
        self._initializer = fn
        self._initializer_args = args

    def set_finalizer(self, fn: Finalizer) -> None:
        self._finalize = fn

    def set_context(self, context: object) -> None:
        self.context = context

    def set_max_sim_time(self, value: float) -> None:
        self._max_sim_time = value

    def set_max_real_time(self, value: float) -> None:
        self._max_real_time = value

    def set_max_num_events(self, value: int) -> None:
        self._max_num_events = value

    def future_events(self) -> list[tuple[EventId, float, Handler]]:
        """Список запланированных событий: (id, время, обработчик)."""
        return [(event_id, t, task[0])
                for (t, event_id, task) in self._queue.to_list()]

    def build_runner(self) -> Iterator[ExecResult]:
        """
        Выполнить модель: вызвать инициализатор, затем извлекать события
        из очереди и вызывать их обработчики, пока не сработает одно из
        условий остановки или не кончатся события.

        Yields:
            (ExecutionStats, контекст модели, результат финализатора)
        """
        self._logger.setup()
        self._logger.debug("simulation started")

        self._num_events_served = 0
        self._t_start = time.time()

        sim = Simulator(self, self.context)
        self._initializer(sim, *self._initializer_args)

        while not self._queue.empty and not self.stop_conditions():
            t, event_id, item = self._queue.pop()
            self._sim_time = t
            handler, args, msg = item
            handler(sim, *args)
            self._num_events_served += 1
            self.lhandler = handler

        if self.stop_reason is None and self._queue.empty:
            self.stop_reason = ExitReason.NO_MORE_EVENTS

        fin_ret = self._finalize(sim) if self._finalize else None
        self._logger.debug("simulation finished: %s, %d events",
                           self.stop_reason, self._num_events_served)

        yield (
            ExecutionStats(
                num_events_processed=self._num_events_served,
                sim_time=self._sim_time,
                time_elapsed=self.real_time_elapsed,
                exit_reason=self.stop_reason,
                stop_message=self.stop_msg,
                last_handler=self.lhandler,
            ),
            sim.context,
            fin_ret,
        )

    @property
    def real_time_elapsed(self):
        return time.time() - self._t_start


def build_simulation(
        model_name: str,
        init: Initializer,
        init_args: Iterable[Any] = (),
        fin: Finalizer | None = None,
        context: object | None = None,
        max_real_time: float | None = None,
        max_sim_time: float | None = None,
        max_num_events: int | None = None,
        logger_config: ModelLoggerConfig | None = None,
) -> Iterator[ExecResult]:
    """
    Подготовить прогон модели.

    Условия остановки (любое сочетание или ни одного):

    - по реальному времени (секунды);
    - по модельному времени;
    - по числу обработанных событий.

    Функция `init` обязательна, ее задача - создать модель и запланировать
    первые события. Если передана `fin`, она вызывается после завершения,
    ее результат возвращается третьим элементом кортежа.

    Args:
        model_name: название модели (и имя логгера)
        init: функция инициализации
        init_args: аргументы функции инициализации
        fin: функция завершения
        context: контекст (словарь или объект)
        max_real_time: предел реального времени
        max_sim_time: предел модельного времени
        max_num_events: предел числа событий
        logger_config: конфигурация логгера

    Returns:
        Генератор, выдающий (stats, context, fin_ret)
    """
    kernel = Kernel(model_name)
    kernel.logger.setup(logger_config)

    kernel.set_initializer(init, init_args)
    if fin is not None:
        kernel.set_finalizer(fin)
    if max_real_time is not None:
        kernel.set_max_real_time(max_real_time)
    if max_sim_time is not None:
        kernel.set_max_sim_time(max_sim_time)
    if max_num_events is not None:
        kernel.set_max_num_events(max_num_events)
    kernel.set_context(context)

    return kernel.build_runner()


def run_simulation(sim: Iterator[ExecResult]) -> ExecResult:
    """Прогнать генератор из `build_simulation()` до конца."""
    ret = None
    for ret in sim:
        pass
    if ret is None:
        raise RuntimeError("simulation yield no results")
    return ret
