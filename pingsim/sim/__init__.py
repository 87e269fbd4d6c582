from .simulator import Simulator, build_simulation, Handler, Initializer, \
    Finalizer, SchedulingInPastError, EventId, ExitReason, ExecutionStats, \
    EventQueue, Kernel, run_simulation

from .logger import ModelLogger, ModelLoggerConfig, MODEL_LOGGER_FORMAT, \
    ColoredFormatter

from .trace import TraceSource, TraceSink
