from typing import TextIO

from pingsim.sim import Simulator
from .config import Config, NetworkParams
from .model import Model
from .objects import Report


def initialize(
    sim: Simulator,
    config: Config,
    network_params: NetworkParams,
    stop_time: float | None = None,
    num_apps: int = 1,
    out: TextIO | None = None,
):
    # Init context
    model = Model(
        config=config,
        network_params=network_params,
        logger=sim.logger,
        stop_time=stop_time,
        num_apps=num_apps,
        out=out,
    )
    sim.context = model
    # Schedule the first events
    for app in model.apps:
        sim.call(app.start, msg=f"start ping {app}")
        if stop_time is not None:
            sim.schedule(stop_time, app.stop, msg=f"stop ping {app}")


def finalize(sim: Simulator) -> list[Report]:
    assert isinstance(sim.context, Model)
    # noinspection PyTypeChecker
    model: Model = sim.context

    # Ядро могло остановиться по пределу времени или числа событий,
    # а приложения еще работают: останавливаем, чтобы получить отчеты.
    for app in model.apps:
        if app.state == app.State.RUNNING:
            app.stop(sim)
    return [app.report for app in model.apps if app.report is not None]
