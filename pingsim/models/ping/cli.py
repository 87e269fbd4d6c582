import logging
import multiprocessing
from typing import Any, Dict, List

import click
from pydantic import ValidationError
from tqdm import tqdm

from pingsim.sim.simulator import (
    build_simulation,
    run_simulation,
    ModelLoggerConfig
)
from pingsim.models.ping.config import Config, NetworkParams, VerboseMode
from pingsim.models.ping.handlers import initialize, finalize
from pingsim.models.ping.objects import Report
from pingsim.models.ping.processing import result_processing


MODEL_NAME = 'Ping'
DEFAULT_INTERVAL = Config.model_fields['interval'].default
DEFAULT_SIZE = Config.model_fields['payload_size'].default
DEFAULT_DELAY = NetworkParams.model_fields['delay'].default
DEFAULT_LOSS_PROB = NetworkParams.model_fields['loss_prob'].default
VARIADIC_ARGS = ('interval', 'size', 'loss', 'delay')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR')


def check_vars_for_multiprocessing(**kwargs):
    '''
    Проверка, указан ли какой-то параметр несколько раз.
    Если такой есть и он один, то выполним несколько прогонов параллельно.
    Если все параметры даны в одном экземпляре, то выполним один прогон.
    Если несколько параметров заданы со множеством значений, это ошибка.
    '''
    variadic = None
    for arg_name in VARIADIC_ARGS:
        if len(kwargs[arg_name]) > 1:
            if variadic is not None:
                raise click.UsageError(
                    "only one argument can have multiple values, "
                    f"not both \"{variadic}\" and \"{arg_name}\"")
            variadic = arg_name
        else:
            kwargs[arg_name] = kwargs[arg_name][0]
    return kwargs, variadic


def build_config(params: Dict[str, Any]) -> tuple[Config, NetworkParams]:
    """Собрать конфигурацию приложения и сети из параметров командной строки."""
    config = Config(
        destination=params['destination'],
        verbosity=VerboseMode(params['verbosity']),
        interval=params['interval'],
        payload_size=params['size'],
        count=params['count'],
        source_address=params.get('source'),
        timeout=params['timeout'],
        traffic_class=params['tos'],
        waypoints=tuple(params.get('waypoint') or ()),
    )
    network_params = NetworkParams(
        delay=params['delay'],
        jitter=params['jitter'],
        loss_prob=params['loss'],
        duplicate_prob=params['dup'],
        num_responders=params['responders'],
        hop_limit=params['hop_limit'],
        unreachable=params['unreachable'],
        seed=params.get('seed'),
    )
    return config, network_params


def build_logger_config(params: Dict[str, Any]) -> ModelLoggerConfig:
    return ModelLoggerConfig(
        level=getattr(logging, params.get('log_level') or 'WARNING'),
        use_console=params.get('log_level') is not None,
        file_name=params.get('log_file'),
    )


def run_model(
    config: Config,
    network_params: NetworkParams,
    logger_config: ModelLoggerConfig,
    stop_time: float | None = None,
    num_apps: int = 1,
    max_real_time: float | None = None,
    max_sim_time: float | None = None,
    max_num_events: int | None = None,
) -> List[Report]:
    _, _, reports = run_simulation(
        build_simulation(
            MODEL_NAME,
            init=initialize,
            init_args=(config, network_params, stop_time, num_apps),
            fin=finalize,
            max_real_time=max_real_time,
            max_sim_time=max_sim_time,
            max_num_events=max_num_events,
            logger_config=logger_config
        ))
    return reports


def prepare_simulation(params: Dict[str, Any]) -> Report:
    """Один прогон с заданными параметрами; отчет первого приложения."""
    config, network_params = build_config(params)
    reports = run_model(
        config, network_params, build_logger_config(params),
        stop_time=params.get('deadline'),
        num_apps=params.get('apps', 1),
    )
    return reports[0]


def prepare_multiple_simulation(variadic: str, **kwargs) -> tuple[list, list]:
    '''
    Какой-то параметр варьируется. Запускаем параллельно прогоны через
    пул рабочих, убрав дубликаты и отсортировав значения по возрастанию.
    Подробный вывод в консоль в серии отключается.
    '''
    values = sorted(set(kwargs[variadic]))
    args_list = []
    for value in values:
        params = dict(kwargs)
        params[variadic] = value
        params['verbosity'] = VerboseMode.SILENT.value
        args_list.append(params)
    # Ошибки конфигурации ловим до запуска пула
    for params in args_list:
        build_config(params)

    jobs = kwargs.get('jobs') or multiprocessing.cpu_count()
    with multiprocessing.Pool(jobs) as pool:
        reports = list(tqdm(
            pool.imap(prepare_simulation, args_list),
            total=len(args_list), desc=f"{MODEL_NAME}: {variadic}",
        ))
    return values, reports


@click.command()
@click.option(
    '-d', '--destination', required=True,
    help='IPv4 или IPv6 адрес назначения (групповой или широковещательный '
         'адрес - ответят несколько узлов)'
)
@click.option(
    '-c', '--count', default=0, show_default=True,
    help='Сколько запросов отправить (0 - пока не истечет --deadline)'
)
@click.option(
    '-i', '--interval', default=(DEFAULT_INTERVAL,), multiple=True,
    type=float, show_default=True,
    help='Интервал между запросами, сек. Можно задать несколько значений'
)
@click.option(
    '-s', '--size', default=(DEFAULT_SIZE,), multiple=True, type=int,
    show_default=True,
    help='Размер данных запроса, байт (не меньше 16). Можно задать '
         'несколько значений'
)
@click.option(
    '-W', '--timeout', default=1.0, show_default=True,
    help='Ожидание после последнего запроса, если нет замеров RTT, сек.'
)
@click.option(
    '-Q', '--tos', default=0, show_default=True, help='Байт TOS / Traffic Class'
)
@click.option('-I', '--source', default=None, help='Локальный адрес отправителя')
@click.option(
    '-r', '--waypoint', multiple=True,
    help='Промежуточный узел IPv6 (loose source routing), можно несколько'
)
@click.option(
    '-v', '--verbosity', type=click.Choice([m.value for m in VerboseMode]),
    default=VerboseMode.VERBOSE.value, show_default=True
)
@click.option(
    '-w', '--deadline', type=float, default=None,
    help='Модельное время остановки приложения, сек.'
)
@click.option(
    '-ch', '--delay', default=(DEFAULT_DELAY,), multiple=True, type=float,
    show_default=True,
    help='Задержка в канале в одну сторону, сек. Можно несколько значений'
)
@click.option(
    '-l', '--loss', default=(DEFAULT_LOSS_PROB,), multiple=True, type=float,
    show_default=True,
    help='Вероятность потери пакета. Можно задать несколько значений'
)
@click.option('--jitter', default=0.0, show_default=True,
              help='Средняя случайная добавка к RTT, сек.')
@click.option('--dup', default=0.0, show_default=True,
              help='Вероятность дублирования ответа')
@click.option('-n', '--responders', default=1, show_default=True,
              help='Число ответчиков для группового адреса')
@click.option('--hop-limit', default=64, show_default=True,
              help='TTL / Hop Limit в ответах')
@click.option('--unreachable', is_flag=True, default=False,
              help='Адрес недостижим: шлюз отвечает Destination Unreachable')
@click.option('--seed', type=int, default=None,
              help='Зерно генератора случайных чисел')
@click.option('--apps', default=1, show_default=True,
              help='Сколько ping-приложений запустить на узле')
@click.option('--log-level', type=click.Choice(LOG_LEVELS), default=None,
              help='Выводить журнал модели в консоль с этим уровнем')
@click.option('--log-file', default=None, help='Файл журнала модели')
@click.option('--save', is_flag=True, default=False,
              help='Сохранить результаты в JSON (папка results)')
@click.option('-j', '--jobs', type=int, default=None,
              help='Число процессов для серии прогонов')
def cli_run(**kwargs):
    '''
    Точка входа модели Ping: ping в имитируемой сети.
    '''
    kwargs, variadic = check_vars_for_multiprocessing(**kwargs)
    if kwargs['count'] == 0 and kwargs['deadline'] is None:
        raise click.UsageError("either --count or --deadline must be set")

    try:
        if variadic is None:
            values, reports = [], [prepare_simulation(kwargs)]
        else:
            values, reports = prepare_multiple_simulation(variadic, **kwargs)
    except ValidationError as err:
        raise click.UsageError(str(err)) from err
    result_processing(kwargs, variadic, values, reports,
                      save_results=kwargs['save'])


if __name__ == '__main__':
    cli_run()
