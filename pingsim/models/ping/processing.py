import json
import os
import time

from tabulate import tabulate

from .objects import Report


RESULTS_DIRECTORY = "results"
REPORT_FIELDS = ("transmitted", "received", "duplicate", "failed", "loss",
                 "duration", "rtt_min", "rtt_avg", "rtt_max", "rtt_stddev")


def save_results_to_file(initial_data: dict, res: list[dict]) -> str:
    current_time = time.strftime("%Y%m%d_%H%M%S", time.localtime())
    os.makedirs(RESULTS_DIRECTORY, exist_ok=True)
    filename = os.path.join(RESULTS_DIRECTORY,
                            f"ping_res-{current_time}.json")
    with open(filename, "w") as f:
        json.dump({"params": initial_data, "results": res}, f, default=str,
                  indent=2)
    return filename


def print_results_to_terminal(variadic: str, values: list,
                              reports: list[Report]) -> None:
    """Таблица результатов серии прогонов с варьируемым параметром."""
    rows = [
        [value] + [getattr(report, name) for name in REPORT_FIELDS]
        for value, report in zip(values, reports)
    ]
    print(f"\nРезультаты серии прогонов ({variadic}):\n")
    print(tabulate(rows, headers=(variadic,) + REPORT_FIELDS,
                   tablefmt="pretty", missingval="-"))


def result_processing(initial_data: dict, variadic: str | None,
                      values: list, reports: list[Report],
                      save_results: bool = False) -> None:
    """
    Обработка результатов модели.

    Для серии прогонов выводит таблицу в терминал (одиночный прогон уже
    напечатал отчет сам). Если save_results = True, параметры и отчеты
    сохраняются в JSON в папке results.
    """
    res = [report.model_dump() for report in reports]
    if save_results:
        filename = save_results_to_file(initial_data, res)
        print(f"Результаты сохранены в {filename}")
    if variadic is not None:
        print_results_to_terminal(variadic, values, reports)
