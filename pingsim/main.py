import click
import importlib
import logging
import pkgutil


logger = logging.getLogger(__name__)

models_list = []  # Заполняется при импорте, см. __initialize__()


@click.group
def cli():
    pass


@cli.command('list')
def list_models():
    """Выводит список моделей."""
    for model_name in models_list:
        print(f"* {model_name}")


@cli.group('run')
def run():
    """Запустить модель."""
    pass


#############################################################################
# ИНИЦИАЛИЗАЦИЯ
#
# Каждый подпакет pingsim.models, в котором есть модуль cli.py с click-
# командой `cli_run`, добавляется в группу `run` под именем подпакета:
#
#   pingsim/models/ping/cli.py: cli_run()  ->  `sim run ping ...`
#
# Имена найденных моделей выводит `sim list`.
#############################################################################
def __initialize__():
    from pingsim import models
    for submodule in pkgutil.iter_modules(models.__path__):
        name = submodule.name
        try:
            module = importlib.import_module('.cli', f'pingsim.models.{name}')
        except ModuleNotFoundError:
            logger.warning("model %s has no cli module, skipped", name)
            continue
        cmd = getattr(module, "cli_run", None)
        if not isinstance(cmd, click.Command):
            logger.warning("model %s: cli_run must be a click command", name)
            continue
        run.add_command(cmd, name)
        models_list.append(name)


__initialize__()


if __name__ == '__main__':
    cli()
