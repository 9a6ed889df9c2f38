# === FILE: bookmark_meta/cli.py ===
#!/usr/bin/env python3
"""
Точка входа для BookmarkMeta через командную строку.

Команды:
  fetch URL   Загрузить title и favicon страницы (через весь защищённый конвейер)
  check URL   Только проверить URL валидатором (протокол, хост, IP, DNS)
  config      Показать текущую конфигурацию

Общие опции:
  --config PATH       Путь к YAML/JSON-конфигу (по умолчанию — значения по умолчанию + окружение)
  --log-level LEVEL   Уровень логирования (DEBUG, INFO, ...)
  --log-file PATH     Файл для логов (stderr, если не указан)
  --audit-file PATH   Отдельный файл для событий безопасности

Дополнительно:
  --version, -v       Показать версию BookmarkMeta

Пример:
  bookmark-meta fetch https://example.com/ --pretty
"""
import asyncio
import json
import sys
from pathlib import Path

import click

from bookmark_meta import __version__
from bookmark_meta.config import load_config
from bookmark_meta.errors import Rejected
from bookmark_meta.logger import init_logging
from bookmark_meta.security.validator import UrlValidator
from bookmark_meta.service import ServiceFailure, fetch_metadata

CONTEXT_SETTINGS = dict(help_option_names=["--help"])


def print_error(message: str):
    click.secho(message, fg='red', err=True)
    sys.exit(1)


async def check_url(url: str, cfg) -> Rejected | None:
    validator = UrlValidator(
        resolve_timeout=cfg.dns_timeout,
        strict_dns=cfg.strict_dns,
        max_url_length=cfg.max_url_length,
    )
    try:
        outcome = await validator.validate(url)
    finally:
        await validator.close()
    return outcome if isinstance(outcome, Rejected) else None


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(__version__, '--version', '-v', message='BookmarkMeta, version %(version)s')
@click.option(
    '--config', '-c', 'config_path',
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Путь к файлу конфигурации YAML/JSON.'
)
@click.option(
    '--log-level', 'log_level',
    default='WARNING', show_default=True,
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']),
    help='Уровень логирования'
)
@click.option(
    '--log-file', 'log_file',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Путь к файлу логов (stderr, если не указан)'
)
@click.option(
    '--audit-file', 'audit_file',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Отдельный файл для событий безопасности'
)
@click.pass_context
def cli(ctx, config_path, log_level, log_file, audit_file):
    """Группа команд BookmarkMeta CLI."""
    init_logging(level=log_level, log_file=log_file, audit_file=audit_file)
    try:
        cfg = load_config(config_path)
    except Exception as e:
        print_error(f'Ошибка загрузки конфигурации: {e}')
    ctx.ensure_object(dict)
    ctx.obj['config'] = cfg


@cli.command('fetch', context_settings=CONTEXT_SETTINGS)
@click.argument('url')
@click.option('--user', 'user_id', default='cli', show_default=True, help='Идентификатор пользователя для лимитера.')
@click.option('--ip', 'client_ip', default=None, help='Адрес клиента для второго лимитера.')
@click.option('--pretty', is_flag=True, help='Форматировать JSON (отступ 2).')
@click.pass_context
def fetch(ctx, url, user_id, client_ip, pretty):
    """Загрузить метаданные закладки и вывести JSON."""
    cfg = ctx.obj['config']
    result = asyncio.run(fetch_metadata(url, cfg, user_id=user_id, client_ip=client_ip))
    if isinstance(result, ServiceFailure):
        print_error(f'Ошибка ({result.category.value}): {result.message}')
    click.echo(json.dumps(result.to_dict(), ensure_ascii=False, indent=2 if pretty else None))


@cli.command('check', context_settings=CONTEXT_SETTINGS)
@click.argument('url')
@click.pass_context
def check(ctx, url):
    """Проверить URL валидатором без загрузки."""
    cfg = ctx.obj['config']
    rejected = asyncio.run(check_url(url, cfg))
    if rejected is not None:
        print_error(f'Отклонено: {rejected.kind.value}: {rejected.reason}')
    click.echo(f'Разрешено: {url}')


@cli.command('config', context_settings=CONTEXT_SETTINGS)
@click.pass_context
def show_config(ctx):
    """Показать текущую конфигурацию в JSON."""
    cfg = ctx.obj['config']
    click.echo(cfg.model_dump_json(indent=2))


if __name__ == "__main__":
    cli()
