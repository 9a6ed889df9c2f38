# === FILE: bookmark_meta/config.py ===
"""
Модуль для загрузки и валидации конфигурации BookmarkMeta.
Используется Pydantic для описания схемы и проверки данных.

Источники значений (по возрастанию приоритета):
  1. значения по умолчанию в :class:`FetchConfig`;
  2. YAML/JSON-файл, переданный в :func:`load_config`;
  3. переменные окружения ``BOOKMARK_MAX_CONTENT_SIZE`` и ``BOOKMARK_FETCH_TIMEOUT``.
"""
from __future__ import annotations

import errno
import json
import os
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field

DEFAULT_MAX_CONTENT_SIZE = 1_048_576
DEFAULT_FETCH_TIMEOUT_MS = 10_000
DEFAULT_USER_AGENT = "BookmarkMeta-Bot/1.0"
DEFAULT_ACCEPT = "text/html,application/xhtml+xml"

ENV_MAX_CONTENT_SIZE = "BOOKMARK_MAX_CONTENT_SIZE"
ENV_FETCH_TIMEOUT = "BOOKMARK_FETCH_TIMEOUT"


class FetchConfig(BaseModel):
    """Настройки конвейера загрузки метаданных."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_content_size: int = Field(DEFAULT_MAX_CONTENT_SIZE, gt=0, description="Лимит тела ответа (байт).")
    fetch_timeout_ms: int = Field(DEFAULT_FETCH_TIMEOUT_MS, gt=0, description="Таймаут на один запрос (мс).")
    timeout_policy: Literal["per_hop", "cumulative"] = Field(
        "per_hop", description="Таймаут на каждый переход или общий на всю цепочку редиректов."
    )
    max_redirects: int = Field(5, ge=0, description="Максимальное число редиректов.")
    max_url_length: int = Field(2048, gt=0, description="Максимальная длина входного URL.")
    user_agent: str = Field(DEFAULT_USER_AGENT, min_length=1, description="Заголовок User-Agent.")
    accept: str = Field(DEFAULT_ACCEPT, min_length=1, description="Заголовок Accept.")
    dns_timeout_ms: int = Field(5_000, gt=0, description="Таймаут DNS-проверки (мс).")
    strict_dns: bool = Field(False, description="Отклонять URL, если DNS-резолвинг не удался.")

    user_rate_limit: int = Field(30, ge=1, description="Запросов на пользователя за окно.")
    ip_rate_limit: int = Field(60, ge=1, description="Запросов на IP-адрес за окно.")
    rate_window_ms: int = Field(60_000, gt=0, description="Окно лимитера (мс).")
    sweep_interval_s: float = Field(300.0, gt=0, description="Период очистки записей лимитера (с).")
    stale_after_ms: int = Field(3_600_000, gt=0, description="Возраст записи лимитера для удаления (мс).")

    @property
    def fetch_timeout(self) -> float:
        """Таймаут в секундах, как его ожидает aiohttp."""
        return self.fetch_timeout_ms / 1000.0

    @property
    def dns_timeout(self) -> float:
        return self.dns_timeout_ms / 1000.0

    def default_headers(self) -> Dict[str, str]:
        return {"User-Agent": self.user_agent, "Accept": self.accept}


def _env_int(env: Mapping[str, str], name: str) -> Optional[int]:
    """Положительное целое из окружения; пустое, нулевое или мусорное значение -> None."""
    raw = (env.get(name) or "").strip()
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


def env_overrides(env: Optional[Mapping[str, str]] = None) -> dict[str, Any]:
    """Собирает переопределения из переменных окружения."""
    env = os.environ if env is None else env
    overrides: dict[str, Any] = {}
    size = _env_int(env, ENV_MAX_CONTENT_SIZE)
    if size is not None:
        overrides["max_content_size"] = size
    timeout = _env_int(env, ENV_FETCH_TIMEOUT)
    if timeout is not None:
        overrides["fetch_timeout_ms"] = timeout
    return overrides


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Неправильный YAML в {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Верхний уровень YAML должен быть mapping, получено {type(data).__name__}")
    return data


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8")) or {}
    except json.JSONDecodeError as exc:
        raise ValueError(f"Неправильный JSON в {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Верхний уровень JSON должен быть mapping, получено {type(data).__name__}")
    return data


def load_config(
    path: Union[str, Path, None] = None,
    env: Optional[Mapping[str, str]] = None,
) -> FetchConfig:
    """
    Читает YAML или JSON (если указан путь), накладывает переменные окружения
    и возвращает проверенный объект FetchConfig.
    При отсутствии указанного файла бросает FileNotFoundError.
    """
    data: dict[str, Any] = {}
    if path is not None:
        path_obj = Path(path).expanduser().resolve()
        if not path_obj.is_file():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(path_obj))

        suffix = path_obj.suffix.lower()
        if suffix in (".yaml", ".yml"):
            data = _read_yaml(path_obj)
        elif suffix == ".json":
            data = _read_json(path_obj)
        else:
            raise ValueError(f"Неподдерживаемый формат конфига: {suffix}")

    data.update(env_overrides(env))
    return FetchConfig(**data)


__all__ = ["FetchConfig", "load_config", "env_overrides"]
