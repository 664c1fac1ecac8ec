"""Runtime settings.

Settings are read once from the environment and can be replaced at runtime::

    from sqla_records import configure

    configure(development=True)

Environment variables:

* ``SQLA_RECORDS_ENV`` -- ``development`` turns on development mode.
* ``SQLA_RECORDS_DEVELOPMENT`` -- explicit on/off switch, wins over ``SQLA_RECORDS_ENV``.
* ``SQLA_RECORDS_DATASOURCE`` -- name of the default datasource.
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Final


ENV_PREFIX: Final[str] = "SQLA_RECORDS_"
_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})


def _now() -> datetime:
    return datetime.now().replace(microsecond=0)


@dataclass(slots=True, frozen=True)
class Settings:
    development: bool = False
    default_datasource: str = "default"
    created_at_column: str = "created_at"
    updated_at_column: str = "updated_at"
    clock: Callable[[], datetime] = field(default=_now, compare=False)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``SQLA_RECORDS_*`` environment variables."""
        env = os.environ if environ is None else environ

        development = env.get(f"{ENV_PREFIX}ENV", "").strip().lower() == "development"
        if (flag := env.get(f"{ENV_PREFIX}DEVELOPMENT")) is not None:
            development = flag.strip().lower() in _TRUTHY

        return cls(
            development=development,
            default_datasource=env.get(f"{ENV_PREFIX}DATASOURCE", "default") or "default",
        )


_settings: Settings = Settings.from_env()


def get_settings() -> Settings:
    """Return the active settings."""
    return _settings


def configure(**changes: Any) -> Settings:
    """Replace the active settings with a copy carrying *changes*."""
    global _settings  # noqa: PLW0603

    _settings = dataclasses.replace(_settings, **changes)
    return _settings


@contextmanager
def override_settings(**changes: Any) -> Iterator[Settings]:
    """Temporarily apply *changes*, restoring the previous settings on exit."""
    global _settings  # noqa: PLW0603

    saved = _settings
    try:
        yield configure(**changes)
    finally:
        _settings = saved
