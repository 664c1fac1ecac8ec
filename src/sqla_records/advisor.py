from __future__ import annotations

import warnings
from typing import TYPE_CHECKING

from .config import get_settings


if TYPE_CHECKING:
    from .record import Record


class NPlusOneWarning(UserWarning):
    """A relationship was lazy-loaded instead of eager-loaded."""


def report_lazy_load(record: Record, relationship: str) -> None:
    """Warn, in development mode only, that *relationship* was lazy-loaded.

    Purely diagnostic: it never raises (unless warning filters escalate it)
    and never changes what the accessor returns.
    """
    if not get_settings().development:
        return

    model = type(record).__name__
    warnings.warn(
        f"N+1 query: {model}.{relationship} was lazy-loaded for {model}"
        f"(pk={record.primary_key!r}). Eager-load it with "
        f"{model}.includes({relationship!r}) when reading it across many records.",
        NPlusOneWarning,
        stacklevel=4,
    )
