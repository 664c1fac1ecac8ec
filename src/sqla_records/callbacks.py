"""Lifecycle callbacks.

Mark methods with the decorators below; they run in definition order (base
classes first) at the matching point of ``save()``/``delete()``::

    class User(Base):
        @before_save
        def normalize_email(self):
            self.email = self.email.lower()

        @before_delete
        def keep_admins(self):
            return not self.admin  # returning False halts the delete

Only ``before_*`` callbacks can halt, and only by returning ``False``
(``None`` does not halt).  ``after_*`` return values are ignored.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any, Final, TypeVar

from .datastructures import frozendict


if TYPE_CHECKING:
    from .record import Record

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

_MARKER: Final[str] = "__record_callbacks__"


class LifecyclePoint(str, enum.Enum):
    BEFORE_CREATE = "before_create"
    AFTER_CREATE = "after_create"
    BEFORE_UPDATE = "before_update"
    AFTER_UPDATE = "after_update"
    BEFORE_SAVE = "before_save"
    AFTER_SAVE = "after_save"
    BEFORE_DELETE = "before_delete"
    AFTER_DELETE = "after_delete"

    @property
    def can_halt(self) -> bool:
        return self.value.startswith("before_")


def callback(point: LifecyclePoint | str) -> Callable[[F], F]:
    """Register the decorated method for *point*."""
    point = LifecyclePoint(point)

    def _mark(fn: F) -> F:
        points: tuple[LifecyclePoint, ...] = getattr(fn, _MARKER, ())
        setattr(fn, _MARKER, (*points, point))
        return fn

    return _mark


before_create = callback(LifecyclePoint.BEFORE_CREATE)
after_create = callback(LifecyclePoint.AFTER_CREATE)
before_update = callback(LifecyclePoint.BEFORE_UPDATE)
after_update = callback(LifecyclePoint.AFTER_UPDATE)
before_save = callback(LifecyclePoint.BEFORE_SAVE)
after_save = callback(LifecyclePoint.AFTER_SAVE)
before_delete = callback(LifecyclePoint.BEFORE_DELETE)
after_delete = callback(LifecyclePoint.AFTER_DELETE)


def collect_callbacks(
    mro: Iterable[type],
) -> frozendict[str, tuple[Callable[..., Any], ...]]:
    """Gather marked methods into one ordered chain per lifecycle point.

    Args:
        mro: Classes from most-derived to base (``cls.__mro__``).

    Returns:
        Mapping of point name to callbacks in registration order.  A method
        overridden in a subclass keeps its base-class position.
    """
    by_name: dict[str, tuple[Callable[..., Any], tuple[LifecyclePoint, ...]]] = {}
    for klass in reversed(tuple(mro)):
        for name, value in vars(klass).items():
            fn = value.__func__ if isinstance(value, (staticmethod, classmethod)) else value
            if points := getattr(fn, _MARKER, None):
                by_name[name] = (fn, points)

    chains: dict[str, list[Callable[..., Any]]] = {}
    for fn, points in by_name.values():
        for point in points:
            chains.setdefault(point.value, []).append(fn)

    return frozendict({point: tuple(chain) for point, chain in chains.items()})


def run_callbacks(record: Record, point: LifecyclePoint) -> bool:
    """Run the callbacks registered for *point* on *record*.

    Returns:
        ``False`` when a halting-capable callback returned ``False``; the
        remaining callbacks are skipped.  ``True`` otherwise.
    """
    chain = type(record).__descriptor__.callbacks.get(point.value, ())
    for fn in chain:
        result = fn(record)
        if point.can_halt and result is False:
            logger.debug(
                "%s halted by %s.%s", point.value, type(record).__name__, fn.__name__
            )
            return False

    return True
