"""Record validation.

Rules are declared per attribute on the model class::

    class User(Base):
        __validates__ = {
            "name": [Required(), Length(max=100)],
            "email": [Required(), Format(r"^[^@\\s]+@[^@\\s]+$")],
            "age": Numericality(only_integer=True, gte=0),
        }

Validation never raises; it produces an ``attribute -> [messages]`` map.
Every rule except :class:`Required` lets ``None`` through.
"""

from __future__ import annotations

import numbers
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Collection, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .datastructures import MISSING, frozendict


if TYPE_CHECKING:
    from .record import Record


class Rule(ABC):
    """Abstract validation rule.

    Example:
        class Positive(Rule):
            message = "The {field} must be positive"

            def check(self, record, field, value):
                return value > 0
    """

    message: str = "The {field} is invalid"
    allow_none: bool = True

    @abstractmethod
    def check(self, record: Record, field: str, value: Any) -> bool:
        """Return ``True`` when *value* passes."""

    def validate(self, record: Record, field: str, value: Any) -> bool:
        if value is None and self.allow_none:
            return True
        return self.check(record, field, value)

    def get_message(self, field: str) -> str:
        return self.message.format(field=field, **self.params())

    def params(self) -> dict[str, Any]:
        return {}


@dataclass(eq=False)
class Required(Rule):
    message: str = "The {field} field is required"
    allow_none: bool = False

    def check(self, record: Record, field: str, value: Any) -> bool:
        if value is None or value is MISSING:
            return False
        if isinstance(value, str) and not value.strip():
            return False
        if isinstance(value, (list, tuple, dict, set)) and not value:
            return False
        return True


@dataclass(eq=False)
class Length(Rule):
    min: int | None = None
    max: int | None = None
    message: str = ""

    def __post_init__(self) -> None:
        if self.min is None and self.max is None:
            raise ValueError("Length needs min, max or both")
        if not self.message:
            if self.min is not None and self.max is not None:
                self.message = "The {field} must be between {min} and {max} characters"
            elif self.min is not None:
                self.message = "The {field} must be at least {min} characters"
            else:
                self.message = "The {field} may not be greater than {max} characters"

    def check(self, record: Record, field: str, value: Any) -> bool:
        try:
            size = len(value)
        except TypeError:
            return False
        if self.min is not None and size < self.min:
            return False
        return self.max is None or size <= self.max

    def params(self) -> dict[str, Any]:
        return {"min": self.min, "max": self.max}


@dataclass(eq=False)
class Format(Rule):
    pattern: str | re.Pattern[str]
    message: str = "The {field} format is invalid"

    def __post_init__(self) -> None:
        self._regex = re.compile(self.pattern) if isinstance(self.pattern, str) else self.pattern

    def check(self, record: Record, field: str, value: Any) -> bool:
        return isinstance(value, str) and self._regex.search(value) is not None


@dataclass(eq=False)
class Numericality(Rule):
    only_integer: bool = False
    gt: float | None = None
    gte: float | None = None
    lt: float | None = None
    lte: float | None = None
    message: str = "The {field} must be a valid number"

    def check(self, record: Record, field: str, value: Any) -> bool:
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            return False
        if self.only_integer and not isinstance(value, numbers.Integral):
            return False

        return (
            (self.gt is None or value > self.gt)
            and (self.gte is None or value >= self.gte)
            and (self.lt is None or value < self.lt)
            and (self.lte is None or value <= self.lte)
        )


@dataclass(eq=False)
class Inclusion(Rule):
    choices: Collection[Any]
    message: str = "The selected {field} is invalid"

    def check(self, record: Record, field: str, value: Any) -> bool:
        return value in self.choices


@dataclass(eq=False)
class Exclusion(Rule):
    choices: Collection[Any]
    message: str = "The selected {field} is reserved"

    def check(self, record: Record, field: str, value: Any) -> bool:
        return value not in self.choices


@dataclass(eq=False)
class Uniqueness(Rule):
    """No other row of the model's table holds the same value.

    Single column only; scoped and composite uniqueness are not supported.
    """

    message: str = "The {field} has already been taken"

    def check(self, record: Record, field: str, value: Any) -> bool:
        model = type(record)
        query = model.where({field: value})
        pk = model.__descriptor__.primary_key
        if (own := record.get(pk)) is not None:
            query = query.where({pk: {"ne": own}})

        return not query.exists()


@dataclass(eq=False)
class Custom(Rule):
    """Wrap ``fn(record, value) -> bool``."""

    fn: Callable[[Record, Any], bool]
    message: str = "The {field} is invalid"
    allow_none: bool = field(default=False)

    def check(self, record: Record, field: str, value: Any) -> bool:
        return bool(self.fn(record, value))


def normalize_rules(
    declared: Mapping[str, Rule | Sequence[Rule]] | None,
) -> frozendict[str, tuple[Rule, ...]]:
    """Freeze a ``__validates__`` declaration into ``attribute -> rules``."""
    if not declared:
        return frozendict()

    out: dict[str, tuple[Rule, ...]] = {}
    for attribute, rules in declared.items():
        chain = (rules,) if isinstance(rules, Rule) else tuple(rules)
        for rule in chain:
            if not isinstance(rule, Rule):
                raise TypeError(f"Rule for {attribute!r} must be a Rule, got {rule!r}")
        out[attribute] = chain

    return frozendict(out)


def validate(
    record: Record,
    rules: Mapping[str, Sequence[Rule]],
) -> dict[str, list[str]]:
    """Run *rules* against *record*.

    Returns:
        ``attribute -> messages`` for every attribute with at least one failed
        rule; empty when the record is valid.
    """
    errors: dict[str, list[str]] = {}
    for attribute, chain in rules.items():
        value = record.get(attribute)
        for rule in chain:
            if not rule.validate(record, attribute, value):
                errors.setdefault(attribute, []).append(rule.get_message(attribute))

    return errors
