from __future__ import annotations
import datetime
import math
from dataclasses import dataclass
from enum import Enum


class LiftLogError(Exception):
    """Base class for errors surfaced to callers of the store."""


class ValidationError(LiftLogError, ValueError):
    """Raised when a caller supplies an out-of-range value."""


class DuplicateNameError(LiftLogError, ValueError):
    """Raised when an exercise name collides with an existing one."""


class ForbiddenError(LiftLogError, PermissionError):
    """Raised when deleting an exercise from the default catalog."""


class NotFoundError(LiftLogError, LookupError):
    """Raised when an entity or its parent cannot be resolved."""


class PersistenceFailure(LiftLogError, RuntimeError):
    """Raised when SQLite rejects a write."""


class ExerciseFilter(str, Enum):
    ALL = "all"
    FAVORITES = "favorites"
    CUSTOM = "custom"
    DEFAULT = "default"


@dataclass
class Exercise:
    id: int
    name: str
    is_default: bool = False
    is_favorite: bool = False


@dataclass
class WorkoutLog:
    """All sets performed on one calendar day."""

    id: int
    date: datetime.date


@dataclass
class WorkoutSet:
    """One recorded performance.

    ``date`` is the parent log's day, denormalized on read.
    """

    id: int
    exercise_id: int
    log_id: int
    weight: float
    reps: int
    date: datetime.date


def as_day(value: datetime.date | datetime.datetime | str) -> datetime.date:
    """Return the calendar day of ``value``; time of day is discarded."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, str):
        try:
            return datetime.date.fromisoformat(value[:10])
        except ValueError as exc:
            raise ValidationError(f"invalid date: {value!r}") from exc
    raise ValidationError(f"invalid date: {value!r}")


def validate_performance(weight: float, reps: int) -> None:
    if not isinstance(reps, (int, float)) or isinstance(reps, bool):
        raise ValidationError("reps must be a whole number")
    if not math.isfinite(reps) or int(reps) != reps or reps <= 0:
        raise ValidationError("reps must be positive")
    if not isinstance(weight, (int, float)) or isinstance(weight, bool):
        raise ValidationError("weight must be a number")
    if not math.isfinite(weight):
        raise ValidationError("weight must be a finite number")
    if weight < 0:
        raise ValidationError("weight must be non-negative")
