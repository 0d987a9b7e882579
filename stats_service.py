from __future__ import annotations
import calendar
import datetime
import logging
import threading
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional

from db import AsyncSetRepository, AsyncWorkoutLogRepository
from events import Debouncer, Event, EventBus, EventType
from models import Exercise, ValidationError, WorkoutSet, as_day
from store import WorkoutStore
from tools import MathTools

logger = logging.getLogger(__name__)

CHART_PERIODS = (1, 3, 6, 12)


class ChartPoint(NamedTuple):
    date: datetime.date
    weight: float


def subtract_months(day: datetime.date, months: int) -> datetime.date:
    """Return ``day`` shifted back by calendar months, clamped to month end."""
    total = day.year * 12 + (day.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    last = calendar.monthrange(year, month)[1]
    return datetime.date(year, month, min(day.day, last))


def build_chart_series(sets: Iterable[WorkoutSet]) -> List[ChartPoint]:
    """Keep the heaviest set per calendar day, ascending by date."""
    best: Dict[datetime.date, float] = {}
    for s in sets:
        current = best.get(s.date)
        if current is not None and current >= s.weight:
            continue
        best[s.date] = s.weight
    return [ChartPoint(d, w) for d, w in sorted(best.items())]


def count_days_in_month(dates: Iterable[datetime.date], as_of: datetime.date) -> int:
    """Count distinct days sharing ``as_of``'s year and month."""
    return len(
        {d for d in dates if d.year == as_of.year and d.month == as_of.month}
    )


def _validate_period(period_months: int) -> None:
    if period_months not in CHART_PERIODS:
        raise ValidationError(
            f"period_months must be one of {', '.join(map(str, CHART_PERIODS))}"
        )


class StatisticsService:
    """Compute training analytics from the store.

    Derived results are cached and marked stale whenever the bus reports a
    workout data change; they are recomputed on the next query.
    """

    def __init__(
        self,
        store: WorkoutStore,
        bus: EventBus | None = None,
        debounce_window: float = 0.3,
    ) -> None:
        self.store = store
        self.bus = bus or store.bus
        self._cache: dict[tuple, object] = {}
        self._epoch = 0
        self._cache_lock = threading.Lock()
        self._listeners: list[Callable[[], None]] = []
        self._listeners_lock = threading.Lock()
        self._debouncer = Debouncer(self._notify_listeners, debounce_window)
        self._unsubscribe = self.bus.subscribe_all(self._on_event)

    def close(self) -> None:
        self._unsubscribe()
        self._debouncer.cancel()

    def clear_cache(self) -> None:
        """Clear any cached statistics."""
        with self._cache_lock:
            self._cache.clear()
            self._epoch += 1

    def add_refresh_listener(self, callback: Callable[[], None]) -> None:
        """Call ``callback`` once after each burst of data changes."""
        with self._listeners_lock:
            self._listeners.append(callback)

    def _on_event(self, event: Event) -> None:
        if event.type == EventType.WORKOUT_DATA_CHANGED or event.exercise_id is None:
            self.clear_cache()
        self._debouncer()

    def _notify_listeners(self) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback()
            except Exception:
                logger.exception("refresh listener %r failed", callback)

    def flush(self) -> None:
        """Deliver a pending coalesced refresh immediately."""
        self._debouncer.flush()

    def _cached(self, key: tuple, compute: Callable[[], object]):
        with self._cache_lock:
            if key in self._cache:
                return self._cache[key]
            epoch = self._epoch
        value = compute()
        with self._cache_lock:
            # an invalidation during compute means the value may be stale
            if epoch == self._epoch:
                self._cache[key] = value
        return value

    # Per-exercise

    def suggest_next_weight(self, exercise: Exercise) -> float:
        last = self.store.get_last_set(exercise)
        if last is None:
            return 0.0
        return MathTools.suggest_next_weight(last.weight, last.reps)

    def chart_series(
        self,
        exercise: Exercise,
        period_months: int,
        as_of: datetime.date | datetime.datetime | None = None,
    ) -> List[ChartPoint]:
        _validate_period(period_months)
        end = as_day(as_of or datetime.date.today())
        start = subtract_months(end, period_months)
        return list(
            self._cached(
                ("chart", exercise.id, period_months, end),
                lambda: build_chart_series(self.store.get_sets(exercise, start, end)),
            )
        )

    def exercise_summary(self, exercise: Exercise) -> dict:
        def compute() -> dict:
            sets = self.store.get_exercise_sets(exercise)
            last = self.store.get_last_set(exercise)
            return {
                "last_weight": last.weight if last else 0.0,
                "max_weight": self.max_weight(sets),
                "average_weight": round(self.average_weight(sets), 2),
                "suggested_weight": self.suggest_next_weight(exercise),
            }

        return dict(self._cached(("summary", exercise.id), compute))

    # Calendar

    def monthly_training_day_count(
        self, as_of: datetime.date | datetime.datetime | None = None
    ) -> int:
        day = as_day(as_of or datetime.date.today())
        count = self._cached(
            ("month_days", day.year, day.month),
            lambda: count_days_in_month(self.store.get_log_dates_in_month(day), day),
        )
        logger.debug("training days in %04d-%02d: %d", day.year, day.month, count)
        return count

    def training_frequency(
        self,
        start_date: datetime.date | datetime.datetime,
        end_date: datetime.date | datetime.datetime,
    ) -> int:
        return len(set(self.store.get_log_dates_between(start_date, end_date)))

    # Aggregates

    @staticmethod
    def total_volume(sets: Iterable[WorkoutSet]) -> float:
        return MathTools.volume((s.weight, s.reps) for s in sets)

    @staticmethod
    def total_reps(sets: Iterable[WorkoutSet]) -> int:
        return sum(s.reps for s in sets)

    @staticmethod
    def max_weight(sets: Iterable[WorkoutSet]) -> float:
        return max((s.weight for s in sets), default=0.0)

    @staticmethod
    def average_weight(sets: Iterable[WorkoutSet]) -> float:
        return MathTools.mean([s.weight for s in sets])

    def period_summary(
        self,
        start_date: datetime.date | datetime.datetime,
        end_date: datetime.date | datetime.datetime,
    ) -> dict:
        sets = self.store.get_sets_between(start_date, end_date)
        return {
            "volume": round(self.total_volume(sets), 2),
            "reps": self.total_reps(sets),
            "sets": len(sets),
            "training_days": len({s.date for s in sets}),
        }

    def exercise_frequency(
        self,
        start_date: datetime.date | datetime.datetime,
        end_date: datetime.date | datetime.datetime,
    ) -> Dict[int, int]:
        """Return the number of sets per exercise id within the range."""
        start, end = as_day(start_date), as_day(end_date)

        def compute() -> Dict[int, int]:
            counts: Dict[int, int] = {}
            for s in self.store.get_sets_between(start, end):
                counts[s.exercise_id] = counts.get(s.exercise_id, 0) + 1
            return counts

        return dict(self._cached(("frequency", start, end), compute))

    def most_frequent_exercises(
        self,
        start_date: datetime.date | datetime.datetime,
        end_date: datetime.date | datetime.datetime,
        limit: int = 5,
    ) -> List[Exercise]:
        """Rank exercises by set count; equal counts sort by name."""
        counts = self.exercise_frequency(start_date, end_date)
        by_id = {e.id: e for e in self.store.list_exercises()}
        ranked = sorted(
            (by_id[eid] for eid in counts if eid in by_id),
            key=lambda e: (-counts[e.id], e.name.lower(), e.id),
        )
        return ranked[: max(limit, 0)]


class AsyncStatisticsService:
    """Background read path for chart and calendar analytics.

    Each request takes a generation number; a result is applied to
    ``latest`` only while it is still the newest request.
    """

    def __init__(self, db_path: str) -> None:
        self.sets = AsyncSetRepository(db_path)
        self.logs = AsyncWorkoutLogRepository(db_path)
        self._generation = 0
        self.latest: dict[str, object] = {}

    async def chart_series(
        self,
        exercise: Exercise,
        period_months: int,
        as_of: datetime.date | datetime.datetime | None = None,
    ) -> List[ChartPoint]:
        _validate_period(period_months)
        end = as_day(as_of or datetime.date.today())
        start = subtract_months(end, period_months)
        sets = await self.sets.fetch_for_exercise(exercise.id, start, end)
        return build_chart_series(sets)

    async def monthly_training_day_count(
        self, as_of: datetime.date | datetime.datetime | None = None
    ) -> int:
        day = as_day(as_of or datetime.date.today())
        dates = await self.logs.dates_in_month(day.year, day.month)
        return count_days_in_month(dates, day)

    async def refresh_chart(
        self,
        exercise: Exercise,
        period_months: int,
        as_of: datetime.date | datetime.datetime | None = None,
    ) -> Optional[List[ChartPoint]]:
        """Load a chart and apply it unless a newer request superseded it."""
        self._generation += 1
        generation = self._generation
        series = await self.chart_series(exercise, period_months, as_of)
        if generation != self._generation:
            logger.debug("discarding stale chart for exercise %d", exercise.id)
            return None
        self.latest["chart"] = series
        return series
