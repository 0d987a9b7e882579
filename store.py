from __future__ import annotations
import datetime
import logging
import threading
from typing import Iterable, List, Optional

from db import (
    ExerciseRepository,
    WorkoutLogRepository,
    SetRepository,
    TrainingDataRepository,
    load_default_catalog,
)
from events import EventBus
from models import (
    Exercise,
    ExerciseFilter,
    WorkoutLog,
    WorkoutSet,
    as_day,
)

logger = logging.getLogger(__name__)


class WorkoutStore:
    """Owns exercises, daily logs and sets persisted in SQLite.

    Mutations are serialized behind a single lock and commit before
    returning; change events are published after the commit. Reads run
    without the lock on their own connection.
    """

    def __init__(
        self,
        db_path: str = "workout.db",
        bus: EventBus | None = None,
        catalog: Iterable[str] | None = None,
    ) -> None:
        self.db_path = db_path
        self.bus = bus or EventBus()
        self.exercises = ExerciseRepository(db_path)
        self.logs = WorkoutLogRepository(db_path)
        self.sets = SetRepository(db_path)
        self.training_data = TrainingDataRepository(db_path)
        self.catalog = list(catalog) if catalog is not None else load_default_catalog()
        self._write_lock = threading.RLock()

    # Exercises

    def seed_default_exercises(self) -> int:
        with self._write_lock:
            added = self.exercises.seed_defaults(self.catalog)
        if added:
            logger.info("seeded %d default exercise(s)", added)
        return added

    def list_exercises(
        self, exercise_filter: ExerciseFilter | str = ExerciseFilter.ALL
    ) -> List[Exercise]:
        return self.exercises.fetch_exercises(ExerciseFilter(exercise_filter))

    def search_exercises(
        self, query: str, exercise_filter: ExerciseFilter | str = ExerciseFilter.ALL
    ) -> List[Exercise]:
        return self.exercises.search(query, ExerciseFilter(exercise_filter))

    def exercises_with_sets(self) -> List[Exercise]:
        return self.exercises.fetch_with_sets()

    def get_exercise(self, exercise_id: int) -> Exercise:
        return self.exercises.fetch_detail(exercise_id)

    def find_exercise(self, name: str) -> Optional[Exercise]:
        return self.exercises.fetch_by_name(name)

    def add_exercise(self, name: str) -> Exercise:
        with self._write_lock:
            exercise_id = self.exercises.add(name)
        logger.info("added exercise %r (id=%d)", name.strip(), exercise_id)
        return self.exercises.fetch_detail(exercise_id)

    def toggle_favorite(self, exercise: Exercise) -> bool:
        with self._write_lock:
            value = self.exercises.toggle_favorite(exercise.id)
        exercise.is_favorite = value
        self.bus.favorites_changed(exercise.id)
        return value

    def delete_exercise(self, exercise: Exercise) -> None:
        with self._write_lock:
            removed = self.exercises.remove(exercise.id)
        logger.info("deleted exercise %r with %d set(s)", exercise.name, removed)
        if exercise.is_favorite:
            self.bus.favorites_changed(exercise.id)
        self.bus.workout_data_changed()

    # Logs

    def get_log(self, date: datetime.date | datetime.datetime) -> Optional[WorkoutLog]:
        return self.logs.fetch_for_date(as_day(date))

    def get_or_create_log(self, date: datetime.date | datetime.datetime) -> WorkoutLog:
        with self._write_lock:
            return self.logs.get_or_create(as_day(date))

    def get_log_dates_in_month(
        self, month: datetime.date | datetime.datetime
    ) -> List[datetime.date]:
        day = as_day(month)
        return self.logs.dates_in_month(day.year, day.month)

    def get_log_dates_between(
        self,
        start_date: datetime.date | datetime.datetime,
        end_date: datetime.date | datetime.datetime,
    ) -> List[datetime.date]:
        return self.logs.dates_between(as_day(start_date), as_day(end_date))

    # Sets

    def add_set(
        self, log: WorkoutLog, exercise: Exercise, weight: float, reps: int
    ) -> WorkoutSet:
        with self._write_lock:
            set_id = self.sets.add(log.id, exercise.id, weight, reps)
        self.bus.workout_data_changed()
        return self.sets.fetch_detail(set_id)

    def log_set(
        self,
        exercise: Exercise,
        weight: float,
        reps: int,
        date: datetime.date | datetime.datetime | None = None,
    ) -> WorkoutSet:
        """Record a set on ``date`` (today by default), creating the log if needed."""
        day = as_day(date or datetime.date.today())
        with self._write_lock:
            set_id = self.sets.add_for_day(day, exercise.id, weight, reps)
        self.bus.workout_data_changed()
        return self.sets.fetch_detail(set_id)

    def update_set(self, workout_set: WorkoutSet, weight: float, reps: int) -> WorkoutSet:
        with self._write_lock:
            self.sets.update(workout_set.id, weight, reps)
        workout_set.weight = float(weight)
        workout_set.reps = int(reps)
        self.bus.workout_data_changed()
        return workout_set

    def delete_set(self, workout_set: WorkoutSet) -> None:
        with self._write_lock:
            log_removed = self.sets.remove(workout_set.id)
        if log_removed:
            logger.debug("removed empty log for %s", workout_set.date)
        self.bus.workout_data_changed()

    def get_set(self, set_id: int) -> WorkoutSet:
        return self.sets.fetch_detail(set_id)

    def get_last_set(self, exercise: Exercise) -> Optional[WorkoutSet]:
        return self.sets.fetch_last_for_exercise(exercise.id)

    def get_sets(
        self,
        exercise: Exercise,
        start_date: datetime.date | datetime.datetime,
        end_date: datetime.date | datetime.datetime,
    ) -> List[WorkoutSet]:
        return self.sets.fetch_for_exercise(
            exercise.id, as_day(start_date), as_day(end_date)
        )

    def get_exercise_sets(self, exercise: Exercise) -> List[WorkoutSet]:
        return self.sets.fetch_for_exercise(exercise.id)

    def get_sets_for_date(self, date: datetime.date | datetime.datetime) -> List[WorkoutSet]:
        return self.sets.fetch_for_date(as_day(date))

    def get_sets_between(
        self,
        start_date: datetime.date | datetime.datetime,
        end_date: datetime.date | datetime.datetime,
    ) -> List[WorkoutSet]:
        return self.sets.fetch_between(as_day(start_date), as_day(end_date))

    def get_all_sets(self) -> List[WorkoutSet]:
        return self.sets.fetch_all_sets()

    # Bulk

    def batch_reset_training_data(self) -> None:
        with self._write_lock:
            self.training_data.reset()
        logger.info("training data reset")
        self.bus.favorites_changed(None)
        self.bus.workout_data_changed()

    def replace_all(self, exercises: Iterable[dict]) -> tuple[int, int]:
        with self._write_lock:
            counts = self.training_data.replace_all(exercises)
        logger.info("replaced training data: %d exercise(s), %d set(s)", *counts)
        self.bus.favorites_changed(None)
        self.bus.workout_data_changed()
        return counts
