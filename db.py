import sqlite3
import aiosqlite
import csv
import os
import datetime
import logging
from contextlib import contextmanager, asynccontextmanager
from typing import List, Tuple, Optional, Iterable

from models import (
    Exercise,
    ExerciseFilter,
    WorkoutLog,
    WorkoutSet,
    ValidationError,
    DuplicateNameError,
    ForbiddenError,
    NotFoundError,
    PersistenceFailure,
    validate_performance,
)

logger = logging.getLogger(__name__)

DEFAULT_EXERCISES = (
    "Bench Press",
    "Squat",
    "Deadlift",
    "Shoulder Press",
    "Pull-up",
    "Barbell Row",
    "Leg Press",
    "Leg Extension",
    "Leg Curl",
    "Arm Curl",
    "Triceps Extension",
    "Lat Pulldown",
    "Chest Fly",
    "Lateral Raise",
    "Plank",
    "Crunch",
    "Leg Raise",
    "Dips",
    "Push-up",
    "Hip Thrust",
)


def name_key(name: str) -> str:
    """Return the case-insensitive uniqueness key for an exercise name."""
    return name.strip().lower()


def month_bounds(year: int, month: int) -> Tuple[datetime.date, datetime.date]:
    """Return the first day of the month and the first day of the next one."""
    first = datetime.date(year, month, 1)
    if month == 12:
        return first, datetime.date(year + 1, 1, 1)
    return first, datetime.date(year, month + 1, 1)


def load_default_catalog(csv_path: Optional[str] = None) -> List[str]:
    """Return the ordered default exercise names.

    Without ``csv_path`` the built-in catalog is used. A CSV catalog needs an
    ``Exercise Name`` column; a missing file raises :class:`NotFoundError`.
    """
    if csv_path is None:
        return list(DEFAULT_EXERCISES)
    if not os.path.exists(csv_path):
        logger.error("exercise catalog %s not found", csv_path)
        raise NotFoundError(f"exercise catalog not found: {csv_path}")
    with open(csv_path, newline="", encoding="utf-8") as csvfile:
        reader = csv.DictReader(csvfile)
        return [row["Exercise Name"].strip() for row in reader if row.get("Exercise Name")]


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "exercises": (
            """CREATE TABLE exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    name_key TEXT NOT NULL UNIQUE,
                    is_default INTEGER NOT NULL DEFAULT 0,
                    is_favorite INTEGER NOT NULL DEFAULT 0
                );""",
            ["id", "name", "name_key", "is_default", "is_favorite"],
        ),
        "workout_logs": (
            """CREATE TABLE workout_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    date TEXT NOT NULL UNIQUE
                );""",
            ["id", "date"],
        ),
        "workout_sets": (
            """CREATE TABLE workout_sets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    exercise_id INTEGER NOT NULL,
                    log_id INTEGER NOT NULL,
                    weight REAL NOT NULL,
                    reps INTEGER NOT NULL,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE CASCADE,
                    FOREIGN KEY(log_id) REFERENCES workout_logs(id) ON DELETE CASCADE
                );""",
            ["id", "exercise_id", "log_id", "weight", "reps"],
        ),
    }

    def __init__(self, db_path: str = "workout.db") -> None:
        self._db_path = db_path
        self._ensure_schema()

    @property
    def db_path(self) -> str:
        return self._db_path

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        connection.execute("PRAGMA foreign_keys=on;")
        try:
            yield connection
            connection.commit()
        except BaseException:
            connection.rollback()
            raise
        finally:
            connection.close()

    @contextmanager
    def _transaction(self):
        """Yield a connection whose statements commit or roll back together."""
        try:
            with self._connection() as conn:
                yield conn
        except sqlite3.Error as exc:
            logger.error("write to %s failed: %s", self._db_path, exc)
            raise PersistenceFailure(str(exc)) from exc

    def _ensure_schema(self) -> None:
        try:
            with self._connection() as conn:
                conn.execute("PRAGMA foreign_keys=off;")
                for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                    self._ensure_table(conn, table, sql, columns)
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_sets_exercise ON workout_sets(exercise_id);"
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_sets_log ON workout_sets(log_id);"
                )
        except sqlite3.Error as exc:
            raise PersistenceFailure(str(exc)) from exc

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        logger.info("rebuilding table %s with columns %s", table, columns)
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)
        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            conn.execute(f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;")
        conn.execute(f"DROP TABLE {table}_old;")

    def vacuum(self) -> None:
        """Run SQLite VACUUM to reduce database size."""
        conn = sqlite3.connect(self._db_path)
        try:
            conn.execute("VACUUM;")
        finally:
            conn.close()


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        """Run a read query; failures are logged and yield no rows."""
        try:
            with self._connection() as conn:
                return conn.execute(query, params).fetchall()
        except sqlite3.Error:
            logger.exception("read from %s failed", self._db_path)
            return []


_EXERCISE_COLUMNS = "id, name, is_default, is_favorite"

_SET_QUERY = (
    "SELECT s.id, s.exercise_id, s.log_id, s.weight, s.reps, l.date "
    "FROM workout_sets s JOIN workout_logs l ON s.log_id = l.id"
)


def _exercise_from_row(row: Tuple) -> Exercise:
    return Exercise(
        id=int(row[0]),
        name=row[1],
        is_default=bool(row[2]),
        is_favorite=bool(row[3]),
    )


def _log_from_row(row: Tuple) -> WorkoutLog:
    return WorkoutLog(id=int(row[0]), date=datetime.date.fromisoformat(row[1]))


def _set_from_row(row: Tuple) -> WorkoutSet:
    return WorkoutSet(
        id=int(row[0]),
        exercise_id=int(row[1]),
        log_id=int(row[2]),
        weight=float(row[3]),
        reps=int(row[4]),
        date=datetime.date.fromisoformat(row[5]),
    )


def _delete_empty_logs(conn: sqlite3.Connection, log_ids: Iterable[int]) -> int:
    removed = 0
    for log_id in set(log_ids):
        cur = conn.execute(
            "DELETE FROM workout_logs WHERE id = ? "
            "AND NOT EXISTS (SELECT 1 FROM workout_sets WHERE log_id = ?);",
            (log_id, log_id),
        )
        removed += cur.rowcount
    return removed


def _get_or_create_log(conn: sqlite3.Connection, day: datetime.date) -> WorkoutLog:
    iso = day.isoformat()
    conn.execute("INSERT OR IGNORE INTO workout_logs (date) VALUES (?);", (iso,))
    row = conn.execute(
        "SELECT id, date FROM workout_logs WHERE date = ?;", (iso,)
    ).fetchone()
    return _log_from_row(row)


class ExerciseRepository(BaseRepository):
    """Repository for exercise table operations."""

    def add(self, name: str, is_default: bool = False) -> int:
        clean = (name or "").strip()
        if not clean:
            raise ValidationError("exercise name must not be empty")
        with self._transaction() as conn:
            exists = conn.execute(
                "SELECT 1 FROM exercises WHERE name_key = ?;", (name_key(clean),)
            ).fetchone()
            if exists:
                raise DuplicateNameError(f"exercise '{clean}' already exists")
            cursor = conn.execute(
                "INSERT INTO exercises (name, name_key, is_default, is_favorite) VALUES (?, ?, ?, 0);",
                (clean, name_key(clean), int(is_default)),
            )
            return cursor.lastrowid

    def fetch_detail(self, exercise_id: int) -> Exercise:
        rows = self.fetch_all(
            f"SELECT {_EXERCISE_COLUMNS} FROM exercises WHERE id = ?;",
            (exercise_id,),
        )
        if not rows:
            raise NotFoundError("exercise not found")
        return _exercise_from_row(rows[0])

    def fetch_by_name(self, name: str) -> Optional[Exercise]:
        rows = self.fetch_all(
            f"SELECT {_EXERCISE_COLUMNS} FROM exercises WHERE name_key = ?;",
            (name_key(name),),
        )
        return _exercise_from_row(rows[0]) if rows else None

    def fetch_exercises(
        self, exercise_filter: ExerciseFilter = ExerciseFilter.ALL
    ) -> List[Exercise]:
        query = f"SELECT {_EXERCISE_COLUMNS} FROM exercises"
        if exercise_filter == ExerciseFilter.FAVORITES:
            query += " WHERE is_favorite = 1"
        elif exercise_filter == ExerciseFilter.CUSTOM:
            query += " WHERE is_default = 0"
        elif exercise_filter == ExerciseFilter.DEFAULT:
            query += " WHERE is_default = 1"
        query += " ORDER BY name_key, id;"
        return [_exercise_from_row(r) for r in self.fetch_all(query)]

    def search(
        self, query: str, exercise_filter: ExerciseFilter = ExerciseFilter.ALL
    ) -> List[Exercise]:
        """Return exercises whose name contains ``query`` ignoring case."""
        exercises = self.fetch_exercises(exercise_filter)
        needle = (query or "").strip().lower()
        if not needle:
            return exercises
        return [e for e in exercises if needle in e.name.lower()]

    def fetch_with_sets(self) -> List[Exercise]:
        rows = self.fetch_all(
            f"SELECT {_EXERCISE_COLUMNS} FROM exercises e "
            "WHERE EXISTS (SELECT 1 FROM workout_sets s WHERE s.exercise_id = e.id) "
            "ORDER BY name_key, id;"
        )
        return [_exercise_from_row(r) for r in rows]

    def toggle_favorite(self, exercise_id: int) -> bool:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT is_favorite FROM exercises WHERE id = ?;", (exercise_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError("exercise not found")
            value = not bool(row[0])
            conn.execute(
                "UPDATE exercises SET is_favorite = ? WHERE id = ?;",
                (int(value), exercise_id),
            )
        return value

    def remove(self, exercise_id: int) -> int:
        """Delete a custom exercise, its sets and any logs left empty.

        Returns the number of sets removed.
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT is_default FROM exercises WHERE id = ?;", (exercise_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError("exercise not found")
            if row[0]:
                raise ForbiddenError("default exercises cannot be deleted")
            log_ids = [
                r[0]
                for r in conn.execute(
                    "SELECT DISTINCT log_id FROM workout_sets WHERE exercise_id = ?;",
                    (exercise_id,),
                ).fetchall()
            ]
            cur = conn.execute(
                "DELETE FROM workout_sets WHERE exercise_id = ?;", (exercise_id,)
            )
            removed_sets = cur.rowcount
            conn.execute("DELETE FROM exercises WHERE id = ?;", (exercise_id,))
            _delete_empty_logs(conn, log_ids)
        return removed_sets

    def seed_defaults(self, names: Iterable[str]) -> int:
        """Insert catalog names missing from the table; returns how many were added."""
        added = 0
        with self._transaction() as conn:
            for name in names:
                clean = name.strip()
                if not clean:
                    continue
                cur = conn.execute(
                    "INSERT OR IGNORE INTO exercises (name, name_key, is_default, is_favorite) "
                    "VALUES (?, ?, 1, 0);",
                    (clean, name_key(clean)),
                )
                added += cur.rowcount
        return added


class WorkoutLogRepository(BaseRepository):
    """Repository for per-day workout logs."""

    def get_or_create(self, day: datetime.date) -> WorkoutLog:
        with self._transaction() as conn:
            return _get_or_create_log(conn, day)

    def fetch_for_date(self, day: datetime.date) -> Optional[WorkoutLog]:
        rows = self.fetch_all(
            "SELECT id, date FROM workout_logs WHERE date = ?;", (day.isoformat(),)
        )
        return _log_from_row(rows[0]) if rows else None

    def dates_between(
        self, start_date: datetime.date, end_date: datetime.date
    ) -> List[datetime.date]:
        rows = self.fetch_all(
            "SELECT DISTINCT date FROM workout_logs WHERE date >= ? AND date <= ? ORDER BY date;",
            (start_date.isoformat(), end_date.isoformat()),
        )
        return [datetime.date.fromisoformat(r[0]) for r in rows]

    def dates_in_month(self, year: int, month: int) -> List[datetime.date]:
        first, next_first = month_bounds(year, month)
        rows = self.fetch_all(
            "SELECT DISTINCT date FROM workout_logs WHERE date >= ? AND date < ? ORDER BY date;",
            (first.isoformat(), next_first.isoformat()),
        )
        return [datetime.date.fromisoformat(r[0]) for r in rows]


class SetRepository(BaseRepository):
    """Repository for workout set operations."""

    def add(self, log_id: int, exercise_id: int, weight: float, reps: int) -> int:
        validate_performance(weight, reps)
        with self._transaction() as conn:
            if conn.execute(
                "SELECT 1 FROM workout_logs WHERE id = ?;", (log_id,)
            ).fetchone() is None:
                raise NotFoundError("workout log not found")
            if conn.execute(
                "SELECT 1 FROM exercises WHERE id = ?;", (exercise_id,)
            ).fetchone() is None:
                raise NotFoundError("exercise not found")
            cursor = conn.execute(
                "INSERT INTO workout_sets (exercise_id, log_id, weight, reps) VALUES (?, ?, ?, ?);",
                (exercise_id, log_id, float(weight), int(reps)),
            )
            return cursor.lastrowid

    def add_for_day(
        self, day: datetime.date, exercise_id: int, weight: float, reps: int
    ) -> int:
        """Insert a set on ``day``, creating that day's log in the same transaction."""
        validate_performance(weight, reps)
        with self._transaction() as conn:
            if conn.execute(
                "SELECT 1 FROM exercises WHERE id = ?;", (exercise_id,)
            ).fetchone() is None:
                raise NotFoundError("exercise not found")
            log = _get_or_create_log(conn, day)
            cursor = conn.execute(
                "INSERT INTO workout_sets (exercise_id, log_id, weight, reps) VALUES (?, ?, ?, ?);",
                (exercise_id, log.id, float(weight), int(reps)),
            )
            return cursor.lastrowid

    def update(self, set_id: int, weight: float, reps: int) -> None:
        validate_performance(weight, reps)
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE workout_sets SET weight = ?, reps = ? WHERE id = ?;",
                (float(weight), int(reps), set_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError("set not found")

    def remove(self, set_id: int) -> bool:
        """Delete a set; returns True when its log was removed as well."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT l.id FROM workout_sets s JOIN workout_logs l ON s.log_id = l.id "
                "WHERE s.id = ?;",
                (set_id,),
            ).fetchone()
            if row is None:
                raise NotFoundError("set or its workout log not found")
            conn.execute("DELETE FROM workout_sets WHERE id = ?;", (set_id,))
            return _delete_empty_logs(conn, [row[0]]) > 0

    def fetch_detail(self, set_id: int) -> WorkoutSet:
        rows = self.fetch_all(f"{_SET_QUERY} WHERE s.id = ?;", (set_id,))
        if not rows:
            raise NotFoundError("set not found")
        return _set_from_row(rows[0])

    def fetch_last_for_exercise(self, exercise_id: int) -> Optional[WorkoutSet]:
        rows = self.fetch_all(
            f"{_SET_QUERY} WHERE s.exercise_id = ? ORDER BY l.date DESC, s.id DESC LIMIT 1;",
            (exercise_id,),
        )
        return _set_from_row(rows[0]) if rows else None

    def fetch_for_exercise(
        self,
        exercise_id: int,
        start_date: Optional[datetime.date] = None,
        end_date: Optional[datetime.date] = None,
    ) -> List[WorkoutSet]:
        query = f"{_SET_QUERY} WHERE s.exercise_id = ?"
        params: list = [exercise_id]
        if start_date:
            query += " AND l.date >= ?"
            params.append(start_date.isoformat())
        if end_date:
            query += " AND l.date <= ?"
            params.append(end_date.isoformat())
        query += " ORDER BY l.date, s.id;"
        return [_set_from_row(r) for r in self.fetch_all(query, tuple(params))]

    def fetch_for_date(self, day: datetime.date) -> List[WorkoutSet]:
        rows = self.fetch_all(
            f"{_SET_QUERY} WHERE l.date = ? ORDER BY s.id DESC;", (day.isoformat(),)
        )
        return [_set_from_row(r) for r in rows]

    def fetch_between(
        self, start_date: datetime.date, end_date: datetime.date
    ) -> List[WorkoutSet]:
        rows = self.fetch_all(
            f"{_SET_QUERY} WHERE l.date >= ? AND l.date <= ? ORDER BY l.date, s.id;",
            (start_date.isoformat(), end_date.isoformat()),
        )
        return [_set_from_row(r) for r in rows]

    def fetch_all_sets(self) -> List[WorkoutSet]:
        rows = self.fetch_all(f"{_SET_QUERY} ORDER BY l.date, s.id;")
        return [_set_from_row(r) for r in rows]


class TrainingDataRepository(BaseRepository):
    """Whole-graph operations spanning every table."""

    def reset(self) -> None:
        """Delete all logs, sets and custom exercises; clear favorites."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM workout_sets;")
            conn.execute("DELETE FROM workout_logs;")
            conn.execute("DELETE FROM exercises WHERE is_default = 0;")
            conn.execute("UPDATE exercises SET is_favorite = 0;")

    def replace_all(self, exercises: Iterable[dict]) -> Tuple[int, int]:
        """Replace training data with ``exercises`` in one transaction.

        Each item carries ``name``, ``is_default``, ``is_favorite`` and
        ``sets`` as ``(weight, reps, date)`` tuples. Returns the number of
        exercises and sets written.
        """
        exercise_count = 0
        set_count = 0
        with self._transaction() as conn:
            conn.execute("DELETE FROM workout_sets;")
            conn.execute("DELETE FROM workout_logs;")
            conn.execute("DELETE FROM exercises WHERE is_default = 0;")
            conn.execute("UPDATE exercises SET is_favorite = 0;")
            for item in exercises:
                clean = item["name"].strip()
                if not clean:
                    raise ValidationError("exercise name must not be empty")
                row = conn.execute(
                    "SELECT id FROM exercises WHERE name_key = ?;", (name_key(clean),)
                ).fetchone()
                if row is None:
                    cur = conn.execute(
                        "INSERT INTO exercises (name, name_key, is_default, is_favorite) VALUES (?, ?, ?, ?);",
                        (
                            clean,
                            name_key(clean),
                            int(item.get("is_default", False)),
                            int(item.get("is_favorite", False)),
                        ),
                    )
                    exercise_id = cur.lastrowid
                else:
                    exercise_id = row[0]
                    conn.execute(
                        "UPDATE exercises SET is_favorite = ? WHERE id = ?;",
                        (int(item.get("is_favorite", False)), exercise_id),
                    )
                exercise_count += 1
                for weight, reps, day in item.get("sets", []):
                    validate_performance(weight, reps)
                    log = _get_or_create_log(conn, day)
                    conn.execute(
                        "INSERT INTO workout_sets (exercise_id, log_id, weight, reps) VALUES (?, ?, ?, ?);",
                        (exercise_id, log.id, float(weight), int(reps)),
                    )
                    set_count += 1
        return exercise_count, set_count


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            yield conn
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous read-only repository using aiosqlite."""

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        try:
            async with self._async_connection() as conn:
                cursor = await conn.execute(query, params)
                rows = await cursor.fetchall()
                return list(rows)
        except sqlite3.Error:
            logger.exception("async read from %s failed", self._db_path)
            return []


class AsyncSetRepository(AsyncBaseRepository):
    """Async reads of workout sets for background analytics."""

    async def fetch_for_exercise(
        self,
        exercise_id: int,
        start_date: datetime.date,
        end_date: datetime.date,
    ) -> List[WorkoutSet]:
        rows = await self.fetch_all(
            f"{_SET_QUERY} WHERE s.exercise_id = ? AND l.date >= ? AND l.date <= ? "
            "ORDER BY l.date, s.id;",
            (exercise_id, start_date.isoformat(), end_date.isoformat()),
        )
        return [_set_from_row(r) for r in rows]

    async def fetch_last_for_exercise(self, exercise_id: int) -> Optional[WorkoutSet]:
        rows = await self.fetch_all(
            f"{_SET_QUERY} WHERE s.exercise_id = ? ORDER BY l.date DESC, s.id DESC LIMIT 1;",
            (exercise_id,),
        )
        return _set_from_row(rows[0]) if rows else None


class AsyncWorkoutLogRepository(AsyncBaseRepository):
    """Async reads of workout log dates."""

    async def dates_in_month(self, year: int, month: int) -> List[datetime.date]:
        first, next_first = month_bounds(year, month)
        rows = await self.fetch_all(
            "SELECT DISTINCT date FROM workout_logs WHERE date >= ? AND date < ? ORDER BY date;",
            (first.isoformat(), next_first.isoformat()),
        )
        return [datetime.date.fromisoformat(r[0]) for r in rows]
