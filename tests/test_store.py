import os
import sys
import datetime
import sqlite3
import threading
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import DEFAULT_EXERCISES, load_default_catalog
from events import EventBus, EventType
from models import (
    ExerciseFilter,
    ValidationError,
    DuplicateNameError,
    ForbiddenError,
    NotFoundError,
    PersistenceFailure,
)
from store import WorkoutStore


class StoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_store.db"
        if os.path.exists(self.db_path):
            os.remove(self.db_path)
        self.bus = EventBus()
        self.events = []
        self.bus.subscribe_all(self.events.append)
        self.store = WorkoutStore(self.db_path, self.bus, catalog=load_default_catalog())
        self.store.seed_default_exercises()
        self.day = datetime.date(2024, 3, 10)

    def tearDown(self) -> None:
        if os.path.exists(self.db_path):
            os.remove(self.db_path)

    def _count(self, table: str) -> int:
        conn = sqlite3.connect(self.db_path)
        try:
            return conn.execute(f"SELECT COUNT(*) FROM {table};").fetchone()[0]
        finally:
            conn.close()

    def test_one_log_per_day(self) -> None:
        first = self.store.get_or_create_log(self.day)
        second = self.store.get_or_create_log(
            datetime.datetime(2024, 3, 10, 23, 59, 30)
        )
        self.assertEqual(first.id, second.id)
        self.assertEqual(second.date, self.day)
        other = self.store.get_or_create_log(self.day + datetime.timedelta(days=1))
        self.assertNotEqual(first.id, other.id)
        self.assertEqual(self._count("workout_logs"), 2)

    def test_add_set_validation(self) -> None:
        bench = self.store.find_exercise("Bench Press")
        log = self.store.get_or_create_log(self.day)
        with self.assertRaises(ValidationError):
            self.store.add_set(log, bench, -1, 5)
        with self.assertRaises(ValidationError):
            self.store.add_set(log, bench, 50, 0)
        self.assertEqual(self._count("workout_sets"), 0)

    def test_log_set_rejects_before_creating_log(self) -> None:
        bench = self.store.find_exercise("Bench Press")
        with self.assertRaises(ValidationError):
            self.store.log_set(bench, 40, -3, self.day)
        self.assertIsNone(self.store.get_log(self.day))

    def test_add_and_update_set(self) -> None:
        bench = self.store.find_exercise("Bench Press")
        log = self.store.get_or_create_log(self.day)
        s = self.store.add_set(log, bench, 60, 8)
        self.assertEqual((s.weight, s.reps, s.date), (60.0, 8, self.day))
        self.store.update_set(s, 62.5, 6)
        stored = self.store.get_set(s.id)
        self.assertEqual((stored.weight, stored.reps), (62.5, 6))
        self.assertEqual((stored.exercise_id, stored.log_id), (bench.id, log.id))
        with self.assertRaises(ValidationError):
            self.store.update_set(s, 62.5, 0)
        data_events = [e for e in self.events if e.type == EventType.WORKOUT_DATA_CHANGED]
        self.assertEqual(len(data_events), 2)

    def test_delete_last_set_removes_log(self) -> None:
        bench = self.store.find_exercise("Bench Press")
        first = self.store.log_set(bench, 40, 10, self.day)
        second = self.store.log_set(bench, 45, 8, self.day)
        self.store.delete_set(first)
        self.assertIsNotNone(self.store.get_log(self.day))
        self.store.delete_set(second)
        self.assertIsNone(self.store.get_log(self.day))
        self.assertEqual(self._count("workout_logs"), 0)
        with self.assertRaises(NotFoundError):
            self.store.delete_set(second)

    def test_list_exercises_order_and_filters(self) -> None:
        self.store.add_exercise("zercher squat")
        self.store.add_exercise("Arnold Press")
        names = [e.name for e in self.store.list_exercises()]
        self.assertEqual(names, sorted(names, key=str.lower))
        self.assertEqual(len(names), 22)
        custom = [e.name for e in self.store.list_exercises(ExerciseFilter.CUSTOM)]
        self.assertEqual(custom, ["Arnold Press", "zercher squat"])
        self.assertEqual(len(self.store.list_exercises("default")), 20)
        self.assertEqual(self.store.list_exercises(ExerciseFilter.FAVORITES), [])
        plank = self.store.find_exercise("plank")
        self.store.toggle_favorite(plank)
        favorites = self.store.list_exercises(ExerciseFilter.FAVORITES)
        self.assertEqual([e.name for e in favorites], ["Plank"])

    def test_search_exercises(self) -> None:
        names = [e.name for e in self.store.search_exercises("LEG")]
        self.assertEqual(
            names, ["Leg Curl", "Leg Extension", "Leg Press", "Leg Raise"]
        )
        self.assertEqual(len(self.store.search_exercises("")), 20)

    def test_add_exercise_duplicate_and_empty(self) -> None:
        with self.assertRaises(DuplicateNameError):
            self.store.add_exercise(" bench press ")
        with self.assertRaises(ValidationError):
            self.store.add_exercise("   ")
        created = self.store.add_exercise("  Cable Row ")
        self.assertEqual(created.name, "Cable Row")
        self.assertFalse(created.is_default)
        self.assertFalse(created.is_favorite)

    def test_toggle_favorite(self) -> None:
        squat = self.store.find_exercise("Squat")
        self.assertTrue(self.store.toggle_favorite(squat))
        self.assertTrue(self.store.get_exercise(squat.id).is_favorite)
        self.assertFalse(self.store.toggle_favorite(squat))
        self.assertFalse(self.store.get_exercise(squat.id).is_favorite)
        fav_events = [e for e in self.events if e.type == EventType.FAVORITES_CHANGED]
        self.assertEqual([e.exercise_id for e in fav_events], [squat.id, squat.id])

    def test_delete_default_exercise_forbidden(self) -> None:
        bench = self.store.find_exercise("Bench Press")
        self.store.log_set(bench, 60, 8, self.day)
        with self.assertRaises(ForbiddenError):
            self.store.delete_exercise(bench)
        self.assertIsNotNone(self.store.find_exercise("Bench Press"))
        self.assertEqual(self._count("workout_sets"), 1)
        self.assertEqual(self._count("workout_logs"), 1)

    def test_delete_custom_exercise_cascades(self) -> None:
        if os.path.exists("test_store_custom.db"):
            os.remove("test_store_custom.db")
        store = WorkoutStore("test_store_custom.db", catalog=[])
        try:
            squat = store.add_exercise("Squat")
            other_day = self.day + datetime.timedelta(days=2)
            store.log_set(squat, 100, 5, self.day)
            store.log_set(squat, 105, 5, self.day)
            store.log_set(squat, 110, 3, other_day)
            store.delete_exercise(squat)
            self.assertIsNone(store.find_exercise("Squat"))
            self.assertEqual(store.get_all_sets(), [])
            self.assertIsNone(store.get_log(self.day))
            self.assertIsNone(store.get_log(other_day))
        finally:
            os.remove("test_store_custom.db")

    def test_delete_custom_exercise_keeps_shared_log(self) -> None:
        bench = self.store.find_exercise("Bench Press")
        curl = self.store.add_exercise("Spider Curl")
        self.store.log_set(bench, 60, 8, self.day)
        self.store.log_set(curl, 12, 10, self.day)
        self.store.delete_exercise(curl)
        self.assertIsNotNone(self.store.get_log(self.day))
        self.assertEqual(len(self.store.get_sets_for_date(self.day)), 1)

    def test_get_last_set(self) -> None:
        bench = self.store.find_exercise("Bench Press")
        self.assertIsNone(self.store.get_last_set(bench))
        later = self.day + datetime.timedelta(days=1)
        self.store.log_set(bench, 70, 5, later)
        self.store.log_set(bench, 60, 8, self.day)
        last = self.store.log_set(bench, 72.5, 4, later)
        self.assertEqual(self.store.get_last_set(bench).id, last.id)

    def test_get_sets_range_inclusive(self) -> None:
        bench = self.store.find_exercise("Bench Press")
        for offset, weight in [(5, 50), (0, 40), (10, 60), (11, 65)]:
            self.store.log_set(bench, weight, 8, self.day + datetime.timedelta(days=offset))
        sets = self.store.get_sets(
            bench, self.day, self.day + datetime.timedelta(days=10)
        )
        self.assertEqual([s.weight for s in sets], [40.0, 50.0, 60.0])

    def test_log_dates_in_month(self) -> None:
        bench = self.store.find_exercise("Bench Press")
        for day in [
            datetime.date(2024, 2, 29),
            datetime.date(2024, 3, 1),
            datetime.date(2024, 3, 31),
            datetime.date(2024, 4, 1),
        ]:
            self.store.log_set(bench, 50, 8, day)
        self.store.log_set(bench, 55, 8, datetime.date(2024, 3, 31))
        dates = self.store.get_log_dates_in_month(datetime.date(2024, 3, 15))
        self.assertEqual(dates, [datetime.date(2024, 3, 1), datetime.date(2024, 3, 31)])

    def test_exercises_with_sets(self) -> None:
        squat = self.store.find_exercise("Squat")
        self.store.log_set(squat, 80, 5, self.day)
        self.assertEqual([e.name for e in self.store.exercises_with_sets()], ["Squat"])

    def test_seeding_is_idempotent(self) -> None:
        before = self.store.list_exercises()
        self.assertEqual(self.store.seed_default_exercises(), 0)
        self.assertEqual(self.store.list_exercises(), before)
        self.assertEqual(len(before), 20)

    def test_batch_reset(self) -> None:
        bench = self.store.find_exercise("Bench Press")
        custom = self.store.add_exercise("Landmine Press")
        self.store.toggle_favorite(bench)
        self.store.log_set(bench, 60, 8, self.day)
        self.store.log_set(custom, 30, 10, self.day)
        self.events.clear()
        self.store.batch_reset_training_data()
        self.assertEqual(self._count("workout_sets"), 0)
        self.assertEqual(self._count("workout_logs"), 0)
        self.assertIsNone(self.store.find_exercise("Landmine Press"))
        self.assertEqual(len(self.store.list_exercises()), 20)
        self.assertEqual(self.store.list_exercises(ExerciseFilter.FAVORITES), [])
        self.assertEqual(
            {e.type for e in self.events},
            {EventType.FAVORITES_CHANGED, EventType.WORKOUT_DATA_CHANGED},
        )

    def test_batch_reset_is_all_or_nothing(self) -> None:
        bench = self.store.find_exercise("Bench Press")
        self.store.add_exercise("Landmine Press")
        self.store.log_set(bench, 60, 8, self.day)
        conn = sqlite3.connect(self.db_path)
        conn.execute(
            "CREATE TRIGGER block_delete BEFORE DELETE ON exercises "
            "BEGIN SELECT RAISE(ABORT, 'blocked'); END;"
        )
        conn.commit()
        conn.close()
        self.events.clear()
        with self.assertRaises(PersistenceFailure):
            self.store.batch_reset_training_data()
        self.assertEqual(self._count("workout_sets"), 1)
        self.assertEqual(self._count("workout_logs"), 1)
        self.assertIsNotNone(self.store.find_exercise("Landmine Press"))
        self.assertEqual(self.events, [])

    def test_write_failure_propagates(self) -> None:
        bench = self.store.find_exercise("Bench Press")
        log = self.store.get_or_create_log(self.day)
        conn = sqlite3.connect(self.db_path)
        conn.execute(
            "CREATE TRIGGER block_insert BEFORE INSERT ON workout_sets "
            "BEGIN SELECT RAISE(ABORT, 'disk full'); END;"
        )
        conn.commit()
        conn.close()
        with self.assertRaises(PersistenceFailure):
            self.store.add_set(log, bench, 60, 8)

    def test_log_set_failure_leaves_no_empty_log(self) -> None:
        squat = self.store.find_exercise("Squat")
        conn = sqlite3.connect(self.db_path)
        conn.execute(
            "CREATE TRIGGER block_insert BEFORE INSERT ON workout_sets "
            "BEGIN SELECT RAISE(ABORT, 'disk full'); END;"
        )
        conn.commit()
        conn.close()
        self.events.clear()
        with self.assertRaises(PersistenceFailure):
            self.store.log_set(squat, 60, 8, self.day)
        self.assertIsNone(self.store.get_log(self.day))
        self.assertEqual(self._count("workout_logs"), 0)
        self.assertEqual(self.events, [])

    def test_non_finite_weight_rejected(self) -> None:
        squat = self.store.find_exercise("Squat")
        for weight in (float("nan"), float("inf"), float("-inf")):
            with self.assertRaises(ValidationError):
                self.store.log_set(squat, weight, 5, self.day)
        with self.assertRaises(ValidationError):
            self.store.log_set(squat, 60, 7.5, self.day)
        self.assertEqual(self._count("workout_sets"), 0)
        self.assertIsNone(self.store.get_log(self.day))

    def test_concurrent_writers_and_readers(self) -> None:
        bench = self.store.find_exercise("Bench Press")
        squat = self.store.find_exercise("Squat")
        churn_day = self.day + datetime.timedelta(days=1)
        errors = []
        empty_logs_seen = []
        done = threading.Event()

        def write(exercise, weight):
            try:
                for _ in range(20):
                    self.store.log_set(exercise, weight, 5, self.day)
            except Exception as exc:
                errors.append(exc)

        def churn():
            try:
                for _ in range(20):
                    s = self.store.log_set(squat, 80, 3, churn_day)
                    self.store.delete_set(s)
            except Exception as exc:
                errors.append(exc)

        def read():
            conn = sqlite3.connect(self.db_path, timeout=10)
            try:
                while not done.is_set():
                    empty = conn.execute(
                        "SELECT COUNT(*) FROM workout_logs l WHERE NOT EXISTS "
                        "(SELECT 1 FROM workout_sets s WHERE s.log_id = l.id);"
                    ).fetchall()[0][0]
                    if empty:
                        empty_logs_seen.append(empty)
            except Exception as exc:
                errors.append(exc)
            finally:
                conn.close()

        reader = threading.Thread(target=read)
        writers = [
            threading.Thread(target=write, args=(bench, 60)),
            threading.Thread(target=write, args=(squat, 100)),
            threading.Thread(target=churn),
        ]
        reader.start()
        for t in writers:
            t.start()
        for t in writers:
            t.join()
        done.set()
        reader.join()

        self.assertEqual(errors, [])
        self.assertEqual(empty_logs_seen, [])
        self.assertEqual(len(self.store.get_sets_for_date(self.day)), 40)
        self.assertEqual(self.store.get_log_dates_between(self.day, churn_day), [self.day])

    def test_builtin_catalog(self) -> None:
        names = load_default_catalog()
        self.assertEqual(len(names), 20)
        self.assertEqual(names, list(DEFAULT_EXERCISES))
        self.assertEqual(
            len(self.store.list_exercises(ExerciseFilter.DEFAULT)), len(DEFAULT_EXERCISES)
        )

    def test_catalog_from_csv(self) -> None:
        csv_path = "test_store_catalog.csv"
        with open(csv_path, "w", encoding="utf-8") as f:
            f.write("Exercise Name\nGoblet Squat\n Farmer Walk \n")
        try:
            self.assertEqual(load_default_catalog(csv_path), ["Goblet Squat", "Farmer Walk"])
        finally:
            os.remove(csv_path)
        with self.assertRaises(NotFoundError):
            with self.assertLogs("db", level="ERROR"):
                load_default_catalog("missing_catalog.csv")

    def test_read_failure_returns_empty(self) -> None:
        conn = sqlite3.connect(self.db_path)
        conn.execute("DROP TABLE workout_sets;")
        conn.commit()
        conn.close()
        bench = self.store.find_exercise("Bench Press")
        with self.assertLogs("db", level="ERROR"):
            self.assertEqual(self.store.get_all_sets(), [])
        self.assertIsNone(self.store.get_last_set(bench))


if __name__ == "__main__":
    unittest.main()
