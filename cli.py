import argparse
import datetime
import shutil
import sys
from typing import Optional

from app import LiftLogApp, configure_logging
from config import load_settings
from models import LiftLogError, NotFoundError


def backup_db(db_path: str, backup_path: str) -> None:
    shutil.copy(db_path, backup_path)


def restore_db(backup_path: str, db_path: str) -> None:
    shutil.copy(backup_path, db_path)


def _exercise(app: LiftLogApp, name: str):
    exercise = app.store.find_exercise(name)
    if exercise is None:
        raise NotFoundError(f"unknown exercise '{name}'")
    return exercise


def demo_data(app: LiftLogApp) -> None:
    """Populate the database with a few sessions if it has none."""
    if app.store.get_all_sets():
        print("Database already contains workouts")
        return
    today = datetime.date.today()
    bench = _exercise(app, "Bench Press")
    squat = _exercise(app, "Squat")
    for offset, (weight, reps) in enumerate([(60.0, 8), (62.5, 10), (62.5, 12)]):
        day = today - datetime.timedelta(days=7 * (2 - offset))
        app.store.log_set(bench, weight, reps, day)
        app.store.log_set(squat, weight + 20, reps - 2, day)
    print("Demo data inserted")


def print_stats(app: LiftLogApp, month: Optional[str]) -> None:
    as_of = (
        datetime.date.fromisoformat(f"{month}-01") if month else datetime.date.today()
    )
    first = as_of.replace(day=1)
    last = (first + datetime.timedelta(days=32)).replace(day=1) - datetime.timedelta(days=1)
    summary = app.statistics.period_summary(first, last)
    unit = app.settings.weight_unit
    print(f"Month: {first:%Y-%m}")
    print(f"Training days: {app.statistics.monthly_training_day_count(as_of)}")
    print(f"Sets: {summary['sets']}  Reps: {summary['reps']}  Volume: {summary['volume']} {unit}")
    for exercise in app.statistics.most_frequent_exercises(first, last):
        print(f"  {exercise.name}")


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--db", default=None)
    common.add_argument("--config", default="settings.yaml")
    common.add_argument("--verbose", action="store_true")

    parser = argparse.ArgumentParser(description="Training log utility commands")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("seed", parents=[common])

    add = sub.add_parser("add-exercise", parents=[common])
    add.add_argument("name")

    log = sub.add_parser("log", parents=[common])
    log.add_argument("exercise")
    log.add_argument("weight", type=float)
    log.add_argument("reps", type=int)
    log.add_argument("--date", type=datetime.date.fromisoformat, default=None)

    sug = sub.add_parser("suggest", parents=[common])
    sug.add_argument("exercise")

    stats = sub.add_parser("stats", parents=[common])
    stats.add_argument("--month", default=None, help="YYYY-MM")

    chart = sub.add_parser("chart", parents=[common])
    chart.add_argument("exercise")
    chart.add_argument("--period", type=int, choices=[1, 3, 6, 12], default=None)

    exp = sub.add_parser("export", parents=[common])
    exp.add_argument("path")

    imp = sub.add_parser("import", parents=[common])
    imp.add_argument("path")

    bkp = sub.add_parser("backup", parents=[common])
    bkp.add_argument("--out", default="backup.db")

    rst = sub.add_parser("restore", parents=[common])
    rst.add_argument("--in", dest="src", default="backup.db")

    reset = sub.add_parser("reset", parents=[common])
    reset.add_argument("--yes", action="store_true")

    sub.add_parser("demo", parents=[common])
    return parser


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.config)
    configure_logging("DEBUG" if args.verbose else settings.log_level)
    db_path = args.db or settings.db_path

    if args.cmd == "restore":
        restore_db(args.src, db_path)
        return 0

    try:
        app = LiftLogApp(db_path, settings=settings)
    except LiftLogError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    try:
        if args.cmd == "seed":
            print(f"Added {app.store.seed_default_exercises()} default exercise(s)")
        elif args.cmd == "add-exercise":
            exercise = app.store.add_exercise(args.name)
            print(f"Added {exercise.name} (id {exercise.id})")
        elif args.cmd == "log":
            workout_set = app.store.log_set(
                _exercise(app, args.exercise), args.weight, args.reps, args.date
            )
            print(f"Logged {workout_set.weight} x {workout_set.reps} on {workout_set.date}")
        elif args.cmd == "suggest":
            weight = app.statistics.suggest_next_weight(_exercise(app, args.exercise))
            print(f"{weight} {settings.weight_unit}")
        elif args.cmd == "stats":
            print_stats(app, args.month)
        elif args.cmd == "chart":
            period = args.period or settings.chart_period_months
            for point in app.statistics.chart_series(_exercise(app, args.exercise), period):
                print(f"{point.date.isoformat()} {point.weight}")
        elif args.cmd == "export":
            app.snapshots.write(args.path)
        elif args.cmd == "import":
            exercises, sets = app.snapshots.read(args.path)
            print(f"Imported {exercises} exercise(s) and {sets} set(s)")
        elif args.cmd == "backup":
            backup_db(db_path, args.out)
        elif args.cmd == "reset":
            if not args.yes:
                print("Refusing to reset without --yes", file=sys.stderr)
                return 2
            app.store.batch_reset_training_data()
            app.store.training_data.vacuum()
        elif args.cmd == "demo":
            demo_data(app)
    except LiftLogError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        app.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
