from __future__ import annotations
import datetime
import json
import logging
import time
from typing import Dict, List

from models import ValidationError, validate_performance
from store import WorkoutStore

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "1.0"


def day_to_epoch(day: datetime.date) -> float:
    """Return the local start of ``day`` as Unix epoch seconds."""
    return datetime.datetime.combine(day, datetime.time.min).timestamp()


def epoch_to_day(value: float) -> datetime.date:
    return datetime.datetime.fromtimestamp(float(value)).date()


class SnapshotService:
    """Export and import the whole entity graph as a versioned JSON document."""

    def __init__(self, store: WorkoutStore) -> None:
        self.store = store

    def export_snapshot(self) -> dict:
        sets_by_exercise: Dict[int, List[dict]] = {}
        for s in self.store.get_all_sets():
            sets_by_exercise.setdefault(s.exercise_id, []).append(
                {
                    "id": s.id,
                    "weight": float(s.weight),
                    "reps": int(s.reps),
                    "date": day_to_epoch(s.date),
                }
            )
        exercises = [
            {
                "id": e.id,
                "name": e.name,
                "isDefault": e.is_default,
                "isFavorite": e.is_favorite,
                "sets": sets_by_exercise.get(e.id, []),
            }
            for e in self.store.list_exercises()
        ]
        return {
            "version": SNAPSHOT_VERSION,
            "exportedAt": time.time(),
            "exercises": exercises,
        }

    def export_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.export_snapshot(), ensure_ascii=False, indent=indent)

    def write(self, path: str) -> None:
        data = self.export_json()
        with open(path, "w", encoding="utf-8") as f:
            f.write(data)
        logger.info("snapshot written to %s", path)

    @staticmethod
    def _parse(document: dict) -> List[dict]:
        if not isinstance(document, dict):
            raise ValidationError("snapshot must be a JSON object")
        version = document.get("version")
        if version != SNAPSHOT_VERSION:
            raise ValidationError(f"unsupported snapshot version: {version!r}")
        items = document.get("exercises")
        if not isinstance(items, list):
            raise ValidationError("snapshot is missing the exercises list")
        parsed: List[dict] = []
        for item in items:
            if not isinstance(item, dict):
                raise ValidationError("exercise entries must be JSON objects")
            try:
                name = str(item["name"])
                sets = [SnapshotService._parse_set(s) for s in item.get("sets", [])]
            except (KeyError, TypeError, ValueError, OverflowError, OSError) as exc:
                raise ValidationError(f"malformed exercise entry: {exc}") from exc
            sets.sort(key=lambda entry: entry[2])
            parsed.append(
                {
                    "name": name,
                    "is_default": SnapshotService._flag(item, "isDefault"),
                    "is_favorite": SnapshotService._flag(item, "isFavorite"),
                    "sets": sets,
                }
            )
        return parsed

    @staticmethod
    def _parse_set(entry: dict) -> tuple:
        weight, reps = entry["weight"], entry["reps"]
        if isinstance(weight, bool) or not isinstance(weight, (int, float)):
            raise ValidationError(f"weight must be a number, got {weight!r}")
        if isinstance(reps, bool) or not isinstance(reps, int):
            raise ValidationError(f"reps must be an integer, got {reps!r}")
        validate_performance(weight, reps)
        return float(weight), reps, epoch_to_day(entry["date"])

    @staticmethod
    def _flag(item: dict, key: str) -> bool:
        value = item.get(key, False)
        if not isinstance(value, bool):
            raise ValidationError(f"{key} must be true or false, got {value!r}")
        return value

    def import_snapshot(self, document: dict) -> tuple[int, int]:
        """Replace training data with ``document``.

        One workout log is rebuilt per distinct calendar date; exercises are
        matched to existing rows by name. Returns exercise and set counts.
        """
        parsed = self._parse(document)
        return self.store.replace_all(parsed)

    def import_json(self, text: str) -> tuple[int, int]:
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"invalid snapshot JSON: {exc}") from exc
        return self.import_snapshot(document)

    def read(self, path: str) -> tuple[int, int]:
        with open(path, "r", encoding="utf-8") as f:
            counts = self.import_json(f.read())
        logger.info("snapshot imported from %s", path)
        return counts
