from typing import Literal, Optional

from pydantic import BaseModel, ValidationError, field_validator


class SettingsSchema(BaseModel):
    db_path: str = "workout.db"
    weight_unit: Literal["kg", "lb"] = "kg"
    debounce_ms: int = 300
    chart_period_months: int = 1
    log_level: str = "INFO"
    seed_defaults: bool = True
    catalog_path: Optional[str] = None

    @field_validator("debounce_ms")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("debounce_ms must be non-negative")
        return value

    @field_validator("chart_period_months")
    @classmethod
    def _known_period(cls, value: int) -> int:
        if value not in (1, 3, 6, 12):
            raise ValueError("chart_period_months must be 1, 3, 6 or 12")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value}")
        return level


def validate_settings(data: dict) -> SettingsSchema:
    try:
        return SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
