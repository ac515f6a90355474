from enum import Enum

from pydantic import BaseModel, Field, model_validator


class RecurrenceType(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class RecurrenceRule(BaseModel):
    """Recurrence descriptor stored on a series root.

    ``days_of_week`` uses 0=Sunday..6=Saturday. ``count`` is the number of
    repetitions generated after the first booking.
    """

    type: RecurrenceType
    interval: int = Field(default=1, ge=1, le=52)
    days_of_week: list[int] | None = Field(default=None, min_length=1, max_length=7)
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    count: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def validate_fields(self) -> "RecurrenceRule":
        if self.days_of_week is not None:
            if any(day < 0 or day > 6 for day in self.days_of_week):
                raise ValueError("days_of_week values must be between 0 (Sunday) and 6 (Saturday)")
            self.days_of_week = sorted(set(self.days_of_week))
            if self.type is not RecurrenceType.WEEKLY:
                raise ValueError("days_of_week is only valid for weekly recurrence")
        if self.day_of_month is not None and self.type is not RecurrenceType.MONTHLY:
            raise ValueError("day_of_month is only valid for monthly recurrence")
        return self
