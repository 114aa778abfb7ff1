import datetime
from enum import Enum
from typing import Any, Tuple

from pydantic import BaseModel, model_validator

from mrm_billing.modules.errors import ValidationFailure


class Month(str, Enum):
    """Billing months in financial-year order (April first)."""

    APR = "apr"
    MAY = "may"
    JUN = "jun"
    JUL = "jul"
    AUG = "aug"
    SEP = "sep"
    OCT = "oct"
    NOV = "nov"
    DEC = "dec"
    JAN = "jan"
    FEB = "feb"
    MAR = "mar"

    @property
    def calendar_month(self) -> int:
        return CALENDAR_MONTHS[self.value]

    @property
    def display_name(self) -> str:
        return datetime.date(2000, self.calendar_month, 1).strftime("%B")

    @property
    def fy_index(self) -> int:
        """0 for April through 11 for March."""
        return FY_ORDER.index(self)

    @property
    def in_end_year(self) -> bool:
        # Jan-Mar are billed in the second calendar year of the FY pair
        return self.calendar_month < FY_START_MONTH

    @classmethod
    def parse(cls, value: Any) -> "Month":
        if isinstance(value, Month):
            return value
        if isinstance(value, int):
            for month in cls:
                if month.calendar_month == value:
                    return month
            raise ValidationFailure(f"Unrecognized month number: {value}")
        text = str(value or "").strip().lower()
        for month in cls:
            if text in (month.value, month.display_name.lower()):
                return month
        raise ValidationFailure(f"Unrecognized month code: {value!r}")

    @classmethod
    def from_calendar(cls, calendar_month: int) -> "Month":
        return cls.parse(int(calendar_month))


FY_START_MONTH = 4

CALENDAR_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

FY_ORDER = list(Month)


class FinancialYear(BaseModel):
    start_year: int
    end_year: int

    @model_validator(mode="before")
    @classmethod
    def fill_end_year(cls, data: Any) -> Any:
        if isinstance(data, dict):
            # Accept the camelCase keys found in exported records
            if "startYear" in data and "start_year" not in data:
                data["start_year"] = data.pop("startYear")
            if "endYear" in data and "end_year" not in data:
                data["end_year"] = data.pop("endYear")
            if "start_year" in data and data.get("end_year") is None:
                data["end_year"] = int(data["start_year"]) + 1
        return data

    @model_validator(mode="after")
    def check_span(self) -> "FinancialYear":
        if self.end_year != self.start_year + 1:
            raise ValueError(
                f"Financial year must span consecutive years, got {self.start_year}-{self.end_year}"
            )
        return self

    @classmethod
    def starting(cls, start_year: int) -> "FinancialYear":
        return cls(start_year=start_year, end_year=start_year + 1)

    @classmethod
    def containing(cls, date_obj: datetime.date) -> "FinancialYear":
        if date_obj.month >= FY_START_MONTH:
            return cls.starting(date_obj.year)
        return cls.starting(date_obj.year - 1)

    @property
    def label(self) -> str:
        return f"FY {self.start_year}-{self.end_year}"

    def calendar_year(self, month: Month) -> int:
        month = Month.parse(month)
        return self.end_year if month.in_end_year else self.start_year

    def month_label(self, month: Month) -> str:
        month = Month.parse(month)
        return f"{month.display_name} {self.calendar_year(month)}"


def previous_period(month: Month, fy_start: int) -> Tuple[Month, int]:
    """Calendar predecessor of a billing period.

    April steps back into March of the previous financial year.
    """
    month = Month.parse(month)
    if month is Month.APR:
        return Month.MAR, fy_start - 1
    return FY_ORDER[month.fy_index - 1], fy_start


def next_period(month: Month, fy_start: int) -> Tuple[Month, int]:
    month = Month.parse(month)
    if month is Month.MAR:
        return Month.APR, fy_start + 1
    return FY_ORDER[month.fy_index + 1], fy_start


def period_for_date(date_obj: datetime.date) -> Tuple[Month, int]:
    """(month, financial-year start) a calendar date is billed in."""
    fy = FinancialYear.containing(date_obj)
    return Month.from_calendar(date_obj.month), fy.start_year
