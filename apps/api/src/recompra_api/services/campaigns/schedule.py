"""Calendar offsets expressed as ``(value, TimeUnit)`` pairs."""

from __future__ import annotations

from datetime import datetime

from dateutil.relativedelta import relativedelta

from recompra_api.models.campaign import TimeUnit

_STEPS = {
    TimeUnit.DAYS: "days",
    TimeUnit.WEEKS: "weeks",
    TimeUnit.MONTHS: "months",
    TimeUnit.YEARS: "years",
}


def shift(moment: datetime, value: int | None, unit: TimeUnit | str | None) -> datetime:
    """Move ``moment`` by ``value`` units; negative values move backwards.

    Month and year steps clamp to the last day of the target month
    (Jan 31 + 1 month is Feb 28/29).
    """

    if not value:
        return moment
    unit = TimeUnit(getattr(unit, "value", unit) or TimeUnit.DAYS)
    return moment + relativedelta(**{_STEPS[unit]: value})
