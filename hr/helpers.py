from datetime import date

from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from accounts.models import User

from .payroll import month_bounds


def _get_employee(pk) -> User:
    return get_object_or_404(User, pk=pk, role=User.Role.EMPLOYEE)


def _parse_date(value: str, name: str) -> date:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError({name: "Use the YYYY-MM-DD format."})


def _parse_month(value: str, name: str) -> tuple[int, int]:
    try:
        year, month = value.split("-")
        year, month = int(year), int(month)
        if not 1 <= month <= 12:
            raise ValueError(month)
    except (AttributeError, ValueError):
        raise ValidationError({name: "Use the YYYY-MM format."})
    return year, month


def _parse_year(value: str, name: str) -> int:
    try:
        year = int(value)
    except (TypeError, ValueError):
        raise ValidationError({name: "Year must be a number."})
    if not 1900 <= year <= 2100:
        raise ValidationError({name: "Year is out of range."})
    return year


def work_date_range(params, today: date | None = None) -> tuple[date, date] | None:
    """
    Inclusive work-date range from list query params, first match wins:
    custom_date, custom_month, selected_year, start_date+end_date, period.
    None means no date filter.
    """
    today = today or timezone.localdate()

    if params.get("custom_date"):
        day = _parse_date(params["custom_date"], "custom_date")
        return day, day

    if params.get("custom_month"):
        return month_bounds(*_parse_month(params["custom_month"], "custom_month"))

    if params.get("selected_year"):
        year = _parse_year(params["selected_year"], "selected_year")
        return date(year, 1, 1), date(year, 12, 31)

    if params.get("start_date") and params.get("end_date"):
        start = _parse_date(params["start_date"], "start_date")
        end = _parse_date(params["end_date"], "end_date")
        if start > end:
            raise ValidationError({"end_date": "End date must not be before start date."})
        return start, end

    period = params.get("period")
    if period == "day":
        return today, today
    if period == "month":
        return month_bounds(today.year, today.month)
    if period == "year":
        return date(today.year, 1, 1), date(today.year, 12, 31)
    return None
