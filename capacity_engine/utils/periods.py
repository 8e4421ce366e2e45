"""Period arithmetic shared by the aggregator, trend analyzer and forecaster."""

from __future__ import annotations

import math
import re
from datetime import date

import pandas as pd


GRANULARITY_FREQUENCIES = {
    "daily": "D",
    "weekly": "W-SUN",
    "monthly": "M",
}

_UNIT_DAYS = {
    "d": 1.0,
    "w": 7.0,
    "m": 365.25 / 12.0,
    "y": 365.25,
}

_GRANULARITY_DAYS = {
    "daily": 1.0,
    "weekly": 7.0,
    "monthly": 365.25 / 12.0,
}

_LEGACY_HORIZONS = {
    "next_month": "1m",
    "next_quarter": "3m",
    "6_months": "6m",
    "12_months": "12m",
    "next_year": "1y",
}

_LEGACY_TIMEFRAMES = {
    "last_month": "1m",
    "last_quarter": "3m",
    "last_6_months": "6m",
    "last_year": "1y",
}

_SPAN_PATTERN = re.compile(r"^(\d+)\s*([dwmy])$")
_TIMEFRAME_PATTERN = re.compile(r"^last_(\d+)_(day|week|month|year)s?$")

HORIZON_REGEX = r"^(\d+\s*[dwmy]|next_month|next_quarter|6_months|12_months|next_year)$"
TIMEFRAME_REGEX = (
    r"^(\d+\s*[dwmy]|last_month|last_quarter|last_6_months|last_year"
    r"|last_\d+_(day|week|month|year)s?)$"
)


class PeriodSpecError(ValueError):
    """Raised for unknown granularities, horizons or timeframes."""


def frequency_for(granularity: str) -> str:
    try:
        return GRANULARITY_FREQUENCIES[granularity]
    except KeyError as exc:
        raise PeriodSpecError(
            f"granularity must be one of {sorted(GRANULARITY_FREQUENCIES)}"
        ) from exc


def period_days(granularity: str) -> int:
    frequency_for(granularity)
    return int(round(_GRANULARITY_DAYS[granularity]))


def to_period(value: date, granularity: str) -> pd.Period:
    return pd.Period(pd.Timestamp(value), freq=frequency_for(granularity))


def build_periods(start: date, end: date, granularity: str) -> list[pd.Period]:
    """Inclusive list of periods touching [start, end]."""
    if end < start:
        return []
    index = pd.period_range(
        start=to_period(start, granularity),
        end=to_period(end, granularity),
        freq=frequency_for(granularity),
    )
    return list(index)


def period_bounds(period: pd.Period) -> tuple[date, date]:
    return period.start_time.date(), period.end_time.date()


def period_label(period: pd.Period, granularity: str) -> str:
    start, _ = period_bounds(period)
    if granularity == "monthly":
        return f"{start.year:04d}-{start.month:02d}"
    if granularity == "weekly":
        iso_year, iso_week, _ = start.isocalendar()
        return f"{iso_year:04d}-W{iso_week:02d}"
    return start.isoformat()


def label_to_period(label: str, granularity: str) -> pd.Period:
    if granularity == "weekly":
        year_text, week_text = label.split("-W")
        monday = date.fromisocalendar(int(year_text), int(week_text), 1)
        return to_period(monday, granularity)
    return pd.Period(label, freq=frequency_for(granularity))


def shift_label(label: str, granularity: str, steps: int) -> str:
    return period_label(label_to_period(label, granularity) + steps, granularity)


def seasonal_key(label: str, granularity: str) -> str:
    """Sub-period used to group periods when looking for seasonality."""
    start, _ = period_bounds(label_to_period(label, granularity))
    if granularity == "daily":
        return start.strftime("%A")
    return start.strftime("%B")


def overlap_days(period: pd.Period, start: date, end: date) -> int:
    period_start, period_end = period_bounds(period)
    lower = max(period_start, start)
    upper = min(period_end, end)
    if upper < lower:
        return 0
    return (upper - lower).days + 1


def _span_to_periods(amount: int, unit: str, granularity: str) -> int:
    frequency_for(granularity)
    days = amount * _UNIT_DAYS[unit]
    return max(1, int(math.floor(days / _GRANULARITY_DAYS[granularity] + 0.5)))


def parse_horizon(horizon: str, granularity: str) -> int:
    """Number of forward periods covered by a horizon such as `3m` or `next_quarter`."""
    normalized = _LEGACY_HORIZONS.get(horizon.strip().lower(), horizon.strip().lower())
    match = _SPAN_PATTERN.fullmatch(normalized)
    if match is None:
        raise PeriodSpecError(
            f"horizon '{horizon}' must look like 3m, 6w, 90d, 1y or a named horizon"
        )
    amount = int(match.group(1))
    if amount <= 0:
        raise PeriodSpecError("horizon must cover at least one period")
    return _span_to_periods(amount, match.group(2), granularity)


def timeframe_to_range(timeframe: str, as_of: date, granularity: str) -> tuple[date, date]:
    """Resolve `last_quarter`-style timeframes into an inclusive date range."""
    token = timeframe.strip().lower()
    normalized = _LEGACY_TIMEFRAMES.get(token)
    if normalized is None:
        match = _TIMEFRAME_PATTERN.fullmatch(token)
        if match is not None:
            normalized = f"{match.group(1)}{match.group(2)[0]}"
        else:
            normalized = token
    span = _SPAN_PATTERN.fullmatch(normalized)
    if span is None:
        raise PeriodSpecError(f"timeframe '{timeframe}' is not recognised")
    amount = int(span.group(1))
    if amount <= 0:
        raise PeriodSpecError("timeframe must cover at least one period")

    count = _span_to_periods(amount, span.group(2), granularity)
    first_period = to_period(as_of, granularity) - (count - 1)
    start, _ = period_bounds(first_period)
    return start, as_of
