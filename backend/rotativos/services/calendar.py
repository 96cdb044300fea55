# rotativos/services/calendar.py
from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from rotativos.core.config import settings


def today_local(now: Optional[datetime] = None) -> date:
    tz = ZoneInfo(settings.TIMEZONE)
    if now is None:
        return datetime.now(tz).date()
    if now.tzinfo is None:
        return now.date()
    return now.astimezone(tz).date()


def days_until(event_date: date, today: date) -> int:
    return (event_date - today).days


def is_weekend(d: date) -> bool:
    return d.weekday() >= 5  # sábado=5, domingo=6


def month_key(d: date) -> str:
    return f"{d.year}-{d.month:02d}"


def week_key(d: date) -> str:
    # sábado y domingo caen en la misma semana ISO
    iso = d.isocalendar()
    return f"{iso[0]}-W{iso[1]:02d}"


def format_ddmm(d: date) -> str:
    return f"{d.day:02d}/{d.month:02d}"
