from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

from convenio.config import CIVIL_UTC_OFFSET_HOURS
from convenio.errors import ValidationError


def civil_timezone(offset_hours: int = CIVIL_UTC_OFFSET_HOURS) -> timezone:
    """Fuso civil de offset fixo (sem regras de horário de verão)."""
    if not -23 <= offset_hours <= 23:
        raise ValidationError("Fuso horário inválido", {"timezone_offset": offset_hours})
    return timezone(timedelta(hours=offset_hours))


def civil_to_utc(day: date, at: time, offset_hours: int = CIVIL_UTC_OFFSET_HOURS) -> datetime:
    local = datetime.combine(day, at.replace(tzinfo=None), tzinfo=civil_timezone(offset_hours))
    return local.astimezone(timezone.utc)


def to_storage(when: datetime) -> datetime:
    """Instante absoluto -> datetime UTC ingênuo (formato do banco). Ingênuo = já é UTC."""
    if when.tzinfo is None:
        return when
    return when.astimezone(timezone.utc).replace(tzinfo=None)


def from_storage(value: datetime, offset_hours: int = CIVIL_UTC_OFFSET_HOURS) -> datetime:
    """Datetime UTC do banco -> horário civil local (aware)."""
    return value.replace(tzinfo=timezone.utc).astimezone(civil_timezone(offset_hours))


def civil_day_bounds(day: date, offset_hours: int = CIVIL_UTC_OFFSET_HOURS) -> tuple[datetime, datetime]:
    """Intervalo [início, fim) do dia civil, em UTC ingênuo."""
    start = civil_to_utc(day, time.min, offset_hours)
    return to_storage(start), to_storage(start + timedelta(days=1))
