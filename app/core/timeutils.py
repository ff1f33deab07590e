"""
Utilidades de fecha/hora. Todas las marcas de tiempo se manejan en UTC.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """
    Normaliza un datetime a UTC con tzinfo.
    Los naive se asumen UTC (SQLite no conserva la zona horaria).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
