from datetime import datetime, date
from typing import Optional

from dateutil.parser import parse as parse_date
from passlib.context import CryptContext

from errors import ValidationError


def parse_tanggal(value, field: str = "tanggal") -> Optional[datetime]:
    """'2025-03-01', '2025-03-01T10:00:00.000Z', datetime -> datetime naive (None jika kosong)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return parse_date(str(value)).replace(tzinfo=None)
    except (ValueError, OverflowError):
        raise ValidationError(f"Format {field} tidak valid: {value}")


def model_to_dict(obj) -> dict:
    if obj is None:
        return None
    return {c.key: getattr(obj, c.key) for c in obj.__table__.columns}


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
