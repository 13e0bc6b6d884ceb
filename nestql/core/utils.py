from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.sql.sqltypes import Boolean, Date, DateTime, Float, Integer, Numeric, Uuid

from ..errors import ValidationError

_TRUE = ('true', 't', '1', 'yes', 'y')
_FALSE = ('false', 'f', '0', 'no', 'n')


def coerce_value(sa_type: Any, val: Any, *, path=()) -> Any:
    """Coerce a JSON-ish client value to the Python type a column expects.

    Only string inputs are converted; anything already typed passes through.
    Unparseable strings raise ValidationError rather than reaching the driver.
    """
    if val is None or sa_type is None or not isinstance(val, str):
        return val
    try:
        if isinstance(sa_type, DateTime):
            s = val.replace('Z', '+00:00') if val.endswith('Z') else val
            dv = datetime.fromisoformat(s)
            if getattr(sa_type, 'timezone', False) is False and dv.tzinfo is not None:
                dv = dv.replace(tzinfo=None)
            return dv
        if isinstance(sa_type, Date):
            return date.fromisoformat(val)
        if isinstance(sa_type, Boolean):
            lv = val.strip().lower()
            if lv in _TRUE:
                return True
            if lv in _FALSE:
                return False
            raise ValueError(f"not a boolean: {val!r}")
        if isinstance(sa_type, Integer):
            return int(val)
        if isinstance(sa_type, Float):
            return float(val)
        if isinstance(sa_type, Numeric):
            return Decimal(val) if getattr(sa_type, 'asdecimal', False) else float(val)
        if isinstance(sa_type, Uuid):
            return uuid.UUID(val) if getattr(sa_type, 'as_uuid', True) else val
    except (ValueError, InvalidOperation) as exc:
        raise ValidationError(f"Invalid value {val!r}: {exc}", path=path) from exc
    return val


def dedupe(items) -> list:
    """Order-preserving de-duplication."""
    seen = set()
    out = []
    for it in items:
        if it in seen:
            continue
        seen.add(it)
        out.append(it)
    return out
