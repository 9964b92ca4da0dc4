from __future__ import annotations

import re
from datetime import date
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.senexus.models import Firm, Module


SLUG_RE = re.compile(r"^[a-z0-9-]+$")
_DMY_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def parse_ref(ref: str | int) -> int | str:
    """A route reference is either a numeric primary key or a slug."""
    if isinstance(ref, int):
        return ref
    ref = (ref or "").strip()
    return int(ref) if ref.isdigit() else ref


def find_firm(s: "Session", firm_ref: str | int) -> "Firm | None":
    from app.senexus.models import Firm

    ref = parse_ref(firm_ref)
    if isinstance(ref, int):
        return s.get(Firm, ref)
    return s.execute(select(Firm).where(Firm.slug == ref)).scalar_one_or_none()


def find_module(s: "Session", module_ref: str | int) -> "Module | None":
    from app.senexus.models import Module

    ref = parse_ref(module_ref)
    if isinstance(ref, int):
        return s.get(Module, ref)
    return s.execute(select(Module).where(Module.slug == ref)).scalar_one_or_none()


def parse_flexible_date(raw: str | None) -> date | None:
    """
    Accepts YYYY-MM-DD and D/M/YYYY.

    Slash dates are read day-first; when the second number exceeds 12 the input
    is read as M/D/YYYY. Raises ValueError for anything unparseable.
    """
    s = (raw or "").strip()
    if not s:
        return None
    m = _DMY_RE.match(s)
    if m:
        a, b, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
        if b > 12:
            return date(year, a, b)
        return date(year, b, a)
    return date.fromisoformat(s)


def clean_str(value: Any) -> str | None:
    if value is None:
        return None
    out = str(value).strip()
    return out or None


def require_json_object(payload: Any) -> dict:
    from app.senexus.errors import ValidationError

    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.", details={"body": "Expected an object."})
    return payload
