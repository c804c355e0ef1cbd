from __future__ import annotations

from fastapi import HTTPException

from .config import settings
from .validation import UNMAPPED_POLICIES

SETTING_KEYS = (
    "default_location_id",
    "director_location_id",
    "staff_accrual_location_id",
    "leave_payout_type",
    "unmapped_policy",
)


def normalize_setting(key: str, value) -> str:
    if key not in SETTING_KEYS:
        raise HTTPException(status_code=400, detail=f"unknown setting: {key}")
    raw = str(value or "").strip()
    if not raw:
        raise HTTPException(status_code=400, detail=f"{key} is required")
    if key == "unmapped_policy":
        raw = raw.lower()
        if raw not in UNMAPPED_POLICIES:
            raise HTTPException(
                status_code=400,
                detail=f"invalid unmapped_policy. Must be one of: {', '.join(UNMAPPED_POLICIES)}",
            )
    elif key == "leave_payout_type":
        raw = raw.lower()
    else:
        raw = raw.upper()
    return raw


def load_setting_rows(cur) -> list[dict]:
    cur.execute(
        """
        SELECT setting_key, setting_value, updated_by, updated_at
        FROM voucher_settings
        ORDER BY setting_key
        """
    )
    return cur.fetchall() or []


def effective_settings(rows) -> dict[str, str]:
    out = settings.voucher_defaults()
    for r in rows or []:
        key = str(r.get("setting_key") or "")
        if key in SETTING_KEYS and (r.get("setting_value") or "").strip():
            out[key] = r["setting_value"].strip()
    return out


def load_voucher_settings(cur) -> dict[str, str]:
    return effective_settings(load_setting_rows(cur))
