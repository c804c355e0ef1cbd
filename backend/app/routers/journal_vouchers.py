from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from psycopg import errors as pg_errors
from typing import List, Optional
import json

from ..db import get_conn
from ..deps import get_current_user, require_permission
from ..account_mappings import account_code_exists
from ..journal_utils import ZERO, parse_period, q_amt
from ..logging_utils import json_log
from ..validation import COMMISSION_CATEGORIES, MAPPING_TYPES, VOUCHER_TYPES, LocationId, ProductType
from ..voucher_assembly import JVDR, JVSL, director_breakdown, location_breakdown
from ..voucher_posting import (
    compute_period_vouchers,
    find_existing_entries,
    normalize_voucher_types,
    period_references,
    post_vouchers,
)
from ..voucher_settings import (
    SETTING_KEYS,
    effective_settings,
    load_setting_rows,
    load_voucher_settings,
    normalize_setting,
)
from ..config import settings

router = APIRouter(prefix="/journal-vouchers", tags=["journal-vouchers"])


def _audit(cur, user_id, action: str, entity_type: str, entity_id, details: dict) -> None:
    cur.execute(
        """
        INSERT INTO audit_logs (id, user_id, action, entity_type, entity_id, details)
        VALUES (gen_random_uuid(), %s, %s, %s, %s, %s::jsonb)
        """,
        (user_id, action, entity_type, str(entity_id), json.dumps(details, default=str)),
    )


# ==================== LOCATION ACCOUNT MAPPINGS ====================


class MappingIn(BaseModel):
    location_id: Optional[str] = None
    location_name: Optional[str] = None
    mapping_type: Optional[str] = None
    account_code: Optional[str] = None
    voucher_type: Optional[str] = None
    is_active: bool = True


class MappingUpdate(BaseModel):
    location_name: Optional[str] = None
    account_code: Optional[str] = None
    is_active: Optional[bool] = None


_MAPPING_COLUMNS = """
    lam.id, lam.location_id, lam.location_name, lam.mapping_type, lam.account_code,
    ac.description AS account_description, lam.voucher_type, lam.is_active,
    lam.created_by, lam.updated_by, lam.created_at, lam.updated_at
"""


def _fetch_mapping(cur, mapping_id: int):
    cur.execute(
        f"""
        SELECT {_MAPPING_COLUMNS}
        FROM location_account_mappings lam
        LEFT JOIN account_codes ac ON ac.code = lam.account_code
        WHERE lam.id = %s
        """,
        (mapping_id,),
    )
    return cur.fetchone()


@router.get("/mappings", dependencies=[Depends(require_permission("journal_vouchers:read"))])
def list_mappings(
    voucher_type: Optional[str] = None,
    location_id: Optional[str] = None,
    is_active: Optional[bool] = None,
):
    with get_conn() as conn:
        with conn.cursor() as cur:
            sql = f"""
                SELECT {_MAPPING_COLUMNS}
                FROM location_account_mappings lam
                LEFT JOIN account_codes ac ON ac.code = lam.account_code
                WHERE 1=1
            """
            params: list = []
            if voucher_type:
                sql += " AND lam.voucher_type = %s"
                params.append(voucher_type.strip().upper())
            if location_id:
                sql += " AND lam.location_id = %s"
                params.append(location_id.strip().upper())
            if is_active is not None:
                sql += " AND lam.is_active = %s"
                params.append(is_active)
            sql += " ORDER BY lam.voucher_type, lam.location_id, lam.mapping_type"
            cur.execute(sql, params)
            return {"mappings": cur.fetchall()}


@router.get("/mappings/{mapping_id}", dependencies=[Depends(require_permission("journal_vouchers:read"))])
def get_mapping(mapping_id: int):
    with get_conn() as conn:
        with conn.cursor() as cur:
            row = _fetch_mapping(cur, mapping_id)
            if not row:
                raise HTTPException(status_code=404, detail="mapping not found")
            return {"mapping": row}


@router.post("/mappings", status_code=201, dependencies=[Depends(require_permission("journal_vouchers:write"))])
def create_mapping(data: MappingIn, user=Depends(get_current_user)):
    location_id = (data.location_id or "").strip().upper()
    location_name = (data.location_name or "").strip().upper()
    mapping_type = (data.mapping_type or "").strip().lower()
    account_code = (data.account_code or "").strip().upper()
    voucher_type = (data.voucher_type or "").strip().upper()
    if not location_id or not location_name or not mapping_type or not account_code or not voucher_type:
        raise HTTPException(
            status_code=400,
            detail="location_id, location_name, mapping_type, account_code, and voucher_type are required",
        )
    if mapping_type not in MAPPING_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"invalid mapping_type. Must be one of: {', '.join(MAPPING_TYPES)}",
        )
    if voucher_type not in VOUCHER_TYPES:
        raise HTTPException(status_code=400, detail="invalid voucher_type. Must be 'JVDR' or 'JVSL'")

    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                if not account_code_exists(cur, account_code):
                    raise HTTPException(status_code=400, detail=f"account code '{account_code}' does not exist")
                cur.execute(
                    """
                    SELECT 1 FROM location_account_mappings
                    WHERE location_id = %s AND mapping_type = %s AND voucher_type = %s
                    """,
                    (location_id, mapping_type, voucher_type),
                )
                if cur.fetchone():
                    raise HTTPException(
                        status_code=409,
                        detail=f"mapping already exists for location {location_id}, type {mapping_type}, voucher {voucher_type}",
                    )
                cur.execute(
                    """
                    INSERT INTO location_account_mappings
                      (location_id, location_name, mapping_type, account_code, voucher_type, is_active, created_by)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (location_id, location_name, mapping_type, account_code, voucher_type, data.is_active, user["user_id"]),
                )
                mapping_id = cur.fetchone()["id"]
                _audit(
                    cur,
                    user["user_id"],
                    "journal_voucher.mapping.create",
                    "location_account_mapping",
                    mapping_id,
                    {"location_id": location_id, "mapping_type": mapping_type, "voucher_type": voucher_type, "account_code": account_code},
                )
                return {"mapping": _fetch_mapping(cur, mapping_id)}


@router.put("/mappings/{mapping_id}", dependencies=[Depends(require_permission("journal_vouchers:write"))])
def update_mapping(mapping_id: int, data: MappingUpdate, user=Depends(get_current_user)):
    location_name = (data.location_name or "").strip().upper() or None
    account_code = (data.account_code or "").strip().upper() or None

    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("SELECT id FROM location_account_mappings WHERE id = %s FOR UPDATE", (mapping_id,))
                if not cur.fetchone():
                    raise HTTPException(status_code=404, detail="mapping not found")
                if account_code and not account_code_exists(cur, account_code):
                    raise HTTPException(status_code=400, detail=f"account code '{account_code}' does not exist")
                cur.execute(
                    """
                    UPDATE location_account_mappings
                    SET location_name = COALESCE(%s, location_name),
                        account_code = COALESCE(%s, account_code),
                        is_active = COALESCE(%s, is_active),
                        updated_by = %s,
                        updated_at = now()
                    WHERE id = %s
                    """,
                    (location_name, account_code, data.is_active, user["user_id"], mapping_id),
                )
                _audit(
                    cur,
                    user["user_id"],
                    "journal_voucher.mapping.update",
                    "location_account_mapping",
                    mapping_id,
                    data.model_dump(exclude_none=True),
                )
                return {"mapping": _fetch_mapping(cur, mapping_id)}


@router.delete("/mappings/{mapping_id}", dependencies=[Depends(require_permission("journal_vouchers:write"))])
def delete_mapping(mapping_id: int, user=Depends(get_current_user)):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    DELETE FROM location_account_mappings
                    WHERE id = %s
                    RETURNING id, location_id, mapping_type, voucher_type, account_code
                    """,
                    (mapping_id,),
                )
                row = cur.fetchone()
                if not row:
                    raise HTTPException(status_code=404, detail="mapping not found")
                _audit(cur, user["user_id"], "journal_voucher.mapping.delete", "location_account_mapping", mapping_id, row)
                return {"ok": True, "id": mapping_id}


# ==================== DIRECTOR ROSTER ====================


class DirectorIn(BaseModel):
    employee_id: str
    display_label: Optional[str] = None
    posting_key: Optional[LocationId] = None
    is_active: bool = True


class DirectorUpdate(BaseModel):
    display_label: Optional[str] = None
    posting_key: Optional[LocationId] = None
    is_active: Optional[bool] = None


@router.get("/directors", dependencies=[Depends(require_permission("journal_vouchers:read"))])
def list_directors():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT r.employee_id, s.name AS staff_name, r.display_label, r.posting_key,
                       r.is_active, r.created_at, r.updated_at
                FROM payroll_voucher_roles r
                LEFT JOIN staffs s ON s.id = r.employee_id
                WHERE r.role = 'director'
                ORDER BY r.employee_id
                """
            )
            return {"directors": cur.fetchall()}


@router.post("/directors", status_code=201, dependencies=[Depends(require_permission("journal_vouchers:write"))])
def create_director(data: DirectorIn, user=Depends(get_current_user)):
    employee_id = (data.employee_id or "").strip()
    if not employee_id:
        raise HTTPException(status_code=400, detail="employee_id is required")
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("SELECT 1 FROM staffs WHERE id = %s", (employee_id,))
                if not cur.fetchone():
                    raise HTTPException(status_code=400, detail=f"employee '{employee_id}' does not exist")
                cur.execute("SELECT 1 FROM payroll_voucher_roles WHERE employee_id = %s", (employee_id,))
                if cur.fetchone():
                    raise HTTPException(status_code=409, detail=f"employee '{employee_id}' already has a voucher role")
                cur.execute(
                    """
                    INSERT INTO payroll_voucher_roles
                      (employee_id, role, display_label, posting_key, is_active, created_by)
                    VALUES (%s, 'director', %s, %s, %s, %s)
                    """,
                    (employee_id, (data.display_label or "").strip() or None, data.posting_key, data.is_active, user["user_id"]),
                )
                _audit(
                    cur,
                    user["user_id"],
                    "journal_voucher.director.create",
                    "payroll_voucher_role",
                    employee_id,
                    data.model_dump(),
                )
                return {"employee_id": employee_id}


@router.patch("/directors/{employee_id}", dependencies=[Depends(require_permission("journal_vouchers:write"))])
def update_director(employee_id: str, data: DirectorUpdate, user=Depends(get_current_user)):
    fields = []
    params = []
    # Explicit nulls are applied: a cleared posting_key falls back to the director location.
    payload = data.model_dump(exclude_unset=True)
    if payload.get("is_active", True) is None:
        raise HTTPException(status_code=400, detail="is_active cannot be null")
    if "display_label" in payload:
        payload["display_label"] = (payload.get("display_label") or "").strip() or None
    for k, v in payload.items():
        fields.append(f"{k} = %s")
        params.append(v)
    if not fields:
        return {"ok": True}
    params.extend([user["user_id"], employee_id])
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    UPDATE payroll_voucher_roles
                    SET {', '.join(fields)}, updated_by = %s, updated_at = now()
                    WHERE employee_id = %s AND role = 'director'
                    """,
                    params,
                )
                if cur.rowcount == 0:
                    raise HTTPException(status_code=404, detail="director not found")
                _audit(cur, user["user_id"], "journal_voucher.director.update", "payroll_voucher_role", employee_id, payload)
                return {"ok": True}


@router.delete("/directors/{employee_id}", dependencies=[Depends(require_permission("journal_vouchers:write"))])
def delete_director(employee_id: str, user=Depends(get_current_user)):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM payroll_voucher_roles WHERE employee_id = %s AND role = 'director'",
                    (employee_id,),
                )
                if cur.rowcount == 0:
                    raise HTTPException(status_code=404, detail="director not found")
                _audit(cur, user["user_id"], "journal_voucher.director.delete", "payroll_voucher_role", employee_id, {})
                return {"ok": True}


# ==================== COMMISSION SPLIT RULES ====================


class CommissionRuleIn(BaseModel):
    location_id: LocationId
    product_type: ProductType
    mapping_type: str
    is_active: bool = True


@router.get("/commission-rules", dependencies=[Depends(require_permission("journal_vouchers:read"))])
def list_commission_rules():
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, location_id, product_type, mapping_type, is_active, created_at
                FROM commission_split_rules
                ORDER BY location_id, product_type
                """
            )
            return {"rules": cur.fetchall()}


@router.post("/commission-rules", status_code=201, dependencies=[Depends(require_permission("journal_vouchers:write"))])
def create_commission_rule(data: CommissionRuleIn, user=Depends(get_current_user)):
    mapping_type = (data.mapping_type or "").strip().lower()
    if mapping_type not in COMMISSION_CATEGORIES:
        raise HTTPException(
            status_code=400,
            detail=f"invalid mapping_type. Must be one of: {', '.join(COMMISSION_CATEGORIES)}",
        )
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT 1 FROM commission_split_rules WHERE location_id = %s AND product_type = %s",
                    (data.location_id, data.product_type),
                )
                if cur.fetchone():
                    raise HTTPException(
                        status_code=409,
                        detail=f"rule already exists for location {data.location_id}, product {data.product_type}",
                    )
                cur.execute(
                    """
                    INSERT INTO commission_split_rules (location_id, product_type, mapping_type, is_active, created_by)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (data.location_id, data.product_type, mapping_type, data.is_active, user["user_id"]),
                )
                rule_id = cur.fetchone()["id"]
                _audit(
                    cur,
                    user["user_id"],
                    "journal_voucher.commission_rule.create",
                    "commission_split_rule",
                    rule_id,
                    {"location_id": data.location_id, "product_type": data.product_type, "mapping_type": mapping_type},
                )
                return {"id": rule_id}


@router.delete("/commission-rules/{rule_id}", dependencies=[Depends(require_permission("journal_vouchers:write"))])
def delete_commission_rule(rule_id: int, user=Depends(get_current_user)):
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("DELETE FROM commission_split_rules WHERE id = %s", (rule_id,))
                if cur.rowcount == 0:
                    raise HTTPException(status_code=404, detail="rule not found")
                _audit(cur, user["user_id"], "journal_voucher.commission_rule.delete", "commission_split_rule", rule_id, {})
                return {"ok": True}


# ==================== SETTINGS ====================


class SettingIn(BaseModel):
    value: str


@router.get("/settings", dependencies=[Depends(require_permission("journal_vouchers:read"))])
def get_settings():
    with get_conn() as conn:
        with conn.cursor() as cur:
            rows = load_setting_rows(cur)
    overrides = {r["setting_key"]: r for r in rows if r["setting_key"] in SETTING_KEYS}
    effective = effective_settings(rows)
    return {
        "settings": [
            {
                "key": key,
                "value": effective[key],
                "source": "override" if key in overrides else "default",
                "updated_by": (overrides.get(key) or {}).get("updated_by"),
                "updated_at": (overrides.get(key) or {}).get("updated_at"),
            }
            for key in SETTING_KEYS
        ],
        "defaults": settings.voucher_defaults(),
    }


@router.put("/settings/{key}", dependencies=[Depends(require_permission("journal_vouchers:write"))])
def put_setting(key: str, data: SettingIn, user=Depends(get_current_user)):
    value = normalize_setting(key, data.value)
    with get_conn() as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO voucher_settings (setting_key, setting_value, updated_by, updated_at)
                    VALUES (%s, %s, %s, now())
                    ON CONFLICT (setting_key) DO UPDATE
                    SET setting_value = EXCLUDED.setting_value,
                        updated_by = EXCLUDED.updated_by,
                        updated_at = now()
                    """,
                    (key, value, user["user_id"]),
                )
                _audit(cur, user["user_id"], "journal_voucher.setting.update", "voucher_setting", key, {"value": value})
    return {"key": key, "value": value}


# ==================== PREVIEW / GENERATE / CHECK ====================


class GenerateIn(BaseModel):
    year: int
    month: int
    voucher_types: Optional[List[str]] = None


@router.get("/preview/{year}/{month}", dependencies=[Depends(require_permission("journal_vouchers:read"))])
def preview_vouchers(year: str, month: str):
    y, m = parse_period(year, month)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cfg = load_voucher_settings(cur)
            computation = compute_period_vouchers(cur, y, m, cfg)
            refs = period_references(y, m)
            existing = find_existing_entries(cur, refs.values())

    aggregate = computation.aggregate
    jvdr = computation.vouchers[JVDR]
    jvsl = computation.vouchers[JVSL]
    return {
        "year": y,
        "month": m,
        "unmapped_policy": cfg["unmapped_policy"],
        "jvdr": {
            **jvdr.summary(),
            "exists": refs[JVDR] in existing,
            "has_data": jvdr.has_source_data,
            "directors": director_breakdown(aggregate, computation.mappings, cfg),
            "totals": aggregate.director_totals().amounts(),
        },
        "jvsl": {
            **jvsl.summary(),
            "exists": refs[JVSL] in existing,
            "has_data": jvsl.has_source_data,
            "locations": location_breakdown(aggregate, computation.mappings),
            "totals": aggregate.staff_totals().amounts(),
        },
    }


@router.post("/generate", dependencies=[Depends(require_permission("journal_vouchers:write"))])
def generate_vouchers(data: GenerateIn, user=Depends(get_current_user)):
    y, m = parse_period(data.year, data.month)
    voucher_types = normalize_voucher_types(data.voucher_types)
    with get_conn() as conn:
        try:
            with conn.transaction():
                with conn.cursor() as cur:
                    cfg = load_voucher_settings(cur)
                    computation = compute_period_vouchers(cur, y, m, cfg)
                    results = post_vouchers(cur, computation, voucher_types, user["user_id"])
        except pg_errors.UniqueViolation as ex:
            json_log("warning", "journal_voucher.conflict", year=y, month=m, voucher_types=voucher_types, error=str(ex))
            raise HTTPException(
                status_code=409,
                detail="voucher was generated concurrently for this period; nothing was written",
            )
    return {"message": "voucher generation completed", "year": y, "month": m, "results": results}


@router.get("/check/{year}/{month}", dependencies=[Depends(require_permission("journal_vouchers:read"))])
def check_vouchers(year: str, month: str):
    y, m = parse_period(year, month)
    refs = period_references(y, m)
    with get_conn() as conn:
        with conn.cursor() as cur:
            existing = find_existing_entries(cur, refs.values())
    out = {"year": y, "month": m}
    for vt, ref in refs.items():
        row = existing.get(ref)
        out[vt.lower()] = (
            {"id": row["id"], "reference_no": row["reference_no"], "entry_date": row["entry_date"], "status": row["status"]}
            if row
            else None
        )
    return out


@router.get("/entries/{entry_id}", dependencies=[Depends(require_permission("journal_vouchers:read"))])
def get_entry(entry_id: int):
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, reference_no, entry_date, entry_type, description, status, created_by, created_at
                FROM journal_entries
                WHERE id = %s
                """,
                (entry_id,),
            )
            entry = cur.fetchone()
            if not entry:
                raise HTTPException(status_code=404, detail="journal entry not found")
            cur.execute(
                """
                SELECT l.line_number, l.account_code, ac.description AS account_description,
                       l.debit_amount, l.credit_amount, l.particulars
                FROM journal_entry_lines l
                LEFT JOIN account_codes ac ON ac.code = l.account_code
                WHERE l.journal_entry_id = %s
                ORDER BY l.line_number
                """,
                (entry_id,),
            )
            lines = cur.fetchall()
    total_debit = q_amt(sum((q_amt(l.get("debit_amount")) for l in lines), ZERO))
    total_credit = q_amt(sum((q_amt(l.get("credit_amount")) for l in lines), ZERO))
    return {"entry": entry, "lines": lines, "total_debit": total_debit, "total_credit": total_credit}

