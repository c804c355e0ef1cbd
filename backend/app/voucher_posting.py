from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Iterable, Optional

from fastapi import HTTPException

from .account_mappings import MappingIndex, load_mapping_index
from .journal_utils import assert_postable, voucher_reference
from .logging_utils import json_log
from .payroll_aggregation import PeriodAggregate, aggregate_period
from .voucher_assembly import AssembledVoucher, assemble_vouchers
from .validation import VOUCHER_TYPES


@dataclass
class PeriodComputation:
    year: int
    month: int
    voucher_settings: dict
    aggregate: PeriodAggregate
    mappings: MappingIndex
    vouchers: dict[str, AssembledVoucher]


def compute_period_vouchers(cur, year: int, month: int, voucher_settings: dict) -> PeriodComputation:
    """Aggregate + assemble; the single computation behind preview and generate."""
    aggregate = aggregate_period(cur, year, month, voucher_settings)
    mappings = load_mapping_index(cur)
    return PeriodComputation(
        year=year,
        month=month,
        voucher_settings=voucher_settings,
        aggregate=aggregate,
        mappings=mappings,
        vouchers=assemble_vouchers(aggregate, mappings, voucher_settings),
    )


def period_references(year: int, month: int, voucher_types: Iterable[str] = VOUCHER_TYPES) -> dict[str, str]:
    return {vt: voucher_reference(vt, year, month) for vt in voucher_types}


def find_existing_entries(cur, references: Iterable[str]) -> dict[str, dict]:
    refs = list(references)
    if not refs:
        return {}
    cur.execute(
        """
        SELECT id, reference_no, entry_date, entry_type, status, created_at
        FROM journal_entries
        WHERE reference_no = ANY(%s)
        """,
        (refs,),
    )
    return {r["reference_no"]: r for r in cur.fetchall() or []}


def normalize_voucher_types(raw: Optional[Iterable[str]]) -> list[str]:
    if raw is None:
        return list(VOUCHER_TYPES)
    out: list[str] = []
    for v in raw:
        vt = str(v or "").strip().upper()
        if vt not in VOUCHER_TYPES:
            raise HTTPException(
                status_code=400,
                detail=f"invalid voucher_type '{v}'. Must be one of: {', '.join(VOUCHER_TYPES)}",
            )
        if vt not in out:
            out.append(vt)
    if not out:
        raise HTTPException(status_code=400, detail="at least one voucher_type is required")
    return out


def _lock_reference(cur, reference_no: str) -> None:
    # Serializes concurrent generators of the same reference until commit; the unique
    # constraint on journal_entries.reference_no remains the authoritative guard.
    cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (reference_no,))


def insert_voucher(cur, voucher: AssembledVoucher, created_by: Optional[str]) -> int:
    cur.execute(
        """
        INSERT INTO journal_entries (reference_no, entry_date, entry_type, description, status, created_by)
        VALUES (%s, %s, %s, %s, 'active', %s)
        RETURNING id
        """,
        (voucher.reference_no, voucher.entry_date, voucher.voucher_type, voucher.description, created_by),
    )
    entry_id = cur.fetchone()["id"]
    for line in voucher.lines:
        cur.execute(
            """
            INSERT INTO journal_entry_lines
              (journal_entry_id, line_number, account_code, debit_amount, credit_amount, particulars)
            VALUES
              (%s, %s, %s, %s, %s, %s)
            """,
            (
                entry_id,
                line.line_number,
                line.account_code,
                line.debit_amount,
                line.credit_amount,
                line.particulars,
            ),
        )
    return entry_id


def _unmapped_detail(voucher: AssembledVoucher) -> str:
    parts = [
        f"{u.mapping_type}@{u.location_id} ({u.amount}{', negative' if u.reason == 'negative' else ''})"
        for u in voucher.unmapped
    ]
    return f"{voucher.voucher_type} has unmapped amounts: " + ", ".join(parts)


def _skip(voucher_type: str, reference_no: str, message: str) -> dict:
    json_log("info", "journal_voucher.skipped", voucher_type=voucher_type, reference=reference_no, reason=message)
    return {"skipped": True, "reference": reference_no, "message": message}


def post_vouchers(cur, computation: PeriodComputation, voucher_types: list[str], created_by: Optional[str]) -> dict:
    """
    Writes every requested voucher that does not exist yet. Runs inside the caller's
    transaction: any exception raised here rolls back all vouchers of the request.
    """
    policy = computation.voucher_settings.get("unmapped_policy") or "warn"
    results: dict[str, dict] = {}
    # Every reference is locked up front in one fixed order, whatever order the request lists them.
    for ref in sorted(computation.vouchers[vt].reference_no for vt in voucher_types):
        _lock_reference(cur, ref)
    for vt in voucher_types:
        voucher = computation.vouchers[vt]
        ref = voucher.reference_no
        if ref in find_existing_entries(cur, [ref]):
            results[vt.lower()] = _skip(vt, ref, f"{vt} already exists for this month")
            continue
        if not voucher.has_source_data:
            results[vt.lower()] = _skip(vt, ref, "no qualifying payroll data for this month")
            continue

        if voucher.unmapped:
            if policy == "block":
                raise HTTPException(status_code=400, detail=_unmapped_detail(voucher))
            if policy != "ignore":
                json_log(
                    "warning",
                    "journal_voucher.unmapped",
                    voucher_type=vt,
                    reference=ref,
                    unmapped=[u.to_dict() for u in voucher.unmapped],
                )
        if not voucher.lines:
            results[vt.lower()] = _skip(vt, ref, "no mapped posting lines for this month")
            continue

        try:
            total_debit, total_credit = assert_postable(vt, voucher.lines)
        except ValueError as ex:
            detail = str(ex)
            if voucher.unmapped:
                detail = f"{detail}; {_unmapped_detail(voucher)}"
            raise HTTPException(status_code=400, detail=detail)

        entry_id = insert_voucher(cur, voucher, created_by)
        cur.execute(
            """
            INSERT INTO audit_logs (id, user_id, action, entity_type, entity_id, details)
            VALUES (gen_random_uuid(), %s, 'journal_voucher.generated', 'journal_entry', %s, %s::jsonb)
            """,
            (
                created_by,
                str(entry_id),
                json.dumps(
                    {
                        "reference": ref,
                        "line_count": len(voucher.lines),
                        "total_debit": str(total_debit),
                        "unmapped": [u.to_dict() for u in voucher.unmapped],
                    },
                    default=str,
                ),
            ),
        )
        json_log(
            "info",
            "journal_voucher.generated",
            voucher_type=vt,
            reference=ref,
            entry_id=entry_id,
            line_count=len(voucher.lines),
            total_debit=total_debit,
        )
        out = {
            "created": True,
            "id": entry_id,
            "reference": ref,
            "line_count": len(voucher.lines),
            "total_debit": total_debit,
            "total_credit": total_credit,
        }
        if voucher.unmapped and policy == "warn":
            out["unmapped"] = [u.to_dict() for u in voucher.unmapped]
        results[vt.lower()] = out
    return results
