from __future__ import annotations

from typing import Annotated, Literal, get_args

from pydantic import BeforeValidator, StringConstraints


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


# Canonical codes mirror the CHECK constraints in `backend/db/migrations/001_journal_vouchers.sql`.
VoucherTypeCode = Literal["JVDR", "JVSL"]

MappingTypeCode = Literal[
    "salary",
    "overtime",
    "special_ot",
    "bonus",
    "commission",
    "commission_mee",
    "commission_bihun",
    "cuti_tahunan",
    "epf_employer",
    "socso_employer",
    "sip_employer",
    "accrual_salary",
    "accrual_epf",
    "accrual_socso",
    "accrual_sip",
    "accrual_pcb",
]

# Commission split rules may only target the two product-derived categories.
CommissionCategoryCode = Literal["commission_mee", "commission_bihun"]

UnmappedPolicyCode = Literal["ignore", "warn", "block"]

VOUCHER_TYPES: tuple[str, ...] = get_args(VoucherTypeCode)
MAPPING_TYPES: tuple[str, ...] = get_args(MappingTypeCode)
COMMISSION_CATEGORIES: tuple[str, ...] = get_args(CommissionCategoryCode)
UNMAPPED_POLICIES: tuple[str, ...] = get_args(UnmappedPolicyCode)


# Location ids are short stable identifiers ("01", "02", "DIR_A"...).
LocationId = Annotated[
    str,
    BeforeValidator(_to_upper_str),
    StringConstraints(min_length=1, max_length=32, pattern=r"^[A-Z0-9][A-Z0-9_-]*$"),
]

ProductType = Annotated[
    str,
    BeforeValidator(_to_upper_str),
    StringConstraints(min_length=1, max_length=16, pattern=r"^[A-Z0-9_]+$"),
]
