"""
Turns aggregated payroll totals into ordered debit/credit lines per voucher type.

Everything here is pure: the inputs are a `PeriodAggregate`, a `MappingIndex` and the
effective voucher settings, so preview and generate assemble identical vouchers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from .account_mappings import MappingIndex
from .journal_utils import ZERO, line_totals, period_bounds, q_amt, voucher_reference
from .payroll_aggregation import PayrollTotals, PeriodAggregate

JVDR = "JVDR"
JVSL = "JVSL"

VOUCHER_DESCRIPTIONS = {
    JVDR: "Director's Remuneration",
    JVSL: "Staff Salary Wages",
}

# (mapping_type, totals attribute, particulars label); order is the posting order.
STAFF_DEBIT_CATEGORIES = (
    ("salary", "salary", "Salary"),
    ("overtime", "overtime", "Overtime"),
    ("special_ot", "special_ot", "Special OT"),
    ("epf_employer", "epf_employer", "EPF Employer"),
    ("socso_employer", "socso_employer", "SOCSO Employer"),
    ("sip_employer", "sip_employer", "SIP Employer"),
    ("commission", "commission", "Commission"),
    ("commission_mee", "commission_mee", "Commission Mee"),
    ("commission_bihun", "commission_bihun", "Commission Bihun"),
    ("cuti_tahunan", "cuti_tahunan", "Cuti Tahunan"),
)

# Directors post gross pay as one salary line; overtime is not split out.
DIRECTOR_DEBIT_CATEGORIES = (
    ("salary", "gross_pay", "Salary"),
    ("bonus", "bonus", "Bonus"),
    ("cuti_tahunan", "cuti_tahunan", "Cuti Tahunan"),
    ("epf_employer", "epf_employer", "EPF Employer"),
    ("socso_employer", "socso_employer", "SOCSO Employer"),
    ("sip_employer", "sip_employer", "SIP Employer"),
)

ACCRUAL_CREDIT_CATEGORIES = (
    ("accrual_epf", "epf_payable", "EPF Payable"),
    ("accrual_socso", "socso_payable", "SOCSO Payable"),
    ("accrual_sip", "sip_payable", "SIP Payable"),
    ("accrual_pcb", "pcb", "PCB Payable"),
)


@dataclass
class PostingLine:
    line_number: int
    account_code: str
    debit_amount: Decimal
    credit_amount: Decimal
    particulars: str
    location_id: Optional[str] = None
    mapping_type: Optional[str] = None

    @property
    def side(self) -> str:
        return "debit" if self.debit_amount > 0 else "credit"

    def to_dict(self) -> dict:
        return {
            "line_number": self.line_number,
            "account_code": self.account_code,
            "debit_amount": self.debit_amount,
            "credit_amount": self.credit_amount,
            "particulars": self.particulars,
            "location_id": self.location_id,
            "mapping_type": self.mapping_type,
        }


@dataclass
class UnmappedAmount:
    voucher_type: str
    location_id: str
    mapping_type: str
    side: str
    amount: Decimal
    # "unmapped" (no account resolves) or "negative" (a line cannot carry a negative amount)
    reason: str = "unmapped"

    def to_dict(self) -> dict:
        return {
            "voucher_type": self.voucher_type,
            "location_id": self.location_id,
            "mapping_type": self.mapping_type,
            "side": self.side,
            "amount": self.amount,
            "reason": self.reason,
        }


@dataclass
class AssembledVoucher:
    voucher_type: str
    reference_no: str
    entry_date: date
    description: str
    has_source_data: bool
    lines: list[PostingLine] = field(default_factory=list)
    unmapped: list[UnmappedAmount] = field(default_factory=list)

    @property
    def totals(self) -> tuple[Decimal, Decimal]:
        return line_totals(self.lines)

    @property
    def balanced(self) -> bool:
        total_debit, total_credit = self.totals
        return total_debit == total_credit

    def summary(self) -> dict:
        total_debit, total_credit = self.totals
        return {
            "reference": self.reference_no,
            "entry_date": self.entry_date.isoformat(),
            "description": self.description,
            "lines": [l.to_dict() for l in self.lines],
            "total_debit": total_debit,
            "total_credit": total_credit,
            "balanced": total_debit == total_credit,
            "unmapped": [u.to_dict() for u in self.unmapped],
        }


class _LineBuilder:
    """Collects lines in posting order; debits must all be added before the first credit."""

    def __init__(self, voucher: AssembledVoucher, mappings: MappingIndex):
        self.voucher = voucher
        self.mappings = mappings
        self._credit_started = False

    def _add(self, side: str, location_id: str, mapping_type: str, amount, particulars: str,
             fallback_location_id: Optional[str] = None) -> None:
        amount = q_amt(amount)
        if amount == 0:
            return
        if side == "debit" and self._credit_started:
            raise RuntimeError("debit lines must precede credit lines")
        if side == "credit":
            self._credit_started = True
        vt = self.voucher.voucher_type
        if amount < 0:
            self.voucher.unmapped.append(
                UnmappedAmount(
                    voucher_type=vt,
                    location_id=location_id,
                    mapping_type=mapping_type,
                    side=side,
                    amount=amount,
                    reason="negative",
                )
            )
            return
        account = self.mappings.account(vt, location_id, mapping_type)
        if not account and fallback_location_id:
            account = self.mappings.account(vt, fallback_location_id, mapping_type)
        if not account:
            self.voucher.unmapped.append(
                UnmappedAmount(
                    voucher_type=vt,
                    location_id=location_id,
                    mapping_type=mapping_type,
                    side=side,
                    amount=amount,
                )
            )
            return
        self.voucher.lines.append(
            PostingLine(
                line_number=len(self.voucher.lines) + 1,
                account_code=account,
                debit_amount=amount if side == "debit" else ZERO,
                credit_amount=amount if side == "credit" else ZERO,
                particulars=particulars,
                location_id=location_id,
                mapping_type=mapping_type,
            )
        )

    def debit(self, location_id: str, mapping_type: str, amount, particulars: str) -> None:
        self._add("debit", location_id, mapping_type, amount, particulars)

    def credit(self, location_id: str, mapping_type: str, amount, particulars: str,
               fallback_location_id: Optional[str] = None) -> None:
        self._add("credit", location_id, mapping_type, amount, particulars, fallback_location_id)


def _new_voucher(voucher_type: str, year: int, month: int, has_source_data: bool) -> AssembledVoucher:
    start, _ = period_bounds(year, month)
    return AssembledVoucher(
        voucher_type=voucher_type,
        reference_no=voucher_reference(voucher_type, year, month),
        entry_date=start,
        description=f"{VOUCHER_DESCRIPTIONS[voucher_type]} - {month:02d}/{year}",
        has_source_data=has_source_data,
    )


def _location_label(mappings: MappingIndex, voucher_type: str, location_id: str) -> str:
    return mappings.location_name(voucher_type, location_id) or f"Loc {location_id}"


def _accrual_credits(builder: _LineBuilder, location_id: str, totals: PayrollTotals, prefix: str) -> None:
    for mapping_type, attr, label in ACCRUAL_CREDIT_CATEGORIES:
        builder.credit(location_id, mapping_type, getattr(totals, attr), f"{prefix}{label}")


def assemble_staff_voucher(aggregate: PeriodAggregate, mappings: MappingIndex, voucher_settings: dict) -> AssembledVoucher:
    voucher = _new_voucher(JVSL, aggregate.year, aggregate.month, bool(aggregate.locations))
    builder = _LineBuilder(voucher, mappings)

    for loc in aggregate.locations:
        label = _location_label(mappings, JVSL, loc.location_id)
        for mapping_type, attr, name in STAFF_DEBIT_CATEGORIES:
            builder.debit(loc.location_id, mapping_type, getattr(loc, attr), f"{name} - {label}")

    accrual_location = voucher_settings["staff_accrual_location_id"]
    totals = aggregate.staff_totals()
    builder.credit(accrual_location, "accrual_salary", totals.net_payable, "Total Salary Payable")
    _accrual_credits(builder, accrual_location, totals, "Total ")
    return voucher


def assemble_director_voucher(aggregate: PeriodAggregate, mappings: MappingIndex, voucher_settings: dict) -> AssembledVoucher:
    voucher = _new_voucher(JVDR, aggregate.year, aggregate.month, bool(aggregate.directors))
    builder = _LineBuilder(voucher, mappings)
    director_location = voucher_settings["director_location_id"]
    totals = aggregate.director_totals()

    for mapping_type, attr, name in DIRECTOR_DEBIT_CATEGORIES:
        builder.debit(director_location, mapping_type, getattr(totals, attr), f"Director {name}")

    # Net pay is remitted per person, so each director gets an individual credit line.
    for d in aggregate.directors:
        builder.credit(
            d.posting_key or director_location,
            "accrual_salary",
            d.net_payable,
            f"Salary Payable - {d.display_label}",
            fallback_location_id=director_location,
        )
    _accrual_credits(builder, director_location, totals, "")
    return voucher


def assemble_vouchers(aggregate: PeriodAggregate, mappings: MappingIndex, voucher_settings: dict) -> dict[str, AssembledVoucher]:
    return {
        JVDR: assemble_director_voucher(aggregate, mappings, voucher_settings),
        JVSL: assemble_staff_voucher(aggregate, mappings, voucher_settings),
    }


def location_breakdown(aggregate: PeriodAggregate, mappings: MappingIndex) -> list[dict]:
    out = []
    for loc in aggregate.locations:
        accounts = mappings.accounts_for(JVSL, loc.location_id)
        out.append(
            {
                "location_id": loc.location_id,
                "location_name": mappings.location_name(JVSL, loc.location_id),
                "headcount": loc.headcount,
                **loc.amounts(),
                "accounts": {mt: accounts.get(mt) for mt, _, _ in STAFF_DEBIT_CATEGORIES},
            }
        )
    return out


def director_breakdown(aggregate: PeriodAggregate, mappings: MappingIndex, voucher_settings: dict) -> list[dict]:
    director_location = voucher_settings["director_location_id"]
    shared = mappings.accounts_for(JVDR, director_location)
    out = []
    for d in aggregate.directors:
        own = mappings.accounts_for(JVDR, d.posting_key) if d.posting_key else {}
        out.append(
            {
                "employee_id": d.employee_id,
                "display_label": d.display_label,
                "posting_key": d.posting_key,
                **d.amounts(),
                "accounts": {
                    "accrual_salary": own.get("accrual_salary") or shared.get("accrual_salary"),
                },
            }
        )
    return out
