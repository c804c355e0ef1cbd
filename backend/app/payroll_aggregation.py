"""
Monthly payroll aggregation for journal vouchers.

Loads one period of payroll, resolves every payroll row to a posting location and
folds the rows into per-location staff totals plus per-person director totals.
The SQL fetchers only read upstream tables; `fold_period` is pure so preview and
generate always compute identical numbers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from .journal_utils import ZERO, period_bounds, q_amt

# Pay-code types (pay_codes.pay_type) that are split out of gross pay.
OVERTIME_PAY_TYPE = "Overtime"
SPECIAL_OT_PAY_TYPE = "Special OT"

_AMOUNT_FIELDS = (
    "gross_pay",
    "net_pay",
    "overtime",
    "special_ot",
    "epf_employer",
    "socso_employer",
    "sip_employer",
    "epf_employee",
    "socso_employee",
    "sip_employee",
    "pcb",
    "commission",
    "commission_mee",
    "commission_bihun",
    "bonus",
    "cuti_tahunan",
)


@dataclass
class PayrollTotals:
    gross_pay: Decimal = ZERO
    net_pay: Decimal = ZERO
    overtime: Decimal = ZERO
    special_ot: Decimal = ZERO
    epf_employer: Decimal = ZERO
    socso_employer: Decimal = ZERO
    sip_employer: Decimal = ZERO
    epf_employee: Decimal = ZERO
    socso_employee: Decimal = ZERO
    sip_employee: Decimal = ZERO
    pcb: Decimal = ZERO
    commission: Decimal = ZERO
    commission_mee: Decimal = ZERO
    commission_bihun: Decimal = ZERO
    bonus: Decimal = ZERO
    cuti_tahunan: Decimal = ZERO

    @property
    def salary(self) -> Decimal:
        # Base + allowance: whatever part of gross is not overtime.
        return q_amt(self.gross_pay - self.overtime - self.special_ot)

    @property
    def net_payable(self) -> Decimal:
        # Commission, bonus and leave payouts are paid on top of payroll net pay.
        return q_amt(
            self.net_pay + self.commission + self.commission_mee + self.commission_bihun
            + self.bonus + self.cuti_tahunan
        )

    @property
    def epf_payable(self) -> Decimal:
        return q_amt(self.epf_employer + self.epf_employee)

    @property
    def socso_payable(self) -> Decimal:
        return q_amt(self.socso_employer + self.socso_employee)

    @property
    def sip_payable(self) -> Decimal:
        return q_amt(self.sip_employer + self.sip_employee)

    def add(self, other: "PayrollTotals") -> None:
        for name in _AMOUNT_FIELDS:
            setattr(self, name, q_amt(getattr(self, name) + getattr(other, name)))

    def has_activity(self) -> bool:
        return any(getattr(self, name) != 0 for name in _AMOUNT_FIELDS)

    def amounts(self) -> dict:
        out = {name: q_amt(getattr(self, name)) for name in _AMOUNT_FIELDS}
        out["salary"] = self.salary
        out["net_payable"] = self.net_payable
        return out


@dataclass
class LocationTotals(PayrollTotals):
    location_id: str = ""
    employee_ids: set = field(default_factory=set)

    @property
    def headcount(self) -> int:
        return len(self.employee_ids)


@dataclass
class DirectorTotals(PayrollTotals):
    employee_id: str = ""
    display_label: str = ""
    posting_key: Optional[str] = None


@dataclass
class PeriodAggregate:
    year: int
    month: int
    locations: list[LocationTotals]
    directors: list[DirectorTotals]

    def staff_totals(self) -> PayrollTotals:
        out = PayrollTotals()
        for loc in self.locations:
            out.add(loc)
        return out

    def director_totals(self) -> PayrollTotals:
        out = PayrollTotals()
        for d in self.directors:
            out.add(d)
        return out


def _payroll_totals_from_row(row) -> PayrollTotals:
    t = PayrollTotals()
    t.gross_pay = q_amt(row.get("gross_pay"))
    t.net_pay = q_amt(row.get("net_pay"))
    t.overtime = q_amt(row.get("overtime_amount"))
    t.special_ot = q_amt(row.get("special_ot_amount"))
    t.epf_employer = q_amt(row.get("epf_employer"))
    t.socso_employer = q_amt(row.get("socso_employer"))
    t.sip_employer = q_amt(row.get("sip_employer"))
    t.epf_employee = q_amt(row.get("epf_employee"))
    t.socso_employee = q_amt(row.get("socso_employee"))
    t.sip_employee = q_amt(row.get("sip_employee"))
    t.pcb = q_amt(row.get("pcb"))
    return t


def fold_period(
    year: int,
    month: int,
    payroll_rows: Iterable[dict],
    commission_rows: Iterable[dict],
    leave_rows: Iterable[dict],
    directors: Iterable[dict],
    split_rules: Iterable[dict],
    default_location_id: str,
) -> PeriodAggregate:
    """
    Fold raw period rows into location and director totals.

    payroll_rows: one per employee payroll, already resolved to `location_id`.
    commission_rows: (employee_id, product_type, amount) summed per product type.
    leave_rows: (employee_id, amount) approved payout leave in the period.
    directors: active roster rows (employee_id, posting_key, display_label).
    split_rules: (location_id, product_type, mapping_type) active commission splits.
    """
    roster = {str(d["employee_id"]): d for d in directors}
    rules = {
        (str(r["location_id"]), str(r["product_type"]).upper()): str(r["mapping_type"])
        for r in split_rules
    }

    by_location: dict[str, LocationTotals] = {}
    by_director: dict[str, DirectorTotals] = {}
    # Commission and leave records are not tied to a payroll row; they post to the
    # employee's primary (lowest id) location for the period.
    primary_location: dict[str, str] = {}

    def _director(employee_id: str) -> DirectorTotals:
        d = by_director.get(employee_id)
        if d is None:
            r = roster[employee_id]
            d = DirectorTotals(
                employee_id=employee_id,
                display_label=str(r.get("display_label") or employee_id),
                posting_key=(r.get("posting_key") or None),
            )
            by_director[employee_id] = d
        return d

    def _location(location_id: str) -> LocationTotals:
        loc = by_location.get(location_id)
        if loc is None:
            loc = LocationTotals(location_id=location_id)
            by_location[location_id] = loc
        return loc

    for row in payroll_rows:
        employee_id = str(row["employee_id"])
        totals = _payroll_totals_from_row(row)
        if employee_id in roster:
            _director(employee_id).add(totals)
            continue
        location_id = str(row.get("location_id") or default_location_id)
        prev = primary_location.get(employee_id)
        if prev is None or location_id < prev:
            primary_location[employee_id] = location_id
        loc = _location(location_id)
        loc.add(totals)
        loc.employee_ids.add(employee_id)

    for row in commission_rows:
        employee_id = str(row["employee_id"])
        amount = q_amt(row.get("amount"))
        if amount == 0:
            continue
        if employee_id in roster:
            d = _director(employee_id)
            d.bonus = q_amt(d.bonus + amount)
            continue
        location_id = primary_location.get(employee_id, default_location_id)
        loc = _location(location_id)
        product_type = str(row.get("product_type") or "").upper()
        category = rules.get((location_id, product_type), "commission")
        setattr(loc, category, q_amt(getattr(loc, category) + amount))
        loc.employee_ids.add(employee_id)

    for row in leave_rows:
        employee_id = str(row["employee_id"])
        amount = q_amt(row.get("amount"))
        if amount == 0:
            continue
        if employee_id in roster:
            d = _director(employee_id)
            d.cuti_tahunan = q_amt(d.cuti_tahunan + amount)
            continue
        loc = _location(primary_location.get(employee_id, default_location_id))
        loc.cuti_tahunan = q_amt(loc.cuti_tahunan + amount)
        loc.employee_ids.add(employee_id)

    locations = [by_location[k] for k in sorted(by_location) if by_location[k].has_activity()]
    directors_out = [by_director[k] for k in sorted(by_director) if by_director[k].has_activity()]
    return PeriodAggregate(year=year, month=month, locations=locations, directors=directors_out)


def fetch_payroll_rows(cur, year: int, month: int, default_location_id: str) -> list[dict]:
    cur.execute(
        """
        WITH job_location_map AS (
          SELECT DISTINCT ON (job_id) job_id, location_code
          FROM job_location_mappings
          WHERE is_active = true
          ORDER BY job_id, location_code
        ),
        period_payrolls AS (
          SELECT ep.id, ep.employee_id, ep.job_type, ep.gross_pay, ep.net_pay
          FROM employee_payrolls ep
          JOIN monthly_payrolls mp ON mp.id = ep.monthly_payroll_id
          WHERE mp.year = %(year)s AND mp.month = %(month)s
        ),
        item_totals AS (
          SELECT pi.employee_payroll_id,
                 COALESCE(SUM(pi.amount) FILTER (WHERE pc.pay_type = %(ot_type)s), 0) AS overtime_amount,
                 COALESCE(SUM(pi.amount) FILTER (WHERE pc.pay_type = %(special_ot_type)s), 0) AS special_ot_amount
          FROM payroll_items pi
          JOIN period_payrolls pp ON pp.id = pi.employee_payroll_id
          LEFT JOIN pay_codes pc ON pc.id = pi.pay_code_id
          GROUP BY pi.employee_payroll_id
        ),
        deduction_totals AS (
          SELECT pd.employee_payroll_id,
                 COALESCE(SUM(pd.employer_amount) FILTER (WHERE pd.deduction_type = 'epf'), 0) AS epf_employer,
                 COALESCE(SUM(pd.employer_amount) FILTER (WHERE pd.deduction_type = 'socso'), 0) AS socso_employer,
                 COALESCE(SUM(pd.employer_amount) FILTER (WHERE pd.deduction_type = 'sip'), 0) AS sip_employer,
                 COALESCE(SUM(pd.employee_amount) FILTER (WHERE pd.deduction_type = 'epf'), 0) AS epf_employee,
                 COALESCE(SUM(pd.employee_amount) FILTER (WHERE pd.deduction_type = 'socso'), 0) AS socso_employee,
                 COALESCE(SUM(pd.employee_amount) FILTER (WHERE pd.deduction_type = 'sip'), 0) AS sip_employee,
                 COALESCE(SUM(pd.employee_amount) FILTER (WHERE pd.deduction_type = 'income_tax'), 0) AS pcb
          FROM payroll_deductions pd
          JOIN period_payrolls pp ON pp.id = pd.employee_payroll_id
          GROUP BY pd.employee_payroll_id
        )
        SELECT pp.id AS employee_payroll_id,
               pp.employee_id,
               pp.job_type,
               COALESCE(jlm.location_code, %(default_location)s) AS location_id,
               pp.gross_pay, pp.net_pay,
               COALESCE(it.overtime_amount, 0) AS overtime_amount,
               COALESCE(it.special_ot_amount, 0) AS special_ot_amount,
               COALESCE(dt.epf_employer, 0) AS epf_employer,
               COALESCE(dt.socso_employer, 0) AS socso_employer,
               COALESCE(dt.sip_employer, 0) AS sip_employer,
               COALESCE(dt.epf_employee, 0) AS epf_employee,
               COALESCE(dt.socso_employee, 0) AS socso_employee,
               COALESCE(dt.sip_employee, 0) AS sip_employee,
               COALESCE(dt.pcb, 0) AS pcb
        FROM period_payrolls pp
        LEFT JOIN job_location_map jlm ON jlm.job_id = pp.job_type
        LEFT JOIN item_totals it ON it.employee_payroll_id = pp.id
        LEFT JOIN deduction_totals dt ON dt.employee_payroll_id = pp.id
        ORDER BY pp.employee_id, location_id
        """,
        {
            "year": year,
            "month": month,
            "ot_type": OVERTIME_PAY_TYPE,
            "special_ot_type": SPECIAL_OT_PAY_TYPE,
            "default_location": default_location_id,
        },
    )
    return cur.fetchall() or []


def fetch_commission_rows(cur, year: int, month: int) -> list[dict]:
    start, end = period_bounds(year, month)
    cur.execute(
        """
        SELECT cr.employee_id,
               UPPER(COALESCE(p.type, '')) AS product_type,
               COALESCE(SUM(cr.amount), 0) AS amount
        FROM commission_records cr
        LEFT JOIN products p ON p.id = cr.product_id
        WHERE cr.commission_date >= %s AND cr.commission_date < %s
        GROUP BY cr.employee_id, UPPER(COALESCE(p.type, ''))
        ORDER BY cr.employee_id
        """,
        (start, end),
    )
    return cur.fetchall() or []


def fetch_leave_payout_rows(cur, year: int, month: int, leave_type: str) -> list[dict]:
    start, end = period_bounds(year, month)
    cur.execute(
        """
        SELECT lr.employee_id, COALESCE(SUM(lr.amount_paid), 0) AS amount
        FROM leave_records lr
        WHERE lr.leave_date >= %s AND lr.leave_date < %s
          AND lr.status = 'approved'
          AND lr.leave_type = %s
        GROUP BY lr.employee_id
        ORDER BY lr.employee_id
        """,
        (start, end, leave_type),
    )
    return cur.fetchall() or []


def fetch_director_roster(cur) -> list[dict]:
    cur.execute(
        """
        SELECT r.employee_id, r.posting_key,
               COALESCE(NULLIF(r.display_label, ''), s.name, r.employee_id) AS display_label
        FROM payroll_voucher_roles r
        LEFT JOIN staffs s ON s.id = r.employee_id
        WHERE r.role = 'director' AND r.is_active = true
        ORDER BY r.employee_id
        """
    )
    return cur.fetchall() or []


def fetch_commission_split_rules(cur) -> list[dict]:
    cur.execute(
        """
        SELECT location_id, product_type, mapping_type
        FROM commission_split_rules
        WHERE is_active = true
        ORDER BY location_id, product_type
        """
    )
    return cur.fetchall() or []


def aggregate_period(cur, year: int, month: int, voucher_settings: dict) -> PeriodAggregate:
    default_location_id = voucher_settings["default_location_id"]
    return fold_period(
        year,
        month,
        payroll_rows=fetch_payroll_rows(cur, year, month, default_location_id),
        commission_rows=fetch_commission_rows(cur, year, month),
        leave_rows=fetch_leave_payout_rows(cur, year, month, voucher_settings["leave_payout_type"]),
        directors=fetch_director_roster(cur),
        split_rules=fetch_commission_split_rules(cur),
        default_location_id=default_location_id,
    )
