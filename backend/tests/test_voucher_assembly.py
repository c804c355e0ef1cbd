from datetime import date
from decimal import Decimal

import pytest

from backend.app.account_mappings import MappingIndex
from backend.app.journal_utils import assert_postable
from backend.app.payroll_aggregation import fold_period
from backend.app.voucher_assembly import (
    JVDR,
    JVSL,
    assemble_director_voucher,
    assemble_staff_voucher,
    director_breakdown,
    location_breakdown,
)

from backend.tests.fakes import DIRECTOR_MAPPINGS, OFFICE_CLERK, SETTINGS, STAFF_MAPPINGS, mapping, payroll_row

DIRECTORS = [
    {"employee_id": "D1", "display_label": "Director A", "posting_key": "DIR_A"},
    {"employee_id": "D2", "display_label": "Director B", "posting_key": None},
]
DIRECTOR_ROWS = [
    payroll_row("D1", "01", gross="5000.00", net="4450.00", epf=("600.00", "550.00")),
    payroll_row("D2", "01", gross="3000.00", net="2670.00", epf=("360.00", "330.00")),
]


def _aggregate(payroll_rows, directors=(), commission_rows=()):
    return fold_period(2025, 3, payroll_rows, commission_rows, [], directors, [], "02")


def test_staff_voucher_for_single_office_location():
    voucher = assemble_staff_voucher(_aggregate([OFFICE_CLERK]), MappingIndex(STAFF_MAPPINGS), SETTINGS)

    assert voucher.reference_no == "JVSL/03/25"
    assert voucher.entry_date == date(2025, 3, 1)
    assert voucher.has_source_data is True
    assert voucher.unmapped == []

    debits = [(l.account_code, l.debit_amount) for l in voucher.lines if l.side == "debit"]
    credits = [(l.account_code, l.credit_amount) for l in voucher.lines if l.side == "credit"]
    assert debits == [
        ("MBS_O", Decimal("1000.00")),
        ("MBS_O", Decimal("200.00")),
        ("MBE_O", Decimal("110.00")),
        ("MBSC_O", Decimal("20.00")),
        ("MBSIP_O", Decimal("5.00")),
    ]
    assert sum(a for _, a in debits) == Decimal("1335.00")
    # PCB is zero, so no PCB line.
    assert credits == [
        ("ACW_SAL", Decimal("1065.00")),
        ("ACW_EPF", Decimal("220.00")),
        ("ACW_SC", Decimal("40.00")),
        ("ACW_SIP", Decimal("10.00")),
    ]
    assert [l.line_number for l in voucher.lines] == list(range(1, 10))
    assert voucher.lines[0].particulars == "Salary - OFFICE"
    assert voucher.lines[5].particulars == "Total Salary Payable"
    assert voucher.balanced
    assert assert_postable(JVSL, voucher.lines) == (Decimal("1335.00"), Decimal("1335.00"))


def test_staff_voucher_unmapped_amount_is_reported_not_posted():
    row = payroll_row(
        "E1", "02", gross="1250.00", net="1115.00", overtime="200.00", special_ot="50.00",
        epf=("110.00", "110.00"), socso=("20.00", "20.00"), sip=("5.00", "5.00"),
    )
    voucher = assemble_staff_voucher(_aggregate([row]), MappingIndex(STAFF_MAPPINGS), SETTINGS)
    [u] = voucher.unmapped
    assert (u.location_id, u.mapping_type, u.side, u.amount) == ("02", "special_ot", "debit", Decimal("50.00"))
    assert u.reason == "unmapped"
    assert all(l.mapping_type != "special_ot" for l in voucher.lines)
    assert not voucher.balanced


def test_negative_amount_is_reported_not_dropped():
    rows = STAFF_MAPPINGS + [mapping("JVSL", "02", "commission", "MBS_CK", "OFFICE")]
    agg = _aggregate([OFFICE_CLERK], commission_rows=[{"employee_id": "E1", "product_type": "", "amount": "-30.00"}])
    voucher = assemble_staff_voucher(agg, MappingIndex(rows), SETTINGS)

    [u] = voucher.unmapped
    assert (u.location_id, u.mapping_type, u.side, u.amount) == ("02", "commission", "debit", Decimal("-30.00"))
    assert u.reason == "negative"
    assert u.to_dict()["reason"] == "negative"
    assert all(l.mapping_type != "commission" for l in voucher.lines)
    assert not voucher.balanced


def test_location_without_name_uses_fallback_label():
    rows = [m for m in STAFF_MAPPINGS] + [mapping("JVSL", "14", "salary", "MBS_M")]
    voucher = assemble_staff_voucher(
        _aggregate([payroll_row("E7", "14", gross="900.00", net="900.00")]), MappingIndex(rows), SETTINGS
    )
    assert voucher.lines[0].particulars == "Salary - Loc 14"


def test_director_voucher_credits_each_director():
    agg = _aggregate(
        DIRECTOR_ROWS,
        directors=DIRECTORS,
        commission_rows=[{"employee_id": "D1", "product_type": "", "amount": "500.00"}],
    )
    voucher = assemble_director_voucher(agg, MappingIndex(DIRECTOR_MAPPINGS), SETTINGS)

    assert voucher.reference_no == "JVDR/03/25"
    assert voucher.description == "Director's Remuneration - 03/2025"
    lines = [(l.account_code, l.debit_amount, l.credit_amount, l.particulars) for l in voucher.lines]
    assert lines == [
        ("MBDRS", Decimal("8000.00"), Decimal("0"), "Director Salary"),
        ("MBDRB", Decimal("500.00"), Decimal("0"), "Director Bonus"),
        ("MBDRE", Decimal("960.00"), Decimal("0"), "Director EPF Employer"),
        ("ACD_SAL_A", Decimal("0"), Decimal("4950.00"), "Salary Payable - Director A"),
        ("ACD_SAL", Decimal("0"), Decimal("2670.00"), "Salary Payable - Director B"),
        ("ACD_EPF", Decimal("0"), Decimal("1840.00"), "EPF Payable"),
    ]
    assert voucher.balanced
    assert voucher.totals == (Decimal("9460.00"), Decimal("9460.00"))


def test_director_posting_key_falls_back_to_director_location():
    rows = [m for m in DIRECTOR_MAPPINGS if m["location_id"] != "DIR_A"]
    agg = _aggregate(DIRECTOR_ROWS[:1], directors=DIRECTORS)
    voucher = assemble_director_voucher(agg, MappingIndex(rows), SETTINGS)
    salary_payable = [l for l in voucher.lines if l.mapping_type == "accrual_salary"]
    assert [l.account_code for l in salary_payable] == ["ACD_SAL"]
    assert voucher.unmapped == []


def test_empty_director_roster_yields_nothing_to_post():
    voucher = assemble_director_voucher(_aggregate([OFFICE_CLERK]), MappingIndex(DIRECTOR_MAPPINGS), SETTINGS)
    assert voucher.has_source_data is False
    assert voucher.lines == []
    assert voucher.totals == (Decimal("0.00"), Decimal("0.00"))


def test_breakdowns_carry_resolved_accounts():
    mappings = MappingIndex(STAFF_MAPPINGS + DIRECTOR_MAPPINGS)
    agg = _aggregate([OFFICE_CLERK] + DIRECTOR_ROWS, directors=DIRECTORS)

    [loc] = location_breakdown(agg, mappings)
    assert loc["location_id"] == "02"
    assert loc["location_name"] == "OFFICE"
    assert loc["salary"] == Decimal("1000.00")
    assert loc["accounts"]["overtime"] == "MBS_O"
    assert loc["accounts"]["special_ot"] is None

    directors = director_breakdown(agg, mappings, SETTINGS)
    assert [(d["employee_id"], d["accounts"]["accrual_salary"]) for d in directors] == [
        ("D1", "ACD_SAL_A"),
        ("D2", "ACD_SAL"),
    ]


@pytest.mark.parametrize("voucher_type", [JVDR, JVSL])
def test_vouchers_never_emit_zero_lines(voucher_type):
    mappings = MappingIndex(STAFF_MAPPINGS + DIRECTOR_MAPPINGS)
    agg = _aggregate([OFFICE_CLERK] + DIRECTOR_ROWS, directors=DIRECTORS)
    build = assemble_director_voucher if voucher_type == JVDR else assemble_staff_voucher
    voucher = build(agg, mappings, SETTINGS)
    assert voucher.lines
    for l in voucher.lines:
        assert (l.debit_amount > 0) != (l.credit_amount > 0)
