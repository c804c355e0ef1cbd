from decimal import Decimal

import pytest
from fastapi import HTTPException

from backend.app.voucher_posting import normalize_voucher_types, post_vouchers

from backend.tests.fakes import (
    OFFICE_CLERK,
    FakeLedger,
    FakeLedgerCursor,
    computation,
    payroll_row,
)

SPECIAL_OT_CLERK = payroll_row(
    "E1", "02", gross="1250.00", net="1115.00", overtime="200.00", special_ot="50.00",
    epf=("110.00", "110.00"), socso=("20.00", "20.00"), sip=("5.00", "5.00"),
)


def _post(ledger, comp, voucher_types=("JVDR", "JVSL")):
    cur = FakeLedgerCursor(ledger)
    return post_vouchers(cur, comp, list(voucher_types), "user-1"), cur


def test_generate_creates_staff_voucher_and_skips_empty_directors():
    ledger = FakeLedger()
    results, cur = _post(ledger, computation([OFFICE_CLERK]))

    assert results["jvdr"] == {
        "skipped": True,
        "reference": "JVDR/03/25",
        "message": "no qualifying payroll data for this month",
    }
    jvsl = results["jvsl"]
    assert jvsl["created"] is True
    assert jvsl["reference"] == "JVSL/03/25"
    assert jvsl["line_count"] == 9
    assert jvsl["total_debit"] == jvsl["total_credit"] == Decimal("1335.00")
    assert "unmapped" not in jvsl

    assert list(ledger.entries) == ["JVSL/03/25"]
    assert [params[1] for params in ledger.lines] == list(range(1, 10))
    assert len(ledger.audit) == 1

    # Both references are locked before the first existence check.
    statements = [q for q, _ in cur.executed]
    assert statements[0].startswith("SELECT pg_advisory_xact_lock")
    assert statements[1].startswith("SELECT pg_advisory_xact_lock")
    assert "FROM journal_entries" in statements[2]


@pytest.mark.parametrize("voucher_types", [["JVDR", "JVSL"], ["JVSL", "JVDR"]])
def test_references_are_locked_in_the_same_order_for_any_request_order(voucher_types):
    results, cur = _post(FakeLedger(), computation([OFFICE_CLERK]), voucher_types)

    locks = [params[0] for q, params in cur.executed if q.startswith("SELECT pg_advisory_xact_lock")]
    assert locks == ["JVDR/03/25", "JVSL/03/25"]
    first_read = next(i for i, (q, _) in enumerate(cur.executed) if "journal_entries" in q)
    assert first_read == len(locks)
    assert list(results) == [vt.lower() for vt in voucher_types]


def test_second_generate_is_skipped():
    ledger = FakeLedger()
    _post(ledger, computation([OFFICE_CLERK]), ["JVSL"])
    results, _ = _post(ledger, computation([OFFICE_CLERK]), ["JVSL"])

    assert results["jvsl"]["skipped"] is True
    assert results["jvsl"]["message"] == "JVSL already exists for this month"
    assert len(ledger.entries) == 1
    assert len(ledger.lines) == 9


def test_only_requested_types_are_processed():
    ledger = FakeLedger()
    results, _ = _post(ledger, computation([OFFICE_CLERK]), ["JVDR"])
    assert list(results) == ["jvdr"]
    assert results["jvdr"]["skipped"] is True
    assert ledger.entries == {}


def test_block_policy_refuses_unmapped_amounts():
    ledger = FakeLedger()
    with pytest.raises(HTTPException) as exc_info:
        _post(ledger, computation([SPECIAL_OT_CLERK], unmapped_policy="block"), ["JVSL"])
    assert exc_info.value.status_code == 400
    assert "special_ot@02" in exc_info.value.detail
    assert ledger.entries == {}


def test_warn_policy_still_refuses_imbalanced_voucher():
    ledger = FakeLedger()
    with pytest.raises(HTTPException) as exc_info:
        _post(ledger, computation([SPECIAL_OT_CLERK], unmapped_policy="warn"), ["JVSL"])
    assert exc_info.value.status_code == 400
    assert "imbalanced" in exc_info.value.detail
    assert "special_ot@02" in exc_info.value.detail
    assert ledger.entries == {}


def test_no_mapped_lines_is_skipped():
    ledger = FakeLedger()
    results, _ = _post(ledger, computation([OFFICE_CLERK], mapping_rows=[], unmapped_policy="ignore"), ["JVSL"])
    assert results["jvsl"]["skipped"] is True
    assert results["jvsl"]["message"] == "no mapped posting lines for this month"
    assert ledger.entries == {}


def test_normalize_voucher_types():
    assert normalize_voucher_types(None) == ["JVDR", "JVSL"]
    assert normalize_voucher_types(["jvsl", "JVSL"]) == ["JVSL"]
    with pytest.raises(HTTPException) as exc_info:
        normalize_voucher_types(["JVXX"])
    assert exc_info.value.status_code == 400
    with pytest.raises(HTTPException):
        normalize_voucher_types([])


def test_block_policy_names_negative_amounts():
    ledger = FakeLedger()
    clawback = [{"employee_id": "E1", "product_type": "", "amount": "-30.00"}]
    comp = computation([OFFICE_CLERK], commission_rows=clawback, unmapped_policy="block")
    with pytest.raises(HTTPException) as exc_info:
        _post(ledger, comp, ["JVSL"])
    assert exc_info.value.status_code == 400
    assert "commission@02 (-30.00, negative)" in exc_info.value.detail
    assert ledger.entries == {}
