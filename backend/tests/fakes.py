from contextlib import contextmanager

from psycopg import errors as pg_errors

from backend.app.account_mappings import MappingIndex
from backend.app.payroll_aggregation import fold_period
from backend.app.voucher_assembly import assemble_vouchers
from backend.app.voucher_posting import PeriodComputation

SETTINGS = {
    "default_location_id": "02",
    "director_location_id": "01",
    "staff_accrual_location_id": "00",
    "leave_payout_type": "cuti_tahunan",
    "unmapped_policy": "warn",
}


def mapping(voucher_type, location_id, mapping_type, account_code, location_name=None):
    return {
        "voucher_type": voucher_type,
        "location_id": location_id,
        "location_name": location_name,
        "mapping_type": mapping_type,
        "account_code": account_code,
    }


STAFF_MAPPINGS = [
    mapping("JVSL", "02", "salary", "MBS_O", "OFFICE"),
    mapping("JVSL", "02", "overtime", "MBS_O", "OFFICE"),
    mapping("JVSL", "02", "epf_employer", "MBE_O", "OFFICE"),
    mapping("JVSL", "02", "socso_employer", "MBSC_O", "OFFICE"),
    mapping("JVSL", "02", "sip_employer", "MBSIP_O", "OFFICE"),
    mapping("JVSL", "00", "accrual_salary", "ACW_SAL"),
    mapping("JVSL", "00", "accrual_epf", "ACW_EPF"),
    mapping("JVSL", "00", "accrual_socso", "ACW_SC"),
    mapping("JVSL", "00", "accrual_sip", "ACW_SIP"),
    mapping("JVSL", "00", "accrual_pcb", "ACW_PCB"),
]

DIRECTOR_MAPPINGS = [
    mapping("JVDR", "01", "salary", "MBDRS"),
    mapping("JVDR", "01", "bonus", "MBDRB"),
    mapping("JVDR", "01", "epf_employer", "MBDRE"),
    mapping("JVDR", "01", "socso_employer", "MBDRSC"),
    mapping("JVDR", "01", "sip_employer", "MBDRSIP"),
    mapping("JVDR", "01", "accrual_salary", "ACD_SAL"),
    mapping("JVDR", "01", "accrual_epf", "ACD_EPF"),
    mapping("JVDR", "01", "accrual_socso", "ACD_SC"),
    mapping("JVDR", "01", "accrual_sip", "ACD_SIP"),
    mapping("JVDR", "01", "accrual_pcb", "ACD_PCB"),
    mapping("JVDR", "DIR_A", "accrual_salary", "ACD_SAL_A"),
]


def payroll_row(
    employee_id,
    location_id,
    gross,
    net,
    overtime="0",
    special_ot="0",
    epf=("0", "0"),
    socso=("0", "0"),
    sip=("0", "0"),
    pcb="0",
):
    return {
        "employee_id": employee_id,
        "location_id": location_id,
        "gross_pay": gross,
        "net_pay": net,
        "overtime_amount": overtime,
        "special_ot_amount": special_ot,
        "epf_employer": epf[0],
        "epf_employee": epf[1],
        "socso_employer": socso[0],
        "socso_employee": socso[1],
        "sip_employer": sip[0],
        "sip_employee": sip[1],
        "pcb": pcb,
    }


# 1000 salary + 200 overtime; employer 110/20/5, employee 110/20/5; net 1065.
OFFICE_CLERK = payroll_row(
    "E1", "02", gross="1200.00", net="1065.00", overtime="200.00",
    epf=("110.00", "110.00"), socso=("20.00", "20.00"), sip=("5.00", "5.00"),
)


def computation(
    payroll_rows,
    directors=(),
    mapping_rows=None,
    commission_rows=(),
    leave_rows=(),
    split_rules=(),
    year=2025,
    month=3,
    **overrides,
):
    cfg = dict(SETTINGS, **overrides)
    aggregate = fold_period(
        year,
        month,
        payroll_rows,
        commission_rows,
        leave_rows,
        directors,
        split_rules,
        cfg["default_location_id"],
    )
    mappings = MappingIndex(STAFF_MAPPINGS + DIRECTOR_MAPPINGS if mapping_rows is None else mapping_rows)
    return PeriodComputation(
        year=year,
        month=month,
        voucher_settings=cfg,
        aggregate=aggregate,
        mappings=mappings,
        vouchers=assemble_vouchers(aggregate, mappings, cfg),
    )


class FakeLedger:
    """In-memory journal tables; only the statements voucher generation issues are understood."""

    def __init__(self):
        self.entries: dict[str, dict] = {}
        self.lines: list[tuple] = []
        self.audit: list[tuple] = []
        self.race_on_insert = False

    def snapshot(self):
        return dict(self.entries), list(self.lines), list(self.audit)

    def restore(self, snap):
        self.entries, self.lines, self.audit = dict(snap[0]), list(snap[1]), list(snap[2])


class FakeLedgerCursor:
    def __init__(self, ledger: FakeLedger):
        self.ledger = ledger
        self.executed: list[tuple[str, object]] = []
        self._result: list[dict] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        q = " ".join(sql.split())
        self.executed.append((q, params))
        self._result = []
        if "pg_advisory_xact_lock" in q:
            return
        if q.startswith("SELECT id, reference_no") and "FROM journal_entries" in q:
            refs = set(params[0])
            self._result = [row for ref, row in self.ledger.entries.items() if ref in refs]
            return
        if q.startswith("INSERT INTO journal_entries"):
            ref, entry_date, entry_type, description, created_by = params
            if self.ledger.race_on_insert or ref in self.ledger.entries:
                raise pg_errors.UniqueViolation(f"duplicate key value violates unique constraint: {ref}")
            entry_id = len(self.ledger.entries) + 1
            self.ledger.entries[ref] = {
                "id": entry_id,
                "reference_no": ref,
                "entry_date": entry_date,
                "entry_type": entry_type,
                "description": description,
                "status": "active",
                "created_by": created_by,
                "created_at": None,
            }
            self._result = [{"id": entry_id}]
            return
        if q.startswith("INSERT INTO journal_entry_lines"):
            self.ledger.lines.append(tuple(params))
            return
        if q.startswith("INSERT INTO audit_logs"):
            self.ledger.audit.append(tuple(params))
            return
        raise AssertionError(f"unexpected SQL: {q}")

    def fetchone(self):
        return self._result[0] if self._result else None

    def fetchall(self):
        return list(self._result)


class FakeConn:
    def __init__(self, ledger: FakeLedger):
        self.ledger = ledger
        self.cursors: list[FakeLedgerCursor] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def cursor(self):
        cur = FakeLedgerCursor(self.ledger)
        self.cursors.append(cur)
        return cur

    @contextmanager
    def transaction(self):
        snap = self.ledger.snapshot()
        try:
            yield
        except BaseException:
            self.ledger.restore(snap)
            raise
