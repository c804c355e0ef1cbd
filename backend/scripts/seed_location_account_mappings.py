#!/usr/bin/env python3
import argparse
import csv
import os
import psycopg
from psycopg.rows import dict_row

from backend.app.validation import MAPPING_TYPES, VOUCHER_TYPES

DB_URL_DEFAULT = os.getenv("DATABASE_URL", "postgresql://localhost/payroll_vouchers")
CSV_DEFAULT = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data", "location_account_mappings.csv")


def get_conn(db_url):
    return psycopg.connect(db_url, row_factory=dict_row)


def read_rows(path: str) -> list[dict]:
    with open(path, newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        rows = list(reader)

    out = []
    for lineno, r in enumerate(rows, start=2):
        location_id = (r.get("location_id") or "").strip().upper()
        mapping_type = (r.get("mapping_type") or "").strip().lower()
        account_code = (r.get("account_code") or "").strip().upper()
        voucher_type = (r.get("voucher_type") or "").strip().upper()
        location_name = (r.get("location_name") or "").strip().upper()
        if not location_id or not mapping_type or not account_code:
            continue
        if voucher_type not in VOUCHER_TYPES:
            raise ValueError(f"line {lineno}: invalid voucher_type: {voucher_type}")
        if mapping_type not in MAPPING_TYPES:
            raise ValueError(f"line {lineno}: invalid mapping_type: {mapping_type}")
        out.append(
            {
                "location_id": location_id,
                "location_name": location_name or location_id,
                "mapping_type": mapping_type,
                "account_code": account_code,
                "voucher_type": voucher_type,
            }
        )
    return out


def main():
    parser = argparse.ArgumentParser(description="Load location -> account mappings for journal vouchers.")
    parser.add_argument("--db", default=DB_URL_DEFAULT)
    parser.add_argument("--csv", default=CSV_DEFAULT)
    parser.add_argument("--actor", default="seed")
    parser.add_argument(
        "--skip-missing-accounts",
        action="store_true",
        help="skip rows whose account code is not in account_codes instead of failing",
    )
    args = parser.parse_args()

    rows = read_rows(args.csv)
    written = 0
    skipped = 0
    with get_conn(args.db) as conn:
        with conn.cursor() as cur:
            for r in rows:
                cur.execute("SELECT 1 FROM account_codes WHERE code = %s", (r["account_code"],))
                if not cur.fetchone():
                    if args.skip_missing_accounts:
                        skipped += 1
                        continue
                    raise ValueError(f"Account code not found: {r['account_code']}")

                cur.execute(
                    """
                    INSERT INTO location_account_mappings
                      (location_id, location_name, mapping_type, account_code, voucher_type, is_active, created_by)
                    VALUES (%s, %s, %s, %s, %s, true, %s)
                    ON CONFLICT (location_id, mapping_type, voucher_type) DO UPDATE
                    SET location_name = EXCLUDED.location_name,
                        account_code = EXCLUDED.account_code,
                        is_active = true,
                        updated_by = EXCLUDED.created_by,
                        updated_at = now()
                    """,
                    (
                        r["location_id"],
                        r["location_name"],
                        r["mapping_type"],
                        r["account_code"],
                        r["voucher_type"],
                        args.actor,
                    ),
                )
                written += 1
        conn.commit()
    print(f"mappings upserted: {written}, skipped (missing account): {skipped}")


if __name__ == "__main__":
    main()
