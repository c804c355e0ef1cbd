from __future__ import annotations

from typing import Optional


def account_code_exists(cur, code: str) -> bool:
    cur.execute("SELECT 1 FROM account_codes WHERE code = %s", (code,))
    return cur.fetchone() is not None


class MappingIndex:
    """
    Active location -> account mappings, keyed by (voucher_type, location_id).

    Built once per request so preview and generate resolve accounts from the same snapshot.
    """

    def __init__(self, rows):
        self._accounts: dict[tuple[str, str], dict[str, str]] = {}
        self._names: dict[tuple[str, str], str] = {}
        for r in rows or []:
            key = (str(r["voucher_type"]), str(r["location_id"]))
            code = (r.get("account_code") or "").strip()
            if not code:
                continue
            self._accounts.setdefault(key, {})[str(r["mapping_type"])] = code
            if r.get("location_name"):
                self._names.setdefault(key, str(r["location_name"]))

    def account(self, voucher_type: str, location_id: str, mapping_type: str) -> Optional[str]:
        return self._accounts.get((voucher_type, location_id), {}).get(mapping_type)

    def accounts_for(self, voucher_type: str, location_id: str) -> dict[str, str]:
        return dict(self._accounts.get((voucher_type, location_id), {}))

    def location_name(self, voucher_type: str, location_id: str) -> Optional[str]:
        return self._names.get((voucher_type, location_id))


def load_mapping_index(cur) -> MappingIndex:
    cur.execute(
        """
        SELECT voucher_type, location_id, location_name, mapping_type, account_code
        FROM location_account_mappings
        WHERE is_active = true
        ORDER BY voucher_type, location_id, mapping_type
        """
    )
    return MappingIndex(cur.fetchall())
