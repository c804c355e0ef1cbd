import os
from typing import List

class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/payroll_vouchers')
        # Comma-separated list of allowed CORS origins for browser clients.
        # Default keeps local dev working out of the box.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"

        # Journal voucher defaults. Rows in `voucher_settings` override these per deployment.
        self.jv_default_location_id = os.getenv("JV_DEFAULT_LOCATION_ID", "02").strip() or "02"
        self.jv_director_location_id = os.getenv("JV_DIRECTOR_LOCATION_ID", "01").strip() or "01"
        self.jv_staff_accrual_location_id = os.getenv("JV_STAFF_ACCRUAL_LOCATION_ID", "00").strip() or "00"
        self.jv_leave_payout_type = os.getenv("JV_LEAVE_PAYOUT_TYPE", "cuti_tahunan").strip() or "cuti_tahunan"
        self.jv_unmapped_policy = (os.getenv("JV_UNMAPPED_POLICY", "warn").strip().lower() or "warn")

    def voucher_defaults(self) -> dict:
        return {
            "default_location_id": self.jv_default_location_id,
            "director_location_id": self.jv_director_location_id,
            "staff_accrual_location_id": self.jv_staff_accrual_location_id,
            "leave_payout_type": self.jv_leave_payout_type,
            "unmapped_policy": self.jv_unmapped_policy,
        }

settings = Settings()
