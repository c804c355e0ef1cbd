import os
import sys


# Tests import `backend.*`, which requires the repo root on sys.path whether pytest
# runs from the repo root or from within `backend/`.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

# Settings are read once at import; voucher tests expect the built-in defaults.
for _key in (
    "JV_DEFAULT_LOCATION_ID",
    "JV_DIRECTOR_LOCATION_ID",
    "JV_STAFF_ACCRUAL_LOCATION_ID",
    "JV_LEAVE_PAYOUT_TYPE",
    "JV_UNMAPPED_POLICY",
):
    os.environ.pop(_key, None)
