"""
FastAPI Router for the wagering core API
"""

from fastapi import APIRouter

# Import sub-routers
from wagering.api.safety import router as safety_router
from wagering.api.vouchers import router as vouchers_router
from wagering.api.wallets import router as wallets_router


router = APIRouter()

# Include sub-routers (they already carry their prefixes)
router.include_router(safety_router)  # Loss limit, telemetry, interventions
router.include_router(wallets_router)  # Bets and voucher policy projection
router.include_router(vouchers_router)  # Redemption and win-cap options
