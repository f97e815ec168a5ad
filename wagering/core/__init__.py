"""
Core module - base types and enums for the whole stack.
"""

from wagering.core.enums import (
    OutcomeMode,
    WinCapMode,
    PayoutMode,
    CapPhase,
    RiskBand,
    RiskSignal,
)

__all__ = [
    "OutcomeMode",
    "WinCapMode",
    "PayoutMode",
    "CapPhase",
    "RiskBand",
    "RiskSignal",
]
