"""
Smart pricing engine: per-product price experiments with automatic revert.
"""

from .config import EngineSettings, PricingConfig, PricingState, load_settings
from .coordinator import RunCoordinator, build_coordinator, run_all_stores
from .engine import PricingDecisionEngine
from .toggle import ResumeOption, SmartPricingToggle

__all__ = [
    "EngineSettings",
    "PricingConfig",
    "PricingDecisionEngine",
    "PricingState",
    "ResumeOption",
    "RunCoordinator",
    "SmartPricingToggle",
    "build_coordinator",
    "load_settings",
    "run_all_stores",
]
