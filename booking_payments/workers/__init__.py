"""Background workers."""
from .reconciliation_worker import BookingSweep, SweepResult, run_sweep

__all__ = ["BookingSweep", "SweepResult", "run_sweep"]
