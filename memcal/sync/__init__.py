"""Feed synchronization: per-feed orchestrator and periodic scheduler."""

from .orchestrator import SyncOrchestrator, SyncResult
from .scheduler import SweepReport, SyncScheduler

__all__ = ["SweepReport", "SyncOrchestrator", "SyncResult", "SyncScheduler"]
