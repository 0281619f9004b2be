"""Event processing pipeline: fan-out, write-back and backfill."""

from altwatch.pipeline.backfill import run_backfill
from altwatch.pipeline.orchestrator import FanOutOrchestrator
from altwatch.pipeline.updater import ConsistencyCheckedUpdater

__all__ = ["ConsistencyCheckedUpdater", "FanOutOrchestrator", "run_backfill"]
