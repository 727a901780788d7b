"""OpenContext ingestion pipeline: state machine, hierarchy, orchestration, purge."""

from opencontext.pipeline.executor import IngestionExecutor
from opencontext.pipeline.guard import DocumentGuard
from opencontext.pipeline.hierarchy import HierarchyBuilder, validate_forest
from opencontext.pipeline.orchestrator import IngestionOrchestrator
from opencontext.pipeline.purge import DocumentPurger
from opencontext.pipeline.state import Event, apply_transition, transition

__all__ = [
    "DocumentGuard",
    "DocumentPurger",
    "Event",
    "HierarchyBuilder",
    "IngestionExecutor",
    "IngestionOrchestrator",
    "apply_transition",
    "transition",
    "validate_forest",
]
