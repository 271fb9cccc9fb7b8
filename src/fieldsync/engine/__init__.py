"""Engine module exposing the sync engine to the presentation layer."""

from fieldsync.engine.orchestrator import FieldSyncOrchestrator

__all__ = ["FieldSyncOrchestrator"]
