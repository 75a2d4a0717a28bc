"""Certificate lifecycle orchestration."""

from wildcert.lifecycle.orchestrator import LifecycleOrchestrator

__all__ = ["LifecycleOrchestrator"]
