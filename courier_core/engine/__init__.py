"""
Engine Module: Fusion orchestrator and tracking sessions.

Key classes:
- FusionOrchestrator: One tick of source selection, blending and enrichment
- PositioningEngine: Start/stop tracking, push inputs, tick, arrival targets
"""

from .orchestrator import (
    EntityState,
    FusionOrchestrator,
    OrchestratorConfig,
    SourceSelection,
    TickInputs,
    source_confidence,
)
from .tracking import (
    EngineConfig,
    PositioningEngine,
)

__all__ = [
    'EntityState',
    'FusionOrchestrator',
    'OrchestratorConfig',
    'SourceSelection',
    'TickInputs',
    'source_confidence',
    'EngineConfig',
    'PositioningEngine',
]
