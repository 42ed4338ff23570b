"""Node bootstrap service primitives."""

from .materialize import MARKER_NAME, MaterializationMarker, MaterializationResult, RootState, WorkloadMaterializer
from .record import BootstrapRecord
from .retry import call_with_retry
from .sequencer import BootstrapError, BootstrapReport, BootstrapSequencer, BootstrapStep

__all__ = [
    "BootstrapError",
    "BootstrapRecord",
    "BootstrapReport",
    "BootstrapSequencer",
    "BootstrapStep",
    "MARKER_NAME",
    "MaterializationMarker",
    "MaterializationResult",
    "RootState",
    "WorkloadMaterializer",
    "call_with_retry",
]
