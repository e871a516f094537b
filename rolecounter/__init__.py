"""Role member counters rendered into Discord voice-channel names."""

from rolecounter.engine import EngineState, ReconciliationEngine
from rolecounter.models import DEFAULT_TEMPLATE, Binding, LabelVars
from rolecounter.store import BindingStore

__all__ = [
    "DEFAULT_TEMPLATE",
    "Binding",
    "BindingStore",
    "EngineState",
    "LabelVars",
    "ReconciliationEngine",
]
