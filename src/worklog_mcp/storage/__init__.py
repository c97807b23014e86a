"""Storage abstractions for Worklog MCP."""

from .chroma import ChromaEvent, ChromaStore, ChromaUnavailableError
from .models import ReconciliationRecord
from .state import ACTIVE_SESSION_SLOT, SUSPENDED_STACK_SLOT, PersistenceStore

__all__ = [
    "ACTIVE_SESSION_SLOT",
    "ChromaEvent",
    "ChromaStore",
    "ChromaUnavailableError",
    "PersistenceStore",
    "ReconciliationRecord",
    "SUSPENDED_STACK_SLOT",
]
