"""Persistence for contacts, workflows, contact states and daily caps."""

from .contacts import ContactStore, SQLContactStore
from .daily_caps import DailyCapCounter
from .states import ContactStateRepository, ExecutionLogEntry
from .workflows import WorkflowRepository

__all__ = [
    "ContactStore",
    "SQLContactStore",
    "DailyCapCounter",
    "ContactStateRepository",
    "ExecutionLogEntry",
    "WorkflowRepository",
]
