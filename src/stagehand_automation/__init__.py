"""Stagehand provisioning and configuration toolkit."""

from .bridge import HandoffBridge
from .inventory import InventoryLoader, TaskListLoader
from .reconciler import Reconciler
from .runner import TaskRunner

__all__ = ["HandoffBridge", "InventoryLoader", "Reconciler", "TaskListLoader", "TaskRunner"]
