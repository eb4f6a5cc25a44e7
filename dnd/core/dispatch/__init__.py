# dnd/core/dispatch/__init__.py
"""
Dispatch layer: takes a queued entry to its terminal state.

- ``engine``: DispatchEngine (local execution, relay failover, bookkeeping)

The engine is the only caller of the spool store's transition operations.
"""
from dnd.core.dispatch.engine import DispatchEngine, DispatchResult, Outcome

__all__ = ["DispatchEngine", "DispatchResult", "Outcome"]
