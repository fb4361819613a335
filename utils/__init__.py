"""
Utilities for pipeline runs.

- run_logger.py: Execution events, activity feed, attempt tracking, JSON export
"""

from utils.run_logger import (
    RunLogger,
    ExecutionEvent,
    ContextTrace,
    AttemptLog,
    IterationLog,
    EVENT_TYPES
)

__all__ = [
    'RunLogger', 'ExecutionEvent', 'ContextTrace',
    'AttemptLog', 'IterationLog', 'EVENT_TYPES'
]
