"""Process subsystem - trampoline, process, and task queue.

Re-exports public symbols so callers can write::

    from py_coop.process import Process, TaskQueue, return_value
"""

from py_coop.process.coroutine import (
    CoroutineSource,
    Frame,
    ReturnValue,
    SourceKind,
    Trampoline,
    is_routine,
    return_value,
)
from py_coop.process.pcb import ID_SEPARATOR, Process, ProcessError, child_pid, parent_of
from py_coop.process.queue import TaskQueue

__all__ = [
    "ID_SEPARATOR",
    "CoroutineSource",
    "Frame",
    "Process",
    "ProcessError",
    "ReturnValue",
    "SourceKind",
    "TaskQueue",
    "Trampoline",
    "child_pid",
    "is_routine",
    "parent_of",
    "return_value",
]
