"""OS boundary of the isolation engine.

The reconciler only talks to the two protocols exported here, so it can run against
the live system or an in-memory fake with the same contract.
"""

from agor_isolation.unix.executor import CommandResult, CommandRunner
from agor_isolation.unix.inspector import OSStateInspector, SystemStateInspector
from agor_isolation.unix.mutator import MutationResult, OSMutator, SystemMutator

__all__ = [
    "CommandResult",
    "CommandRunner",
    "MutationResult",
    "OSMutator",
    "OSStateInspector",
    "SystemMutator",
    "SystemStateInspector",
]
