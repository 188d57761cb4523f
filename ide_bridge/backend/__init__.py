"""Backend session core — one supervised analysis process per project.

  - supervisor: spawn/stop/restart backends, one Session per project
  - command_queue: front/back queues feeding a single active command
  - dispatcher: drives decoded output lines into the active command
  - calls: submit a command and wait for it to settle
"""

from ide_bridge.backend.calls import call, run, settle
from ide_bridge.backend.commands import (
    CONTINUE,
    DONE,
    Command,
    CommandFailed,
    FailureKind,
    Outcome,
    OutcomeKind,
    error,
)
from ide_bridge.backend.supervisor import (
    ProcessSupervisor,
    Session,
    SubmitStatus,
    TransportError,
)

__all__ = [
    "CONTINUE",
    "DONE",
    "Command",
    "CommandFailed",
    "FailureKind",
    "Outcome",
    "OutcomeKind",
    "ProcessSupervisor",
    "Session",
    "SubmitStatus",
    "TransportError",
    "call",
    "error",
    "run",
    "settle",
]
