"""Event dispatch for the relay.

This module routes verified webhook events:
- installation events bootstrap the application identity
- pull request comment commands dispatch workflows
- workflow runs started by the relay are mirrored as check runs
"""

from src.relay.dispatch.commands import (
    Command,
    CommandInterpreter,
    parse_command,
    workflow_file,
)
from src.relay.dispatch.dispatcher import DispatchOutcome, EventDispatcher
from src.relay.dispatch.workflow_runs import WorkflowRunTracker

__all__ = [
    "Command",
    "CommandInterpreter",
    "DispatchOutcome",
    "EventDispatcher",
    "WorkflowRunTracker",
    "parse_command",
    "workflow_file",
]
