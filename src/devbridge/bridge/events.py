"""Agent hook events turned into operator notifications."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

APPROVAL_EVENT = "beforeShellExecution"
STOP_EVENT = "stop"


def is_approval_event(event: Mapping[str, Any]) -> bool:
    """True if the agent is blocked on a confirmation dialog."""
    return event.get("hook_event_name") == APPROVAL_EVENT


def format_agent_event(event: Mapping[str, Any]) -> str:
    """Render a hook payload (hook_event_name, command, status) as chat text."""
    name = event.get("hook_event_name") or "unknown"

    if name == APPROVAL_EVENT:
        command = event.get("command") or "unknown command"
        return (
            f"Approval needed: Agent wants to run:\n\n$ {command}\n\n"
            "Reply yes to run it or no to skip."
        )

    if name == STOP_EVENT:
        status = event.get("status") or "unknown"
        if status == "completed":
            return "Agent finished execution successfully."
        if status == "error":
            return "Agent encountered an error. Please check the editor."
        return "Agent stopped. Please check the editor."

    return f"Agent event: {name}. Please check the editor."
