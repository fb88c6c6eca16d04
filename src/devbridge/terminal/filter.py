"""Destructive-command firewall for chat-issued shell commands.

Rules are matched against the raw command string, in order, and the first
match wins. This is a best-effort deny-list: it does not parse shell syntax,
so quoting tricks, variables, aliases or scripts that perform the same action
indirectly will get through. It is a guard rail for typos and obviously
dangerous one-liners, not a sandbox.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

# Path arguments treated as "root-like" for recursive deletes
_ROOTLIKE = r"(?:/\*?|~/?\*?|\$HOME/?\*?|/(?:bin|boot|dev|etc|home|lib|lib64|opt|proc|root|sbin|srv|sys|usr|var)/?\*?)"

# Start of a simple command: line start, after a separator, or after sudo
_CMD_START = r"(?:^|[;&|(]\s*|\bsudo\s+)(?:/usr)?(?:/s?bin/)?"


@dataclass(frozen=True)
class DenyRule:
    """A named pattern that marks a command as presumptively destructive."""

    name: str
    pattern: re.Pattern[str]
    reason: str


@dataclass(frozen=True)
class FilterDecision:
    """Outcome of classifying a command."""

    allowed: bool
    rule: DenyRule | None = None

    @property
    def reason(self) -> str | None:
        return self.rule.reason if self.rule else None

    @property
    def message(self) -> str:
        """Operator-facing text for a denial."""
        if self.rule is None:
            return "Command allowed."
        return f"Blocked: {self.rule.reason} (rule: {self.rule.name})"


def _rule(name: str, pattern: str, reason: str) -> DenyRule:
    return DenyRule(name=name, pattern=re.compile(pattern), reason=reason)


DEFAULT_DENY_RULES: tuple[DenyRule, ...] = (
    _rule(
        "rm-root",
        r"\brm\s+"
        r"(?=(?:[^;&|]*\s)?(?:-[a-zA-Z]*[rR][a-zA-Z]*|--recursive)(?=\s))"
        r"(?=(?:[^;&|]*\s)?(?:-[a-zA-Z]*f[a-zA-Z]*|--force)(?=\s))"
        r"[^;&|]*?\s" + _ROOTLIKE + r"(?=\s|$|[;&|])",
        "recursive force-delete of a root-like path",
    ),
    _rule(
        "sudo-rm",
        r"\bsudo\s+(?:-\S+\s+)*rm\b",
        "privileged delete",
    ),
    _rule(
        "mkfs",
        r"\bmkfs(?:\.\w+)?\b|\bmke2fs\b|(?i:\bformat\s+[a-z]:)",
        "filesystem formatting",
    ),
    _rule(
        "dd-device",
        r"\bdd\b[^;&|]*\bof=/dev/(?!null\b|zero\b|stdout\b|stderr\b)",
        "dd writing to a raw device",
    ),
    _rule(
        "redirect-device",
        r">\s*/dev/(?:sd[a-z]|hd[a-z]|vd[a-z]|xvd[a-z]|nvme\d|mmcblk\d|disk\d)",
        "redirecting output onto a raw block device",
    ),
    _rule(
        "fork-bomb",
        r":\(\)\s*\{.*:\s*\|\s*:.*&.*\}\s*;?\s*:",
        "fork bomb",
    ),
    _rule(
        "chmod-root",
        r"\bchmod\s+"
        r"(?=(?:[^;&|]*\s)?(?:-[a-zA-Z]*R[a-zA-Z]*|--recursive)(?=\s))"
        r"(?=(?:[^;&|]*\s)?(?:0?777|a\+rwx|ugo\+rwx)(?=\s))"
        r"[^;&|]*\s/(?=\s|$|[;&|])",
        "recursive world-writable permissions on /",
    ),
    _rule(
        "pipe-to-shell",
        r"\b(?:curl|wget|fetch)\b[^;&]*\|\s*(?:sudo\s+)?(?:ba|z|k|da|c|tc|fi)?sh\b"
        r"|\b(?:ba|z)?sh\s+<\(\s*(?:curl|wget)\b",
        "remote script piped into a shell",
    ),
    _rule(
        "shutdown",
        _CMD_START + r"(?:shutdown|reboot|halt|poweroff)\b"
        r"|\bsystemctl\s+(?:poweroff|reboot|halt|kexec)\b",
        "system shutdown or reboot",
    ),
    _rule(
        "init-level",
        _CMD_START + r"(?:tel)?init\s+[06]\b",
        "init runlevel change",
    ),
)


def classify(command: str, rules: Iterable[DenyRule] = DEFAULT_DENY_RULES) -> FilterDecision:
    """Classify a command string as allowed or denied.

    Args:
        command: The raw shell command as typed by the operator.
        rules: Ordered deny rules; the first match wins.

    Returns:
        FilterDecision with the matched rule when denied.
    """
    for rule in rules:
        if rule.pattern.search(command):
            return FilterDecision(allowed=False, rule=rule)
    return FilterDecision(allowed=True)


def is_command_denied(command: str) -> str | None:
    """Return the denial message for a command, or None if it may run."""
    decision = classify(command)
    return None if decision.allowed else decision.message
