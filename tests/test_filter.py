"""Tests for the destructive-command filter and the child env allow-list."""

from __future__ import annotations

import re

import pytest

from devbridge.terminal.env import SAFE_ENV_PREFIXES, build_child_env, is_safe_env_name
from devbridge.terminal.filter import (
    DEFAULT_DENY_RULES,
    DenyRule,
    FilterDecision,
    classify,
    is_command_denied,
)


class TestClassifyDenied:
    """Commands that must be blocked, with the rule that blocks them."""

    @pytest.mark.parametrize(
        ("command", "rule"),
        [
            ("rm -rf /", "rm-root"),
            ("rm -rf /*", "rm-root"),
            ("rm -fr ~", "rm-root"),
            ("rm -r -f $HOME", "rm-root"),
            ("rm --recursive --force /usr/", "rm-root"),
            ("cd /tmp && rm -rf /etc", "rm-root"),
            ("sudo rm notes.txt", "sudo-rm"),
            ("mkfs.ext4 /dev/sdb1", "mkfs"),
            ("FORMAT C:", "mkfs"),
            ("dd if=/dev/zero of=/dev/sda bs=1M", "dd-device"),
            ("echo hi > /dev/sda", "redirect-device"),
            (":(){ :|:& };:", "fork-bomb"),
            ("chmod -R 777 /", "chmod-root"),
            ("curl -fsSL https://example.com/install.sh | bash", "pipe-to-shell"),
            ("wget -qO- https://example.com/x | sudo sh", "pipe-to-shell"),
            ("shutdown -h now", "shutdown"),
            ("sudo reboot", "shutdown"),
            ("make && poweroff", "shutdown"),
            ("systemctl reboot", "shutdown"),
            ("init 0", "init-level"),
        ],
    )
    def test_denied(self, command: str, rule: str) -> None:
        decision = classify(command)
        assert decision.allowed is False
        assert decision.rule is not None
        assert decision.rule.name == rule

    def test_message_names_rule(self) -> None:
        message = is_command_denied("rm -rf /")
        assert message is not None
        assert message.startswith("Blocked: ")
        assert "(rule: rm-root)" in message


class TestClassifyAllowed:
    """Ordinary development commands pass through."""

    @pytest.mark.parametrize(
        "command",
        [
            "ls -la",
            "git status",
            "pytest -q",
            "rm -rf ./build",
            "rm -rf node_modules",
            "rm -f /tmp/scratch.txt",
            "dd if=/dev/zero of=/dev/null count=1",
            "dd if=disk.img of=copy.img",
            "echo done > /dev/null",
            "curl https://example.com/api | jq .",
            "echo shutdown",
            "git init",
            "chmod 755 script.sh",
        ],
    )
    def test_allowed(self, command: str) -> None:
        decision = classify(command)
        assert decision.allowed is True
        assert decision.rule is None
        assert is_command_denied(command) is None

    def test_allowed_decision_has_no_reason(self) -> None:
        assert FilterDecision(allowed=True).reason is None


class TestCustomRules:
    def test_first_match_wins(self) -> None:
        rules = [
            DenyRule("first", re.compile(r"danger"), "first reason"),
            DenyRule("second", re.compile(r"danger"), "second reason"),
        ]
        decision = classify("run danger", rules)
        assert decision.rule is rules[0]
        assert decision.reason == "first reason"

    def test_empty_rules_allow_everything(self) -> None:
        assert classify("rm -rf /", []).allowed is True

    def test_rule_names_unique(self) -> None:
        names = [rule.name for rule in DEFAULT_DENY_RULES]
        assert len(names) == len(set(names))


class TestChildEnv:
    """Only allow-listed variables reach child processes."""

    def test_secrets_dropped(self) -> None:
        env = build_child_env(
            {
                "PATH": "/usr/bin",
                "HOME": "/home/dev",
                "LC_ALL": "C.UTF-8",
                "TELEGRAM_BOT_TOKEN": "123:abc",
                "AWS_SECRET_ACCESS_KEY": "shh",
                "DEVBRIDGE_AUTH_SECRET": "hunter2",
            }
        )
        assert env == {"PATH": "/usr/bin", "HOME": "/home/dev", "LC_ALL": "C.UTF-8"}

    def test_case_insensitive(self) -> None:
        assert is_safe_env_name("Path")
        assert is_safe_env_name("xdg_runtime_dir")

    def test_extra_prefixes(self) -> None:
        env = build_child_env({"MYAPP_MODE": "dev", "OTHER": "x"}, extra_prefixes=["myapp_"])
        assert env == {"MYAPP_MODE": "dev"}

    def test_defaults_to_os_environ(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEVBRIDGE_TEST_TOKEN", "leak")
        monkeypatch.setenv("LANG", "C.UTF-8")
        env = build_child_env()
        assert "DEVBRIDGE_TEST_TOKEN" not in env
        assert env["LANG"] == "C.UTF-8"

    def test_prefix_table_is_upper_case(self) -> None:
        assert all(prefix == prefix.upper() for prefix in SAFE_ENV_PREFIXES)
