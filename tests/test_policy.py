"""Tests for command risk classification."""

from __future__ import annotations

import pytest

from nativegate.policy import BLOCKED_PATTERNS, RISK_TOKENS, RiskClassifier, classify


class TestBlocklist:
    @pytest.mark.parametrize(
        "command",
        [
            "rm -rf /",
            "sudo rm -rf / --no-preserve-root",
            ":(){ :|:& };:",
            "mkfs.ext4 /dev/sda1",
            "dd if=/dev/zero of=/dev/sda",
        ],
    )
    def test_catastrophic_commands_blocked(self, command):
        decision = classify(command)
        assert decision.blocked is True
        assert decision.requires_authorization is False

    def test_blocked_reports_matching_pattern(self):
        assert classify("echo hi && mkfs /dev/sdb").blocked_by == "mkfs"

    def test_blocked_decision_carries_no_risks(self):
        assert classify("rm -rf /").risky_tokens == frozenset()


class TestRiskTokens:
    def test_plain_command_allowed(self):
        decision = classify("ls -la")
        assert decision.blocked is False
        assert decision.risky_tokens == frozenset()
        assert decision.requires_authorization is False

    def test_sudo_requires_authorization(self):
        decision = classify("sudo apt update")
        assert decision.requires_authorization is True
        assert {"sudo", "apt"} <= decision.risky_tokens

    def test_substring_match(self):
        # "rm" inside another word still counts.
        assert "rm" in classify("echo perform").risky_tokens

    def test_raw_device_read(self):
        assert "cat /dev" in classify("cat /dev/urandom | head").risky_tokens

    def test_sorted_risks_follow_declaration_order(self):
        decision = classify("chmod 777 x && sudo kill 1")
        assert decision.sorted_risks() == ["sudo", "chmod", "kill"]

    def test_classify_is_deterministic(self):
        assert classify("sudo systemctl restart x") == classify(
            "sudo systemctl restart x"
        )


class TestClassifierExtras:
    def test_extras_extend_lists(self):
        classifier = RiskClassifier.with_extras(
            extra_blocked=["shutdown -h now"],
            extra_risk_tokens=["docker"],
        )
        assert classifier.classify("shutdown -h now").blocked is True
        assert classifier.classify("docker ps").risky_tokens == {"docker"}

    def test_builtins_always_kept(self):
        classifier = RiskClassifier.with_extras(extra_blocked=[], extra_risk_tokens=[])
        assert classifier.blocked == BLOCKED_PATTERNS
        assert classifier.risk_tokens == RISK_TOKENS

    def test_duplicate_extras_ignored(self):
        classifier = RiskClassifier.with_extras(extra_risk_tokens=["sudo", "sudo"])
        assert classifier.risk_tokens.count("sudo") == 1

    def test_extra_tokens_sorted_after_builtins(self):
        classifier = RiskClassifier.with_extras(extra_risk_tokens=["docker"])
        assert classifier.classify("docker rm x").sorted_risks() == ["rm", "docker"]
