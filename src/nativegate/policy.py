"""Risk classification for shell commands.

Classification is plain substring containment. It errs towards asking:
``rm`` also matches words such as ``perform``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

# Catastrophic commands. Never executed, whatever the authorization state.
BLOCKED_PATTERNS: tuple[str, ...] = (
    "rm -rf /",
    ":(){ :|:& };:",
    "mkfs",
    "dd if=",
)

# Commands that need a one-shot approval from the connected user.
RISK_TOKENS: tuple[str, ...] = (
    "sudo",
    "rm",
    "dd",
    "mount",
    "chmod",
    "chown",
    "apt",
    "dnf",
    "pacman",
    "systemctl",
    "service",
    "kill",
    "cat /dev",
)


@dataclass(frozen=True, slots=True)
class RiskDecision:
    blocked: bool = False
    risky_tokens: frozenset[str] = field(default_factory=frozenset)
    blocked_by: str | None = None

    @property
    def requires_authorization(self) -> bool:
        return not self.blocked and bool(self.risky_tokens)

    def sorted_risks(self) -> list[str]:
        # Built-in tokens first, in declaration order.
        return sorted(
            self.risky_tokens, key=lambda t: (_ORDER.get(t, len(_ORDER)), t)
        )


_ORDER: dict[str, int] = {token: i for i, token in enumerate(RISK_TOKENS)}


@dataclass(frozen=True, slots=True)
class RiskClassifier:
    """Classifier with the built-in lists plus configured additions."""

    blocked: tuple[str, ...] = BLOCKED_PATTERNS
    risk_tokens: tuple[str, ...] = RISK_TOKENS

    @classmethod
    def with_extras(
        cls,
        *,
        extra_blocked: Iterable[str] = (),
        extra_risk_tokens: Iterable[str] = (),
    ) -> RiskClassifier:
        return cls(
            blocked=_merge(BLOCKED_PATTERNS, extra_blocked),
            risk_tokens=_merge(RISK_TOKENS, extra_risk_tokens),
        )

    def classify(self, command: str) -> RiskDecision:
        for pattern in self.blocked:
            if pattern in command:
                return RiskDecision(blocked=True, blocked_by=pattern)
        matched = frozenset(token for token in self.risk_tokens if token in command)
        return RiskDecision(risky_tokens=matched)


def _merge(base: tuple[str, ...], extra: Iterable[str]) -> tuple[str, ...]:
    merged = list(base)
    for item in extra:
        if item and item not in merged:
            merged.append(item)
    return tuple(merged)


_DEFAULT = RiskClassifier()


def classify(command: str) -> RiskDecision:
    """Classify *command* against the built-in lists."""
    return _DEFAULT.classify(command)
