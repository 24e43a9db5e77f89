"""One-shot per-connection authorization for risky commands."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class AuthorizationState:
    """``Idle`` until approved; an approval covers exactly one execution.

    Mutated only from the owning connection's event loop task and the HTTP
    handler that consumes it, both on the same loop, so no lock is needed.
    """

    approved: bool = False

    def approve(self) -> None:
        self.approved = True

    def deny(self) -> None:
        self.approved = False

    def consume(self) -> bool:
        """Read and reset the grant."""
        granted = self.approved
        self.approved = False
        return granted
