"""Strategies for turning a launch request into a reachable process."""

from __future__ import annotations

from ..registry import SessionRegistry
from ..settings import BackendsSettings
from .base import LaunchRequest, NativeBackend
from .direct import DirectExecBackend
from .sunshine import SunshineBackend
from .xpra import XpraBackend


def build_backends(
    settings: BackendsSettings, registry: SessionRegistry
) -> dict[str, NativeBackend]:
    backends: list[NativeBackend] = [
        DirectExecBackend(registry),
        XpraBackend(registry, settings.xpra),
        SunshineBackend(registry, settings.sunshine),
    ]
    return {backend.id: backend for backend in backends}


__all__ = [
    "DirectExecBackend",
    "LaunchRequest",
    "NativeBackend",
    "SunshineBackend",
    "XpraBackend",
    "build_backends",
]
