"""Plugin manifest and module contracts."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol


class PluginSlot(str, Enum):
    RUNTIME = "runtime"
    AGENT = "agent"
    SCM = "scm"
    TRACKER = "tracker"
    WORKSPACE = "workspace"
    TERMINAL = "terminal"
    NOTIFIER = "notifier"


@dataclass(frozen=True)
class PluginManifest:
    """Static description every plugin module declares."""

    name: str
    slot: PluginSlot
    description: str = ""
    version: str = "0.1.0"

    @property
    def key(self) -> tuple[PluginSlot, str]:
        return (self.slot, self.name)


class PluginModule(Protocol):
    """A module (or any object) exposing ``manifest`` and ``create``."""

    manifest: PluginManifest

    def create(self, config: dict | None = None) -> Any:
        ...
