"""Error taxonomy shared by the registry and services."""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for all agentorchestrator errors."""


class NotFoundError(OrchestratorError):
    """An unknown session or plugin instance was requested."""


class SessionNotFound(NotFoundError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class ConfigurationError(OrchestratorError):
    """Invalid or incomplete configuration. Fatal at startup."""


class CapabilityError(OrchestratorError):
    """A plugin call failed. The underlying exception is the ``__cause__``."""


class WorkspaceError(CapabilityError):
    """The workspace plugin could not materialize a working directory."""


class RuntimeSpawnError(CapabilityError):
    """The runtime plugin could not start the agent process."""


class SessionNotRestorable(OrchestratorError):
    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(f"Session {session_id} cannot be restored from status '{status}'")
        self.session_id = session_id
        self.status = status
