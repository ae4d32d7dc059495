"""Exception types raised by the respawn services.

Routers translate these into HTTP errors; the controller reports them as
``respawn:error`` / ``respawn:blocked`` events.
"""


class RespawnError(Exception):
    """Base class for all respawn console errors."""


class InvalidConfigError(RespawnError):
    """An automation config or preset payload failed validation."""


class PresetNotFoundError(RespawnError):
    """No preset exists with the requested id."""


class PresetPermissionError(RespawnError):
    """Attempted to modify or delete a built-in preset."""


class CircuitOpenError(RespawnError):
    """Automation cannot be enabled while the session's circuit breaker is open."""


class ControllerNotFoundError(RespawnError):
    """No respawn controller is running for the session."""


class SessionUnavailableError(RespawnError):
    """The underlying terminal session has exited or cannot be reached."""


class AiCheckError(RespawnError):
    """The AI idle confirmation check failed (spawn error, timeout, bad verdict)."""
