from __future__ import annotations


class OrganizerError(Exception):
    """Base class for recoverable routing failures.

    None of these are fatal: the engine catches them and degrades to a less
    informed tier, ending at the browser's default download location.
    """


class ConfigMissingError(OrganizerError):
    """No rules are configured."""


class TabResolutionError(OrganizerError):
    """The download could not be tied to an open tab."""


class CacheAccessError(OrganizerError):
    """The keyword cache could not be read or written."""


class OracleError(OrganizerError):
    pass


class OracleConfigMissingError(OracleError):
    """Endpoint, model, or API key is absent."""


class OracleCallError(OracleError):
    """Network error, non-success status, or an unknown response shape."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class PromptSurfaceError(OrganizerError):
    """The notification surface refused to create a prompt."""
