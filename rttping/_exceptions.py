from __future__ import annotations


class ResolutionError(ValueError):
    """Raised when a host token cannot be turned into an address of the requested family."""

    def __init__(self, host: str, reason: str) -> None:
        super().__init__(f"Resolve error {host}: {reason}")
        self.host = host
        self.reason = reason


class TransportError(OSError):
    """Raised when echo requests cannot be sent or replies cannot be received."""


class RawSocketPermissionError(TransportError, PermissionError):
    """Raised when raw socket creation fails due to missing privileges."""
