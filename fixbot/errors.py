"""Error taxonomy shared by the scan and fix pipelines."""

from __future__ import annotations


class FixbotError(RuntimeError):
    """Base class for every error raised by fixbot."""


class TransportError(FixbotError):
    """Raised when the remote host cannot be reached or answers out of protocol."""


class NotFoundError(FixbotError):
    """Raised when a revision, blob or session key does not exist."""


class EncodingError(FixbotError):
    """Raised when blob content arrives in an unrecognized transport encoding."""


class IncompleteTreeError(FixbotError):
    """Raised when the remote host returns a truncated tree listing."""


class AuthRequiredError(FixbotError):
    """Raised when an operation needs a user credential that is not available."""


class NoWriteAccessError(FixbotError):
    """Raised when the acting user may not write to the working repository."""


class NotFixableError(FixbotError):
    """Raised when a fix is requested for a finding that is not fixable."""


class UnsupportedKindError(FixbotError):
    """Raised when no automated repair exists for a finding's kind."""
