class DomainError(Exception):
    """Base class for errors raised by the analysis core."""


class NotFound(DomainError):
    pass


class Forbidden(DomainError):
    pass


class Conflict(DomainError):
    pass


class AnalysisError(DomainError):
    """The analyzer could not produce a result for an artifact.

    Recorded on the record as ``error_info``; never propagated to a caller
    waiting on the analysis.
    """


class StoreUnavailable(DomainError):
    """The record store failed; the current tick is aborted."""


class InvalidTransition(DomainError):
    """A status change outside the state machine was attempted."""
