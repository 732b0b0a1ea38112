"""Domain errors raised by the tournament core.

Every error is synchronous and non-retryable: the caller fixes the input
and calls again. ``status_code`` is what the HTTP adapter answers with.
"""


class TournamentError(Exception):
    """Base class for all tournament domain errors."""

    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class InvalidStateError(TournamentError):
    """Operation is not legal for the current tournament, round or match status."""

    status_code = 409


class ValidationError(TournamentError):
    """Bad score, too few players or a registration conflict."""

    status_code = 400


class NotFoundError(TournamentError):
    """Unknown tournament, match or player ID."""

    status_code = 404


class UnsupportedFormatError(TournamentError):
    """Operation does not apply to the tournament's format."""

    status_code = 400
