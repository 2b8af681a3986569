"""
Tournament error taxonomy
"""


class TournamentError(Exception):
    """Base class for engine errors"""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(TournamentError):
    """Rejected configuration or a record that breaks store invariants"""

    status_code = 400


class ProviderError(TournamentError):
    """An idea generation or expert review call failed"""

    status_code = 502

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class ConflictError(TournamentError):
    """Champion changed concurrently, or the tournament is in the wrong state"""

    status_code = 409


class NotFoundError(TournamentError):
    """Requested state was never produced"""

    status_code = 404
