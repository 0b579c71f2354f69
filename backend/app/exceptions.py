"""Exceptions raised by the bracket engine.

Guard failures are raised as typed exceptions so the command layer can turn
them into user-facing messages; nothing here is swallowed by the services.
"""


class BracketEngineError(Exception):
    """Base exception for all bracket engine errors."""

    pass


# ========== Lookup Exceptions ==========


class TournamentNotFound(BracketEngineError):
    """Raised when a tournament id does not exist in the given scope."""

    pass


class MatchNotFound(BracketEngineError):
    """Raised when a match id does not exist in the given tournament."""

    pass


# ========== Bracket Exceptions ==========


class BracketGenerationFailure(BracketEngineError):
    """Raised when a participant set cannot be turned into a bracket."""

    pass


class InsufficientParticipants(BracketGenerationFailure):
    """Raised when fewer than two participants are available."""

    def __init__(self, count: int):
        self.count = count
        super().__init__(f"Need at least 2 participants, got {count}")


# ========== Lifecycle Exceptions ==========


class InvalidTransition(BracketEngineError):
    """Raised when a tournament state transition guard fails."""

    def __init__(self, from_status: str, to_status: str, reason: str = ""):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason or f"Cannot transition from {from_status} to {to_status}"
        super().__init__(self.reason)


class RegistrationError(BracketEngineError):
    """Raised when a join or leave request is rejected."""

    pass


# ========== Result Reporting Exceptions ==========


class NotAParticipant(BracketEngineError):
    """Raised when a user acts on a match they do not play in."""

    pass


class MatchNotReportable(BracketEngineError):
    """Raised when a match is not in a state that accepts the requested action."""

    pass


class ReportConflict(BracketEngineError):
    """Raised when a second report names a different winner than the pending one."""

    def __init__(self, match_id: str, pending_winner_id: str, conflicting_winner_id: str):
        self.match_id = match_id
        self.pending_winner_id = pending_winner_id
        self.conflicting_winner_id = conflicting_winner_id
        super().__init__(
            f"Match {match_id} already has a pending report for {pending_winner_id}; "
            f"conflicting report for {conflicting_winner_id} escalated as a dispute"
        )


# ========== Creation Wizard Exceptions ==========


class CreationSessionNotFound(BracketEngineError):
    """Raised when a creation session id is unknown, expired or already committed."""

    pass
