"""Custom exception hierarchy for the SolRelay agent.

All exceptions inherit from RelayError so callers can catch broadly
or narrowly as needed. Cap-gate denials and executor skips are NOT
exceptions; they travel as values (GateDecision, MissionOutcome).
"""


class RelayError(Exception):
    """Base exception for all SolRelay agent errors."""


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

class DatabaseError(RelayError):
    """Failed database operation."""


class SchemaInitError(DatabaseError):
    """Failed to initialize database schema."""


class ConnectionError(DatabaseError):
    """Failed to connect to database."""


# ---------------------------------------------------------------------------
# Missions
# ---------------------------------------------------------------------------

class MissionError(RelayError):
    """Mission processing failure."""


class InvalidTransitionError(MissionError):
    """Requested status change is not in the mission state graph."""

    def __init__(self, mission_id: str, from_status: str, to_status: str):
        self.mission_id = mission_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition for mission {mission_id}: {from_status} → {to_status}")


class TransferNotFoundError(MissionError):
    """Mission references a transfer that does not exist."""

    def __init__(self, transfer_id: str):
        self.transfer_id = transfer_id
        super().__init__(f"Transfer not found: {transfer_id}")


class ExecutorNotFoundError(MissionError):
    """No executor registered for a mission type."""

    def __init__(self, mission_type: str):
        self.mission_type = mission_type
        super().__init__(f"No executor for type: {mission_type}")


# ---------------------------------------------------------------------------
# Mail
# ---------------------------------------------------------------------------

class MailError(RelayError):
    """Failed mail provider operation."""


class MailAuthenticationError(MailError):
    """Invalid provider API key or unauthorized sender."""


class MailRateLimitError(MailError):
    """Provider rejected the request with a rate limit."""


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

class LeaseError(RelayError):
    """Scheduler lease could not be acquired or released."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigError(RelayError):
    """Invalid or missing configuration."""
