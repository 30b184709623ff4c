"""Shared exception types for the execution engine."""


class AutoSellError(Exception):
    """Base class for engine errors."""


class BuildError(AutoSellError):
    """Payload construction failed; no partial payload is ever returned."""


class SimulationError(AutoSellError):
    """Pre-flight simulation rejected the payload."""

    def __init__(self, message: str, logs: list[str] | None = None):
        super().__init__(message)
        self.logs = logs or []


class RpcError(AutoSellError):
    """A single endpoint failed to answer a call."""

    def __init__(self, message: str, url: str | None = None, code: int | None = None):
        super().__init__(message)
        self.url = url
        self.code = code


class SubmissionError(AutoSellError):
    """Network or endpoint failure while submitting; retried per policy."""

    def __init__(self, message: str, attempts: int = 0, last_error: Exception | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class AllEndpointsFailedError(SubmissionError):
    """Every endpoint in the pool failed the same operation."""


class ConfirmationTimeout(AutoSellError):
    """Outcome unknown: the payload was sent but never reached the target commitment."""

    def __init__(self, reference: str, timeout_ms: int):
        super().__init__(f"Payload {reference} not confirmed within {timeout_ms}ms")
        self.reference = reference
        self.timeout_ms = timeout_ms


class InsufficientBalanceError(AutoSellError):
    """Pre-check failed; fatal for the action that ran it."""


class PositionNotFoundError(AutoSellError):
    """No matching position exists for the asset; an ordering error."""

    def __init__(self, asset_id: str):
        super().__init__(f"Position not found for asset {asset_id}")
        self.asset_id = asset_id


class DuplicatePositionError(AutoSellError):
    """A non-terminal position already exists for the asset."""

    def __init__(self, asset_id: str):
        super().__init__(f"Position already open for asset {asset_id}")
        self.asset_id = asset_id


class EstimationError(AutoSellError):
    """Market value could not be estimated."""


class PositionLimitReached(AutoSellError):
    """The configured maximum of concurrent positions is already held."""
