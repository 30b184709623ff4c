"""Shared constants for the execution engine."""

# Commitment levels, ordered from shallowest to deepest confirmation
COMMITMENT_LEVELS = ["processed", "confirmed", "finalized"]

# Base-unit conversions
LAMPORTS_PER_SOL = 1_000_000_000
TOKEN_DECIMALS = 6
TOKEN_UNIT = 10**TOKEN_DECIMALS

# Confirmation polling cadence
CONFIRMATION_POLL_SECONDS = 1.0

# Minimum in-window events before a low buy/sell ratio can trigger an exit
MIN_EVENTS_FOR_RATIO_EXIT = 5

# Periodic status emission cadence (hold-time seconds)
STATUS_EVERY_SECONDS = 5


def commitment_reached(observed: str | None, target: str) -> bool:
    """True when ``observed`` is at least as deep as ``target``."""
    if observed not in COMMITMENT_LEVELS:
        return False
    return COMMITMENT_LEVELS.index(observed) >= COMMITMENT_LEVELS.index(target)
