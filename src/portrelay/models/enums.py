"""
Enumeration types for PortRelay.

This module defines the enumeration types used throughout the relay for
session state tracking and configuration options.
"""

from enum import Enum


# =============================================================================
# Session-Related Enums
# =============================================================================


class SessionState(str, Enum):
    """
    Relay session lifecycle state.

    State transitions:
        DIALING -> OPEN (remote connected) or CLOSED (dial failed)
        OPEN -> CLOSING (either copy direction finished)
        CLOSING -> CLOSED (both connections closed, both copies returned)
    """

    DIALING = "dialing"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


# =============================================================================
# Configuration Enums
# =============================================================================


class FailurePolicy(str, Enum):
    """
    What a listener failure does to the rest of the relay.

    - FAIL_FAST: Any listener failure stops every listener (fatal)
    - ISOLATE: A failed listener is logged, the others keep accepting
    """

    FAIL_FAST = "fail-fast"
    ISOLATE = "isolate"


class LogLevel(str, Enum):
    """
    Logging verbosity levels for PortRelay.

    Levels (from most to least verbose):
        - FULL: Complete trace with detailed stack information
        - DEBUG: Debug messages and above
        - INFO: Informational messages and above
        - WARNING: Only warnings and errors
    """

    FULL = "full"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
