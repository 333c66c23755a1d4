"""
Phases of a trading session.

A session starts idle, alternates between buying and sleeping while it has
budget, and ends with a single sell phase before it is done.
"""

from __future__ import annotations

from enum import Enum


class SessionPhase(str, Enum):
    """Possible states for one funding account's session."""

    IDLE = "idle"
    BUYING = "buying"
    SLEEPING = "sleeping"
    SELLING = "selling"
    DONE = "done"
