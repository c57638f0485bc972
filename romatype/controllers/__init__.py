"""
Controller package exports.

The state machines and the multiplayer bridge live here; import them from the
package rather than from the individual modules.
"""

# Round machines
from .round_machine import RoundMachine  # noqa: F401
from .session_machine import SessionMachine  # noqa: F401
from .practice_session import PracticeSessionMachine  # noqa: F401
from .flash_round import FlashRoundMachine  # noqa: F401

# Beat-sync and multiplayer
from .beat_sync import BeatSyncEngine  # noqa: F401
from .roster_bridge import RosterBridge  # noqa: F401

# Settings-driven construction
from .game_factory import GameFactory  # noqa: F401

__all__ = [
    "BeatSyncEngine",
    "FlashRoundMachine",
    "GameFactory",
    "PracticeSessionMachine",
    "RosterBridge",
    "RoundMachine",
    "SessionMachine",
]
