""" World State Ledger: durable narrative state for one play session

Flags, faction reputation, per-graph lifecycle state and companion
relationships. No business rules live here, only bounds. Everything that
changes the ledger goes through narrative.outcomes.OutcomeDispatcher.
"""

import enum
import types
import logging
from collections.abc import Mapping, Iterable
from typing import Any, Optional

from starquest import config, util
from .factions import Faction, FACTION_IDS

logger = logging.getLogger(__name__)

class Lifecycle(enum.Enum):
    UNAVAILABLE = "unavailable"
    AVAILABLE = "available"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

def reputation_title(value:int) -> str:
    titles = config.Settings.reputation.TITLES
    title = titles[0]["title"]
    for t in titles:
        if value >= t["threshold"]:
            title = t["title"]
    return title

def relationship_level(value:int) -> str:
    levels = sorted(vars(config.Settings.relationship.LEVELS).items(), key=lambda x: x[1])
    level = levels[0][0]
    for name, threshold in levels:
        if value >= threshold:
            level = name
    return level

def relationship_threshold(level:str) -> int:
    """ lower bound of a named relationship level, e.g. "Cooperative" """
    levels = vars(config.Settings.relationship.LEVELS)
    for name, threshold in levels.items():
        if name.lower() == level.lower():
            return threshold
    raise ValueError(f'unknown relationship level "{level}"')


class LedgerSnapshot:
    """ Read-only view of the ledger at a point in time. """

    def __init__(self, flags:Iterable[str], reputation:Mapping[str, int], quest_state:Mapping[str, Lifecycle], relationship:Mapping[str, int]) -> None:
        self.flags = frozenset(flags)
        self.reputation = types.MappingProxyType(dict(reputation))
        self.quest_state = types.MappingProxyType(dict(quest_state))
        self.relationship = types.MappingProxyType(dict(relationship))

    def has_flag(self, flag:str) -> bool:
        return flag in self.flags

    def get_reputation(self, faction_id:str) -> int:
        return self.reputation.get(faction_id, 0)

    def get_quest_state(self, graph_id:str) -> Lifecycle:
        return self.quest_state.get(graph_id, Lifecycle.UNAVAILABLE)

    def get_relationship(self, companion_id:str) -> int:
        return self.relationship.get(companion_id, 0)


class WorldLedger:
    def __init__(self) -> None:
        self.logger = logging.getLogger(util.fullname(self))
        self.flags:set[str] = set()
        self.reputation:dict[str, int] = {}
        self.quest_state:dict[str, Lifecycle] = {}
        self.relationship:dict[str, int] = {}

    def __eq__(self, other:Any) -> bool:
        if not isinstance(other, WorldLedger):
            return NotImplemented
        return (
            self.flags == other.flags
            and self.reputation == other.reputation
            and self.quest_state == other.quest_state
            and self.relationship == other.relationship
        )

    def __repr__(self) -> str:
        return f'WorldLedger(flags={sorted(self.flags)}, reputation={self.reputation}, quest_state={ {k:v.value for k,v in self.quest_state.items()} }, relationship={self.relationship})'

    # readers

    def has_flag(self, flag:str) -> bool:
        return flag in self.flags

    def get_reputation(self, faction_id:str) -> int:
        return self.reputation.get(faction_id, 0)

    def get_quest_state(self, graph_id:str) -> Lifecycle:
        return self.quest_state.get(graph_id, Lifecycle.UNAVAILABLE)

    def get_relationship(self, companion_id:str) -> int:
        return self.relationship.get(companion_id, 0)

    def knows_companion(self, companion_id:str) -> bool:
        return companion_id in self.relationship

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(self.flags, self.reputation, self.quest_state, self.relationship)

    # writers, only called by the outcome dispatcher

    def set_flag(self, flag:str) -> bool:
        """ returns True if the flag was newly set """
        if flag in self.flags:
            return False
        self.flags.add(flag)
        return True

    def clear_flag(self, flag:str) -> bool:
        """ returns True if the flag was present """
        if flag not in self.flags:
            return False
        self.flags.remove(flag)
        return True

    def set_reputation(self, faction_id:str, value:int) -> int:
        s = config.Settings.reputation
        value = util.clip(value, s.MIN, s.MAX)
        self.reputation[faction_id] = value
        return value

    def set_quest_state(self, graph_id:str, state:Lifecycle) -> None:
        self.quest_state[graph_id] = state

    def set_relationship(self, companion_id:str, value:int) -> int:
        s = config.Settings.relationship
        value = util.clip(value, s.MIN, s.MAX)
        self.relationship[companion_id] = value
        return value

    def reset(self) -> None:
        self.flags.clear()
        self.reputation.clear()
        self.quest_state.clear()
        self.relationship.clear()

    # save/load

    def to_dict(self) -> dict[str, Any]:
        return {
            "flags": sorted(self.flags),
            "reputation": dict(self.reputation),
            "quest_state": {k: v.value for k,v in self.quest_state.items()},
            "relationship": dict(self.relationship),
        }

    @classmethod
    def from_dict(cls, data:Mapping[str, Any]) -> "WorldLedger":
        ledger = cls()
        ledger.flags = set(data.get("flags", []))
        ledger.reputation = {str(k): int(v) for k,v in data.get("reputation", {}).items()}
        ledger.quest_state = {str(k): Lifecycle(v) for k,v in data.get("quest_state", {}).items()}
        ledger.relationship = {str(k): int(v) for k,v in data.get("relationship", {}).items()}
        return ledger

    def restore(self, other:"WorldLedger") -> None:
        """ replace all state wholesale with other's """
        self.flags = set(other.flags)
        self.reputation = dict(other.reputation)
        self.quest_state = dict(other.quest_state)
        self.relationship = dict(other.relationship)
