""" The factions whose reputation the ledger tracks """

import enum

class Faction(enum.Enum):
    ALLIANCE = "Alliance"
    SYNDICATE = "Syndicate"
    SETTLERS = "Settlers"
    MYSTICS = "Mystics"
    INDEPENDENT = "Independent"
    VOID_ENTITY = "VoidEntity"

FACTION_IDS = frozenset(f.value for f in Faction)
