""" Star Quest core data: world state and the collaborators around it """

from .ledger import Lifecycle, Faction, FACTION_IDS, WorldLedger, LedgerSnapshot, reputation_title, relationship_level, relationship_threshold
from .collaborators import AbstractInventory, AbstractProgression, AbstractLocations, AbstractCompanions, AbstractEncounters, AbstractPresentation, Inventory, Progression, Locations, Companions, Encounters, Presentation, Collaborators
