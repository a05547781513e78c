""" Interfaces the narrative engine uses to talk to the rest of the game

The engine never owns inventory, skills, travel, companions, combat or
puzzles. It reads and writes them through these narrow interfaces. The
in-memory implementations are enough to drive the engine on its own (the
console player and tests use them).
"""

import abc
import logging
import collections
from collections.abc import Mapping
from typing import Optional

from starquest import util

class AbstractInventory(abc.ABC):
    @abc.abstractmethod
    def give_item(self, item_id:str, quantity:int=1) -> None: ...
    @abc.abstractmethod
    def remove_item(self, item_id:str, quantity:int=1) -> bool: ...
    @abc.abstractmethod
    def has_item(self, item_id:str) -> bool: ...

class AbstractProgression(abc.ABC):
    @abc.abstractmethod
    def grant_experience(self, amount:int) -> None: ...
    @abc.abstractmethod
    def get_skill_level(self, skill:str) -> int: ...

class AbstractLocations(abc.ABC):
    @abc.abstractmethod
    def unlock_location(self, location_id:str) -> None: ...
    @abc.abstractmethod
    def is_location_visited(self, location_id:str) -> bool: ...
    @abc.abstractmethod
    def current_location(self) -> Optional[str]: ...

class AbstractCompanions(abc.ABC):
    @abc.abstractmethod
    def get_relationship(self, companion_id:str) -> int: ...
    @abc.abstractmethod
    def adjust_relationship(self, companion_id:str, delta:int) -> None: ...
    @abc.abstractmethod
    def unlock_companion(self, companion_id:str, relationship:int) -> None:
        """ the companion joins with the given starting relationship """
        ...


class AbstractEncounters(abc.ABC):
    """ Combat and puzzle subsystems.

    Fire and forget: results come back later as ordinary outcomes through
    NarrativeEngine.apply_external. """

    @abc.abstractmethod
    def start_combat(self, encounter_id:str) -> None: ...
    @abc.abstractmethod
    def start_puzzle(self, encounter_id:str) -> None: ...

class AbstractPresentation(abc.ABC):
    @abc.abstractmethod
    def trigger_ending(self, ending_id:str, failed:bool) -> None: ...


class Inventory(AbstractInventory):
    def __init__(self, items:Optional[Mapping[str, int]]=None) -> None:
        self.logger = logging.getLogger(util.fullname(self))
        self.items:collections.Counter[str] = collections.Counter(items or {})

    def give_item(self, item_id:str, quantity:int=1) -> None:
        self.items[item_id] += quantity
        self.logger.debug(f'gave {quantity} {item_id}')

    def remove_item(self, item_id:str, quantity:int=1) -> bool:
        if self.items[item_id] < quantity:
            return False
        self.items[item_id] -= quantity
        if self.items[item_id] == 0:
            del self.items[item_id]
        return True

    def has_item(self, item_id:str) -> bool:
        return self.items[item_id] > 0


class Progression(AbstractProgression):
    def __init__(self, skills:Optional[Mapping[str, int]]=None, experience:int=0) -> None:
        self.skills = dict(skills or {})
        self.experience = experience

    def grant_experience(self, amount:int) -> None:
        self.experience += amount

    def get_skill_level(self, skill:str) -> int:
        return self.skills.get(skill, 0)


class Locations(AbstractLocations):
    def __init__(self, current:Optional[str]="ship") -> None:
        self.unlocked:set[str] = set()
        self.visited:set[str] = set()
        self.current = current
        if current is not None:
            self.unlocked.add(current)
            self.visited.add(current)

    def unlock_location(self, location_id:str) -> None:
        self.unlocked.add(location_id)

    def is_location_visited(self, location_id:str) -> bool:
        return location_id in self.visited

    def current_location(self) -> Optional[str]:
        return self.current

    def travel(self, location_id:str) -> None:
        """ moves the player, travel rules belong to the game not the engine """
        if location_id not in self.unlocked:
            raise ValueError(f'location {location_id} is not unlocked')
        self.current = location_id
        self.visited.add(location_id)


class Companions(AbstractCompanions):
    def __init__(self) -> None:
        self.relationships:dict[str, int] = {}
        self.unlocked:set[str] = set()

    def get_relationship(self, companion_id:str) -> int:
        return self.relationships.get(companion_id, 0)

    def adjust_relationship(self, companion_id:str, delta:int) -> None:
        self.relationships[companion_id] = self.relationships.get(companion_id, 0) + delta

    def unlock_companion(self, companion_id:str, relationship:int) -> None:
        if companion_id not in self.unlocked:
            self.relationships[companion_id] = relationship
        self.unlocked.add(companion_id)


class Encounters(AbstractEncounters):
    """ remembers requested encounters until the host picks them up """

    def __init__(self) -> None:
        self.pending:collections.deque[tuple[str, str]] = collections.deque()

    def start_combat(self, encounter_id:str) -> None:
        self.pending.append(("combat", encounter_id))

    def start_puzzle(self, encounter_id:str) -> None:
        self.pending.append(("puzzle", encounter_id))


class Presentation(AbstractPresentation):
    def __init__(self) -> None:
        self.ending:Optional[tuple[str, bool]] = None

    def trigger_ending(self, ending_id:str, failed:bool) -> None:
        self.ending = (ending_id, failed)


class Collaborators:
    """ Bundle of everything outside the engine it reads from or writes to """

    def __init__(
            self,
            inventory:Optional[AbstractInventory]=None,
            progression:Optional[AbstractProgression]=None,
            locations:Optional[AbstractLocations]=None,
            companions:Optional[AbstractCompanions]=None,
            encounters:Optional[AbstractEncounters]=None,
            presentation:Optional[AbstractPresentation]=None) -> None:
        self.inventory = inventory or Inventory()
        self.progression = progression or Progression()
        self.locations = locations or Locations()
        self.companions = companions or Companions()
        self.encounters = encounters or Encounters()
        self.presentation = presentation or Presentation()
