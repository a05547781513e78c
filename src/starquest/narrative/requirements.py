""" Requirements gating choices and graphs, and their evaluation

A requirement is a declarative predicate over world state. Evaluation is a
pure function of the requirement, a ledger snapshot and read access to the
inventory, progression and location collaborators. Lists of requirements
are conjunctions, an empty list always holds.
"""

import enum
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, Optional, Union

from starquest import util
from starquest.core import ledger, collaborators

class RequirementKind(enum.Enum):
    ITEM = enum.auto()
    SKILL_LEVEL = enum.auto()
    FACTION_LEVEL = enum.auto()
    FLAG = enum.auto()
    LOCATION_VISITED = enum.auto()
    QUEST_COMPLETED = enum.auto()
    RELATIONSHIP = enum.auto()
    AT_LOCATION = enum.auto()

class Comparator(enum.Enum):
    GTE = ">="
    EQ = "=="
    IN = "in"
    NOT_IN = "not_in"

NUMERIC_KINDS = frozenset((RequirementKind.SKILL_LEVEL, RequirementKind.FACTION_LEVEL, RequirementKind.RELATIONSHIP))
NUMERIC_COMPARATORS = frozenset((Comparator.GTE, Comparator.EQ))
MEMBERSHIP_COMPARATORS = frozenset((Comparator.IN, Comparator.NOT_IN))

# the authored key naming the requirement's subject
SUBJECT_KEYS:Mapping[RequirementKind, str] = {
    RequirementKind.ITEM: "item",
    RequirementKind.SKILL_LEVEL: "skill",
    RequirementKind.FACTION_LEVEL: "faction",
    RequirementKind.FLAG: "flag",
    RequirementKind.LOCATION_VISITED: "location",
    RequirementKind.QUEST_COMPLETED: "quest",
    RequirementKind.RELATIONSHIP: "companion",
    RequirementKind.AT_LOCATION: "location",
}


class Requirement:
    def __init__(self, kind:RequirementKind, subject_id:str, comparator:Optional[Comparator]=None, value:Optional[int]=None) -> None:
        if comparator is None:
            comparator = Comparator.GTE if kind in NUMERIC_KINDS else Comparator.IN
        self.kind = kind
        self.subject_id = subject_id
        self.comparator = comparator
        self.value = value

    def __eq__(self, other:Any) -> bool:
        if not isinstance(other, Requirement):
            return NotImplemented
        return (self.kind, self.subject_id, self.comparator, self.value) == (other.kind, other.subject_id, other.comparator, other.value)

    def __hash__(self) -> int:
        return hash((self.kind, self.subject_id, self.comparator, self.value))

    def __repr__(self) -> str:
        if self.kind in NUMERIC_KINDS:
            return f'Requirement({self.kind.name} {self.subject_id} {self.comparator.value} {self.value})'
        return f'Requirement({self.kind.name} {self.comparator.value} {self.subject_id})'

    def to_dict(self) -> dict[str, Any]:
        d:dict[str, Any] = {
            "kind": self.kind.name.lower(),
            SUBJECT_KEYS[self.kind]: self.subject_id,
            "comparator": self.comparator.value,
        }
        if self.value is not None:
            d["value"] = self.value
        return d


def parse_comparator(name:str) -> Comparator:
    for c in Comparator:
        if name == c.value or name.upper() == c.name:
            return c
    raise ValueError(f'unknown comparator "{name}"')

def parse_requirement(data:Mapping[str, Any]) -> Requirement:
    """ Builds a requirement from its authored (toml) form.

    e.g. { kind = "skill_level", skill = "Technical", value = 2 }

    raises ValueError describing what's wrong with data """

    if not isinstance(data, Mapping):
        raise ValueError(f'requirement must be a table, got {data!r}')
    if "kind" not in data:
        raise ValueError(f'requirement {dict(data)} missing kind')
    kind = util.enum_by_name(RequirementKind, data["kind"])

    subject_key = SUBJECT_KEYS[kind]
    subject_id = data.get(subject_key)
    if not isinstance(subject_id, str) or not subject_id:
        raise ValueError(f'{kind.name.lower()} requirement needs a "{subject_key}" string')
    if kind == RequirementKind.FACTION_LEVEL and subject_id not in ledger.FACTION_IDS:
        raise ValueError(f'unknown faction "{subject_id}"')

    comparator:Optional[Comparator] = None
    if "comparator" in data:
        comparator = parse_comparator(data["comparator"])

    value:Optional[int] = None
    if kind in NUMERIC_KINDS:
        raw = data.get("value")
        if kind == RequirementKind.RELATIONSHIP and isinstance(raw, str):
            raw = ledger.relationship_threshold(raw)
        if not isinstance(raw, int) or isinstance(raw, bool):
            raise ValueError(f'{kind.name.lower()} requirement on {subject_id} needs an integer "value"')
        value = raw
        if comparator is not None and comparator not in NUMERIC_COMPARATORS:
            raise ValueError(f'comparator {comparator.value} not valid for {kind.name.lower()}')
    else:
        if "value" in data:
            # flag = false style authoring means the flag must be absent
            if data["value"] is False:
                if comparator is not None:
                    raise ValueError(f'both value = false and comparator given for {subject_id}')
                comparator = Comparator.NOT_IN
            elif data["value"] is not True:
                raise ValueError(f'{kind.name.lower()} requirement on {subject_id} takes no value')
        if comparator is not None and comparator not in MEMBERSHIP_COMPARATORS:
            raise ValueError(f'comparator {comparator.value} not valid for {kind.name.lower()}')

    return Requirement(kind, subject_id, comparator, value)

def from_dict(data:Mapping[str, Any]) -> Requirement:
    return parse_requirement(data)


# facts are what the world says about a requirement's subject: an int for
# numeric kinds or a bool for membership kinds

FactFn = Callable[[Requirement, ledger.LedgerSnapshot, collaborators.Collaborators], Union[int, bool]]

def _item_fact(req:Requirement, snapshot:ledger.LedgerSnapshot, readers:collaborators.Collaborators) -> bool:
    return readers.inventory.has_item(req.subject_id)

def _skill_fact(req:Requirement, snapshot:ledger.LedgerSnapshot, readers:collaborators.Collaborators) -> int:
    return readers.progression.get_skill_level(req.subject_id)

def _faction_fact(req:Requirement, snapshot:ledger.LedgerSnapshot, readers:collaborators.Collaborators) -> int:
    return snapshot.get_reputation(req.subject_id)

def _flag_fact(req:Requirement, snapshot:ledger.LedgerSnapshot, readers:collaborators.Collaborators) -> bool:
    return snapshot.has_flag(req.subject_id)

def _visited_fact(req:Requirement, snapshot:ledger.LedgerSnapshot, readers:collaborators.Collaborators) -> bool:
    return readers.locations.is_location_visited(req.subject_id)

def _quest_completed_fact(req:Requirement, snapshot:ledger.LedgerSnapshot, readers:collaborators.Collaborators) -> bool:
    return snapshot.get_quest_state(req.subject_id) == ledger.Lifecycle.COMPLETED

def _relationship_fact(req:Requirement, snapshot:ledger.LedgerSnapshot, readers:collaborators.Collaborators) -> int:
    return snapshot.get_relationship(req.subject_id)

def _at_location_fact(req:Requirement, snapshot:ledger.LedgerSnapshot, readers:collaborators.Collaborators) -> bool:
    return readers.locations.current_location() == req.subject_id

FACTS:Mapping[RequirementKind, FactFn] = {
    RequirementKind.ITEM: _item_fact,
    RequirementKind.SKILL_LEVEL: _skill_fact,
    RequirementKind.FACTION_LEVEL: _faction_fact,
    RequirementKind.FLAG: _flag_fact,
    RequirementKind.LOCATION_VISITED: _visited_fact,
    RequirementKind.QUEST_COMPLETED: _quest_completed_fact,
    RequirementKind.RELATIONSHIP: _relationship_fact,
    RequirementKind.AT_LOCATION: _at_location_fact,
}
assert set(FACTS) == set(RequirementKind), "every requirement kind needs a fact"
assert set(SUBJECT_KEYS) == set(RequirementKind), "every requirement kind needs a subject key"


def evaluate(requirement:Requirement, snapshot:ledger.LedgerSnapshot, readers:collaborators.Collaborators) -> bool:
    fact = FACTS[requirement.kind](requirement, snapshot, readers)
    comparator = requirement.comparator
    if comparator == Comparator.GTE:
        assert requirement.value is not None
        return fact >= requirement.value
    elif comparator == Comparator.EQ:
        return fact == requirement.value
    elif comparator == Comparator.IN:
        return bool(fact)
    elif comparator == Comparator.NOT_IN:
        return not fact
    else:
        raise ValueError(f'unknown comparator {comparator}')

def all_met(requirements:Iterable[Requirement], snapshot:ledger.LedgerSnapshot, readers:collaborators.Collaborators) -> bool:
    return all(evaluate(r, snapshot, readers) for r in requirements)

def unmet(requirements:Iterable[Requirement], snapshot:ledger.LedgerSnapshot, readers:collaborators.Collaborators) -> list[Requirement]:
    return [r for r in requirements if not evaluate(r, snapshot, readers)]

def describe(requirement:Requirement) -> str:
    """ player facing reason a requirement gates something """
    kind = requirement.kind
    s = requirement.subject_id
    negated = requirement.comparator == Comparator.NOT_IN
    exact = "exactly " if requirement.comparator == Comparator.EQ else ""

    if kind == RequirementKind.ITEM:
        return f'must not carry {s}' if negated else f'requires {s}'
    elif kind == RequirementKind.SKILL_LEVEL:
        return f'requires {s} skill {exact}{requirement.value}'
    elif kind == RequirementKind.FACTION_LEVEL:
        assert requirement.value is not None
        return f'requires {s} reputation {exact}{requirement.value} ({ledger.reputation_title(requirement.value)})'
    elif kind == RequirementKind.FLAG:
        return f'only if not {s}' if negated else f'only if {s}'
    elif kind == RequirementKind.LOCATION_VISITED:
        return f'only if {s} not yet visited' if negated else f'requires having visited {s}'
    elif kind == RequirementKind.QUEST_COMPLETED:
        return f'only before completing {s}' if negated else f'requires completing {s}'
    elif kind == RequirementKind.RELATIONSHIP:
        assert requirement.value is not None
        return f'requires {s} relationship {exact}{requirement.value} ({ledger.relationship_level(requirement.value)})'
    elif kind == RequirementKind.AT_LOCATION:
        return f'must not be at {s}' if negated else f'must be at {s}'
    else:
        raise ValueError(f'unknown requirement kind {kind}')

def describe_all(requirements:Sequence[Requirement]) -> list[str]:
    return [describe(r) for r in requirements]
