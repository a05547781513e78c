""" Outcomes and the dispatcher that applies them

Outcomes are authored effects of taking a choice (or entering a node,
completing or failing a graph). The dispatcher is the only thing that
writes the ledger. It applies outcomes strictly in authored order, each
independently, and brackets every resolution in exactly one event log
entry.
"""

import abc
import enum
import time
import logging
import collections
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, Optional

from starquest import config, util
from starquest.core import ledger, collaborators
from . import event_log as elog

class OutcomeKind(enum.Enum):
    GRANT_EXPERIENCE = enum.auto()
    REPUTATION_DELTA = enum.auto()
    SET_FLAG = enum.auto()
    CLEAR_FLAG = enum.auto()
    GIVE_ITEM = enum.auto()
    REMOVE_ITEM = enum.auto()
    UNLOCK_LOCATION = enum.auto()
    UNLOCK_QUEST = enum.auto()
    UNLOCK_COMPANION = enum.auto()
    RELATIONSHIP_DELTA = enum.auto()
    START_COMBAT = enum.auto()
    START_PUZZLE = enum.auto()
    TRIGGER_ENDING = enum.auto()

# authored key for the target, authored key for the amount and the amount's
# default (None means the amount is required)
OUTCOME_FIELDS:Mapping[OutcomeKind, tuple[Optional[str], Optional[str], Optional[int]]] = {
    OutcomeKind.GRANT_EXPERIENCE: (None, "amount", None),
    OutcomeKind.REPUTATION_DELTA: ("faction", "amount", None),
    OutcomeKind.SET_FLAG: ("flag", None, None),
    OutcomeKind.CLEAR_FLAG: ("flag", None, None),
    OutcomeKind.GIVE_ITEM: ("item", "quantity", 1),
    OutcomeKind.REMOVE_ITEM: ("item", "quantity", 1),
    OutcomeKind.UNLOCK_LOCATION: ("location", None, None),
    OutcomeKind.UNLOCK_QUEST: ("quest", None, None),
    OutcomeKind.UNLOCK_COMPANION: ("companion", None, None),
    OutcomeKind.RELATIONSHIP_DELTA: ("companion", "amount", None),
    OutcomeKind.START_COMBAT: ("encounter", None, None),
    OutcomeKind.START_PUZZLE: ("encounter", None, None),
    OutcomeKind.TRIGGER_ENDING: ("ending", None, None),
}


class Outcome:
    def __init__(self, kind:OutcomeKind, target:Optional[str]=None, amount:int=0, fail:bool=False, outcome_id:str="") -> None:
        self.kind = kind
        self.target = target
        self.amount = amount
        self.fail = fail
        self.outcome_id = outcome_id

    def __eq__(self, other:Any) -> bool:
        if not isinstance(other, Outcome):
            return NotImplemented
        return (self.kind, self.target, self.amount, self.fail) == (other.kind, other.target, other.amount, other.fail)

    def __hash__(self) -> int:
        return hash((self.kind, self.target, self.amount, self.fail))

    def __repr__(self) -> str:
        return f'Outcome({self.outcome_id} {self.kind.name} {self.target} {self.amount})'

    def to_dict(self) -> dict[str, Any]:
        target_key, amount_key, _ = OUTCOME_FIELDS[self.kind]
        d:dict[str, Any] = {"kind": self.kind.name.lower()}
        if target_key:
            d[target_key] = self.target
        if amount_key:
            d[amount_key] = self.amount
        if self.kind == OutcomeKind.TRIGGER_ENDING:
            d["fail"] = self.fail
        if self.outcome_id:
            d["id"] = self.outcome_id
        return d


def parse_outcome(data:Mapping[str, Any], outcome_id:Optional[str]=None) -> Outcome:
    """ Builds an outcome from its authored (toml) form.

    e.g. { kind = "reputation_delta", faction = "Alliance", amount = -5 }

    raises ValueError describing what's wrong with data """

    if not isinstance(data, Mapping):
        raise ValueError(f'outcome must be a table, got {data!r}')
    if "kind" not in data:
        raise ValueError(f'outcome {dict(data)} missing kind')
    kind = util.enum_by_name(OutcomeKind, data["kind"])
    target_key, amount_key, amount_default = OUTCOME_FIELDS[kind]

    allowed = {"kind", "id"}
    target:Optional[str] = None
    if target_key:
        allowed.add(target_key)
        target = data.get(target_key)
        if not isinstance(target, str) or not target:
            raise ValueError(f'{kind.name.lower()} outcome needs a "{target_key}" string')
    if kind == OutcomeKind.REPUTATION_DELTA and target not in ledger.FACTION_IDS:
        raise ValueError(f'unknown faction "{target}"')

    amount = 0
    if amount_key:
        allowed.add(amount_key)
        raw = data.get(amount_key, amount_default)
        if not isinstance(raw, int) or isinstance(raw, bool):
            raise ValueError(f'{kind.name.lower()} outcome needs an integer "{amount_key}"')
        amount = raw
        if kind in (OutcomeKind.GIVE_ITEM, OutcomeKind.REMOVE_ITEM, OutcomeKind.GRANT_EXPERIENCE) and amount <= 0:
            raise ValueError(f'{kind.name.lower()} outcome needs a positive "{amount_key}"')

    fail = False
    if kind == OutcomeKind.TRIGGER_ENDING:
        allowed.add("fail")
        fail = data.get("fail", False)
        if not isinstance(fail, bool):
            raise ValueError('trigger_ending "fail" must be true or false')

    if kind in (OutcomeKind.SET_FLAG, OutcomeKind.CLEAR_FLAG):
        # tolerate the { flag = "x", value = true } authoring style
        allowed.add("value")
        if data.get("value", True) is not True:
            raise ValueError(f'{kind.name.lower()} takes no value other than true, use clear_flag to remove a flag')

    extra = set(data.keys()) - allowed
    if extra:
        raise ValueError(f'{kind.name.lower()} outcome has unexpected keys {sorted(extra)}')

    return Outcome(kind, target, amount, fail, outcome_id if outcome_id is not None else data.get("id", ""))

def from_dict(data:Mapping[str, Any]) -> Outcome:
    return parse_outcome(data)


class AbstractGraphHooks(abc.ABC):
    """ What the dispatcher needs from the graph store """

    @abc.abstractmethod
    def unlock_graph(self, graph_id:str) -> None: ...
    @abc.abstractmethod
    def refresh_availability(self) -> None: ...
    @abc.abstractmethod
    def ending_triggered(self, ending_id:str, failed:bool) -> None: ...


class PendingEntry:
    """ accumulates one resolution until it's committed to the log """

    def __init__(self, kind:elog.EntryKind, graph_id:Optional[str], node_id:Optional[str], choice_id:Optional[str], source:Optional[str]) -> None:
        self.kind = kind
        self.graph_id = graph_id
        self.node_id = node_id
        self.choice_id = choice_id
        self.source = source
        self.outcomes:list[dict[str, Any]] = []
        self.transitions:list[tuple[str, ledger.Lifecycle]] = []
        self.diagnostics:list[str] = []


class OutcomeDispatcher:
    def __init__(
            self,
            world:ledger.WorldLedger,
            collabs:Optional[collaborators.Collaborators]=None,
            event_log:Optional[elog.EventLog]=None,
            clock:Callable[[], float]=time.time,
            graph_hooks:Optional[AbstractGraphHooks]=None,
            replaying:bool=False) -> None:
        self.logger = logging.getLogger(util.fullname(self))
        self.ledger = world
        self.collaborators = collabs or collaborators.Collaborators()
        self.event_log = event_log if event_log is not None else elog.EventLog()
        self.clock = clock
        self.graph_hooks = graph_hooks
        # replaying only rebuilds the ledger, collaborators are not touched
        self.replaying = replaying

        self.coupling:dict[str, list[tuple[str, int]]] = collections.defaultdict(list)
        for pair in config.Settings.reputation.COUPLING:
            self.coupling[pair["a"]].append((pair["b"], pair["divisor"]))
            self.coupling[pair["b"]].append((pair["a"], pair["divisor"]))

        self._pending:Optional[PendingEntry] = None

        self._handlers:Mapping[OutcomeKind, Callable[[Outcome], None]] = {
            OutcomeKind.GRANT_EXPERIENCE: self._grant_experience,
            OutcomeKind.REPUTATION_DELTA: self._reputation_delta,
            OutcomeKind.SET_FLAG: self._set_flag,
            OutcomeKind.CLEAR_FLAG: self._clear_flag,
            OutcomeKind.GIVE_ITEM: self._give_item,
            OutcomeKind.REMOVE_ITEM: self._remove_item,
            OutcomeKind.UNLOCK_LOCATION: self._unlock_location,
            OutcomeKind.UNLOCK_QUEST: self._unlock_quest,
            OutcomeKind.UNLOCK_COMPANION: self._unlock_companion,
            OutcomeKind.RELATIONSHIP_DELTA: self._relationship_delta,
            OutcomeKind.START_COMBAT: self._start_combat,
            OutcomeKind.START_PUZZLE: self._start_puzzle,
            OutcomeKind.TRIGGER_ENDING: self._trigger_ending,
        }
        assert set(self._handlers) == set(OutcomeKind), "every outcome kind needs a handler"

    @property
    def in_entry(self) -> bool:
        return self._pending is not None

    @property
    def diagnostics(self) -> Sequence[str]:
        if self._pending is None:
            return ()
        return self._pending.diagnostics

    def begin(self, kind:elog.EntryKind, graph_id:Optional[str]=None, node_id:Optional[str]=None, choice_id:Optional[str]=None, source:Optional[str]=None) -> None:
        if self._pending is not None:
            raise ValueError(f'already resolving {self._pending.kind} for {self._pending.graph_id}')
        self._pending = PendingEntry(kind, graph_id, node_id, choice_id, source)

    def commit(self) -> elog.EventLogEntry:
        if self._pending is None:
            raise ValueError("no resolution in progress")
        pending = self._pending
        self._pending = None
        # keep the log ordered even if the wall clock steps backward
        timestamp = max(self.clock(), self.event_log.last_timestamp)
        entry = elog.EventLogEntry(
            self.event_log.next_id(),
            pending.kind,
            timestamp,
            graph_id=pending.graph_id,
            node_id=pending.node_id,
            choice_id=pending.choice_id,
            outcomes=pending.outcomes,
            transitions=pending.transitions,
            source=pending.source,
        )
        self.event_log.append(entry)
        return entry

    def discard(self) -> None:
        """ drops the current resolution, only if it changed nothing """
        if self._pending is None:
            raise ValueError("no resolution in progress")
        if self._pending.outcomes or self._pending.transitions:
            raise ValueError("cannot discard a resolution that changed state")
        self._pending = None

    @property
    def pending_changes(self) -> bool:
        return self._pending is not None and bool(self._pending.outcomes or self._pending.transitions)

    def report(self, message:str) -> None:
        self.logger.warning(message)
        if self._pending is not None:
            self._pending.diagnostics.append(message)

    def apply_outcomes(self, outcomes:Iterable[Outcome]) -> None:
        """ applies outcomes in order inside the current resolution

        A handler that raises (usually a host collaborator) is reported and
        the remaining outcomes still apply. The outcome stays in the entry,
        replay only re-applies its ledger part. """
        if self._pending is None:
            raise ValueError("apply_outcomes outside of a resolution")
        for outcome in outcomes:
            self._pending.outcomes.append(outcome.to_dict())
            try:
                self._handlers[outcome.kind](outcome)
                if self.graph_hooks is not None:
                    self.graph_hooks.refresh_availability()
            except Exception as e:
                self.logger.exception(f'error applying {outcome}')
                self.report(f'{outcome.kind.name.lower()} {outcome.target or ""} ({outcome.outcome_id}) failed: {e}, continuing')

    def apply(self, outcomes:Iterable[Outcome], kind:elog.EntryKind=elog.EntryKind.EXTERNAL, graph_id:Optional[str]=None, node_id:Optional[str]=None, choice_id:Optional[str]=None, source:Optional[str]=None) -> elog.EventLogEntry:
        """ applies outcomes as one complete resolution and logs it """
        self.begin(kind, graph_id, node_id, choice_id, source)
        try:
            self.apply_outcomes(outcomes)
        except Exception:
            self.settle()
            raise
        return self.commit()

    def settle(self) -> Optional[elog.EventLogEntry]:
        """ closes a resolution that was interrupted

        Whatever it already changed is committed so the log still accounts
        for the ledger, otherwise it's discarded. Either way the dispatcher
        can begin again. """
        if self._pending is None:
            return None
        if self.pending_changes:
            return self.commit()
        self._pending = None
        return None

    def transition(self, graph_id:str, state:ledger.Lifecycle) -> None:
        """ records a graph lifecycle change in the ledger """
        self.ledger.set_quest_state(graph_id, state)
        if self._pending is not None:
            self._pending.transitions.append((graph_id, state))
        self.logger.debug(f'{graph_id} -> {state.value}')

    def replay_entry(self, entry:elog.EventLogEntry) -> None:
        for data in entry.outcomes:
            outcome = parse_outcome(data)
            self._handlers[outcome.kind](outcome)
        for graph_id, state in entry.transitions:
            self.ledger.set_quest_state(graph_id, state)

    # handlers, one per outcome kind

    def _grant_experience(self, outcome:Outcome) -> None:
        if not self.replaying:
            self.collaborators.progression.grant_experience(outcome.amount)

    def _reputation_delta(self, outcome:Outcome) -> None:
        assert outcome.target is not None
        self._shift_reputation(outcome.target, outcome.amount)
        # coupling only follows the primary delta, never an induced one
        for opposed, divisor in self.coupling.get(outcome.target, ()):
            induced = util.trunc_div(-outcome.amount, divisor)
            if induced != 0:
                self._shift_reputation(opposed, induced)

    def _shift_reputation(self, faction_id:str, delta:int) -> None:
        old = self.ledger.get_reputation(faction_id)
        new = self.ledger.set_reputation(faction_id, old + delta)
        self.logger.debug(f'reputation {faction_id} {old} -> {new} ({delta:+})')

    def _set_flag(self, outcome:Outcome) -> None:
        assert outcome.target is not None
        self.ledger.set_flag(outcome.target)

    def _clear_flag(self, outcome:Outcome) -> None:
        assert outcome.target is not None
        self.ledger.clear_flag(outcome.target)

    def _give_item(self, outcome:Outcome) -> None:
        assert outcome.target is not None
        if not self.replaying:
            self.collaborators.inventory.give_item(outcome.target, outcome.amount)

    def _remove_item(self, outcome:Outcome) -> None:
        assert outcome.target is not None
        if self.replaying:
            return
        if not self.collaborators.inventory.remove_item(outcome.target, outcome.amount):
            self.report(f'could not remove {outcome.amount} {outcome.target} ({outcome.outcome_id}), continuing')

    def _unlock_location(self, outcome:Outcome) -> None:
        assert outcome.target is not None
        if not self.replaying:
            self.collaborators.locations.unlock_location(outcome.target)

    def _unlock_quest(self, outcome:Outcome) -> None:
        assert outcome.target is not None
        if self.graph_hooks is not None:
            self.graph_hooks.unlock_graph(outcome.target)

    def _unlock_companion(self, outcome:Outcome) -> None:
        assert outcome.target is not None
        if not self.ledger.knows_companion(outcome.target):
            self.ledger.set_relationship(outcome.target, config.Settings.relationship.INITIAL)
        if not self.replaying:
            self.collaborators.companions.unlock_companion(outcome.target, self.ledger.get_relationship(outcome.target))

    def _relationship_delta(self, outcome:Outcome) -> None:
        assert outcome.target is not None
        old = self.ledger.get_relationship(outcome.target)
        new = self.ledger.set_relationship(outcome.target, old + outcome.amount)
        self.logger.debug(f'relationship {outcome.target} {old} -> {new} ({outcome.amount:+})')
        if not self.replaying:
            self.collaborators.companions.adjust_relationship(outcome.target, new - old)

    def _start_combat(self, outcome:Outcome) -> None:
        assert outcome.target is not None
        if not self.replaying:
            self.collaborators.encounters.start_combat(outcome.target)

    def _start_puzzle(self, outcome:Outcome) -> None:
        assert outcome.target is not None
        if not self.replaying:
            self.collaborators.encounters.start_puzzle(outcome.target)

    def _trigger_ending(self, outcome:Outcome) -> None:
        assert outcome.target is not None
        self.logger.info(f'ending {outcome.target} triggered (failed={outcome.fail})')
        if self.replaying:
            return
        if self.graph_hooks is not None:
            self.graph_hooks.ending_triggered(outcome.target, outcome.fail)
        self.collaborators.presentation.trigger_ending(outcome.target, outcome.fail)


def replay(entries:Iterable[elog.EventLogEntry]) -> ledger.WorldLedger:
    """ Rebuilds a ledger by re-applying logged entries to an empty one. """
    world = ledger.WorldLedger()
    dispatcher = OutcomeDispatcher(world, replaying=True)
    for entry in entries:
        dispatcher.replay_entry(entry)
    return world
