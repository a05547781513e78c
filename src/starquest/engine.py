""" Narrative engine facade

Composes the ledger, dispatcher, walker and event log into the one object
the host game (UI, save system, encounter subsystems) talks to. Nothing
here raises NarrativeError at the host for ordinary play: illegal requests
come back as rejected Resolutions carrying a diagnostic.
"""

import time
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Optional, Union

from starquest import config, util
from starquest.core import ledger, collaborators
from starquest.narrative import graph as g
from starquest.narrative import outcomes as outs
from starquest.narrative import event_log as elog
from starquest.narrative import walker as w
from starquest.narrative.errors import IllegalChoiceError, SaveGameError

class NarrativeEngine:
    def __init__(
            self,
            graphs:Optional[Union[Mapping[str, g.Graph], Iterable[g.Graph]]]=None,
            collabs:Optional[collaborators.Collaborators]=None,
            clock:Callable[[], float]=time.time) -> None:
        self.logger = logging.getLogger(util.fullname(self))
        self.ledger = ledger.WorldLedger()
        self.event_log = elog.EventLog()
        self.dispatcher = outs.OutcomeDispatcher(self.ledger, collabs, self.event_log, clock)
        self.walker = w.GraphWalker(self.ledger, self.dispatcher)
        self.diagnostics:list[str] = []

        if graphs is None:
            graphs = g.load_content()
        if isinstance(graphs, Mapping):
            graphs = graphs.values()
        self.walker.register_all(graphs)

    @property
    def collaborators(self) -> collaborators.Collaborators:
        return self.dispatcher.collaborators

    @property
    def graphs(self) -> Mapping[str, g.Graph]:
        return self.walker.graphs

    @property
    def ending(self) -> Optional[tuple[str, bool]]:
        return self.walker.ending

    def lifecycle(self, graph_id:str) -> ledger.Lifecycle:
        return self.walker.lifecycle(graph_id)

    def register(self, graphs:Iterable[g.Graph]) -> None:
        """ adds more graphs, raises ContentError and adds none if any is bad """
        self.walker.register_all(graphs)

    def _diagnose(self, resolution:w.Resolution) -> w.Resolution:
        self.diagnostics.extend(resolution.diagnostics)
        return resolution

    def new_game(self, start_main:bool=True) -> Optional[w.Resolution]:
        """ resets all narrative state and optionally starts the main quest """
        self.logger.info("starting new game")
        self.ledger.reset()
        self.event_log.clear()
        self.walker.reset()
        self.diagnostics.clear()

        self.dispatcher.begin(elog.EntryKind.NEW_GAME)
        self.walker.refresh_availability()
        self.dispatcher.commit()

        main_quest = config.Settings.content.MAIN_QUEST
        if start_main and main_quest in self.walker.instances:
            return self.start(main_quest)
        return None

    def start(self, graph_id:str) -> w.Resolution:
        try:
            return self._diagnose(self.walker.start(graph_id))
        except IllegalChoiceError as e:
            self.logger.warning(f'rejected start of {graph_id}: {e}')
            return self._diagnose(w.Resolution.rejected(graph_id, None, str(e)))
        except Exception as e:
            self.logger.exception(f'error during start of {graph_id}')
            return self._diagnose(w.Resolution.rejected(graph_id, None, f'internal error: {e}'))

    def resolve_choice(self, graph_id:str, choice_id:str) -> w.Resolution:
        try:
            return self._diagnose(self.walker.resolve(graph_id, choice_id))
        except IllegalChoiceError as e:
            self.logger.warning(f'rejected {graph_id}/{choice_id}: {e}')
            return self._diagnose(w.Resolution.rejected(graph_id, choice_id, str(e)))
        except Exception as e:
            self.logger.exception(f'error during {graph_id}/{choice_id}')
            return self._diagnose(w.Resolution.rejected(graph_id, choice_id, f'internal error: {e}'))

    def abandon(self, graph_id:str) -> w.Resolution:
        try:
            return self._diagnose(self.walker.abandon(graph_id))
        except IllegalChoiceError as e:
            self.logger.warning(f'rejected abandon of {graph_id}: {e}')
            return self._diagnose(w.Resolution.rejected(graph_id, None, str(e)))
        except Exception as e:
            self.logger.exception(f'error during abandon of {graph_id}')
            return self._diagnose(w.Resolution.rejected(graph_id, None, f'internal error: {e}'))

    def apply_external(self, outcomes:Iterable[Union[outs.Outcome, Mapping[str, Any]]], source:str) -> Optional[elog.EventLogEntry]:
        """ Applies outcomes reported by a subsystem outside the engine.

        This is how combat and puzzle results come back, e.g. a won fight
        reporting { kind = "give_item", item = "pirate_bounty" }. Returns the
        log entry, or None if the outcomes were rejected. """

        if self.walker.ending is not None:
            message = f'ignoring outcomes from {source}, the story has ended'
            self.logger.warning(message)
            self.diagnostics.append(message)
            return None

        parsed:list[outs.Outcome] = []
        for i, o in enumerate(outcomes):
            if isinstance(o, outs.Outcome):
                parsed.append(o)
                continue
            try:
                parsed.append(outs.parse_outcome(o, f'{source}:{i}'))
            except ValueError as e:
                message = f'rejected outcomes from {source}: {e}'
                self.logger.warning(message)
                self.diagnostics.append(message)
                return None

        self.dispatcher.begin(elog.EntryKind.EXTERNAL, source=source)
        try:
            self.dispatcher.apply_outcomes(parsed)
        except Exception:
            self.dispatcher.settle()
            raise
        self.diagnostics.extend(self.dispatcher.diagnostics)
        return self.dispatcher.commit()

    def refresh(self) -> list[str]:
        """ re-checks graph availability, returns graphs that became available """
        before = set(self.walker.graphs_by_state(ledger.Lifecycle.AVAILABLE))
        self.dispatcher.begin(elog.EntryKind.REFRESH)
        try:
            self.walker.refresh_availability()
        except Exception:
            self.dispatcher.settle()
            raise
        if self.dispatcher.pending_changes:
            self.dispatcher.commit()
        else:
            self.dispatcher.discard()
        return [x for x in self.walker.graphs_by_state(ledger.Lifecycle.AVAILABLE) if x not in before]

    def get_presentable_node(self, graph_id:Optional[str]=None) -> Optional[w.PresentableNode]:
        """ the active node of graph_id (default the current quest) for the UI """
        if graph_id is None:
            graph_id = self.walker.current_graph_id()
            if graph_id is None:
                return None
        if graph_id not in self.walker.instances:
            return None
        return self.walker.presentable(graph_id)

    def available_graphs(self) -> list[str]:
        return self.walker.graphs_by_state(ledger.Lifecycle.AVAILABLE)

    def in_progress_graphs(self) -> list[str]:
        return self.walker.graphs_by_state(ledger.Lifecycle.IN_PROGRESS)

    def history(self, since:Optional[float]=None, after_id:Optional[int]=None) -> list[elog.EventLogEntry]:
        return self.event_log.query(since, after_id)

    # save/load

    def serialize(self) -> dict[str, Any]:
        return {
            "ledger": self.ledger.to_dict(),
            "graph_lifecycle_states": {k: v.lifecycle.value for k,v in self.walker.instances.items()},
            "active_node_ids": self.walker.active_node_ids(),
            "unlocked_graphs": self.walker.unlocked_graph_ids(),
            "event_log": self.event_log.to_list(),
            "ending": list(self.walker.ending) if self.walker.ending else None,
        }

    def restore(self, blob:Mapping[str, Any]) -> None:
        """ replaces all narrative state with blob

        raises SaveGameError, leaving current state untouched, if blob is
        malformed or doesn't fit the registered graphs """

        try:
            new_ledger = ledger.WorldLedger.from_dict(blob["ledger"])
            states = {str(k): ledger.Lifecycle(v) for k,v in blob["graph_lifecycle_states"].items()}
            active_node_ids = {str(k): str(v) for k,v in blob["active_node_ids"].items()}
            unlocked = [str(x) for x in blob.get("unlocked_graphs", [])]
            new_log = elog.EventLog.from_list(blob["event_log"])
            ending:Optional[tuple[str, bool]] = None
            if blob.get("ending"):
                ending = (str(blob["ending"][0]), bool(blob["ending"][1]))
        except (KeyError, ValueError, TypeError, IndexError, AttributeError) as e:
            raise SaveGameError(f'malformed save data: {e!r}') from e

        self._check_restore(new_ledger, states, active_node_ids, unlocked)

        self.ledger.restore(new_ledger)
        self.event_log.clear()
        for entry in new_log:
            self.event_log.append(entry)
        self.walker.restore(active_node_ids, unlocked)
        self.walker.ending = ending
        self.diagnostics.clear()
        self.logger.info(f'restored narrative state with {len(self.event_log)} log entries')

    def _check_restore(self, new_ledger:ledger.WorldLedger, states:Mapping[str, ledger.Lifecycle], active_node_ids:Mapping[str, str], unlocked:Iterable[str]) -> None:
        instances = self.walker.instances
        for graph_id in new_ledger.quest_state:
            if graph_id not in states:
                raise SaveGameError(f'ledger has a lifecycle for {graph_id} but the save does not')
        for graph_id, state in states.items():
            if graph_id not in instances:
                raise SaveGameError(f'save refers to unknown graph {graph_id}')
            if new_ledger.get_quest_state(graph_id) != state:
                raise SaveGameError(f'lifecycle of {graph_id} disagrees with the ledger')
            if state == ledger.Lifecycle.IN_PROGRESS and graph_id not in active_node_ids:
                raise SaveGameError(f'{graph_id} is in progress without an active node')
        for graph_id, node_id in active_node_ids.items():
            if graph_id not in instances:
                raise SaveGameError(f'save refers to unknown graph {graph_id}')
            if states.get(graph_id) != ledger.Lifecycle.IN_PROGRESS:
                raise SaveGameError(f'{graph_id} has an active node but is not in progress')
            if node_id not in instances[graph_id].graph.nodes:
                raise SaveGameError(f'unknown node {node_id} in {graph_id}')
        for graph_id in unlocked:
            if graph_id not in instances:
                raise SaveGameError(f'save unlocks unknown graph {graph_id}')

    # replay

    def replay(self) -> ledger.WorldLedger:
        return outs.replay(self.event_log)

    def verify_replay(self) -> bool:
        """ True if replaying the event log reproduces the live ledger """
        replayed = self.replay()
        if replayed != self.ledger:
            self.logger.warning(f'replay mismatch: {replayed} != {self.ledger}')
            return False
        return True
