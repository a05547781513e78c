""" Graph store and walker

Owns the registered graphs and, per graph, the single mutable runtime
instance: its lifecycle, its active node and whether an unlock outcome has
named it. Every lifecycle change and every outcome goes through the
OutcomeDispatcher so the ledger and event log stay the single record of
what happened.

    UNAVAILABLE -> AVAILABLE -> IN_PROGRESS -> COMPLETED
                                            -> FAILED
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Optional

from starquest import util
from starquest.core import ledger, collaborators
from . import requirements as reqs
from . import outcomes as outs
from . import event_log as elog
from . import graph as g
from .errors import IllegalChoiceError

class GraphInstance:
    def __init__(self, graph:g.Graph) -> None:
        self.graph = graph
        self.lifecycle = ledger.Lifecycle.UNAVAILABLE
        self.active_node_id:Optional[str] = None
        self.unlocked = False

    def __repr__(self) -> str:
        return f'GraphInstance({self.graph.graph_id} {self.lifecycle.value} at {self.active_node_id})'

    @property
    def active_node(self) -> Optional[g.Node]:
        if self.active_node_id is None:
            return None
        return self.graph.nodes[self.active_node_id]


class PresentableChoice:
    def __init__(self, choice_id:str, text:str, reasons:Sequence[str]=()) -> None:
        self.choice_id = choice_id
        self.text = text
        self.reasons = list(reasons)

    @property
    def legal(self) -> bool:
        return not self.reasons

    def __repr__(self) -> str:
        return f'PresentableChoice({self.choice_id} legal={self.legal})'

class PresentableNode:
    """ What the UI needs to show the active node of a graph.

    The engine decides legality, the UI only renders. """

    def __init__(self, graph_id:str, node_id:str, title:Optional[str], text:str, speaker:Optional[str], legal_choices:Sequence[PresentableChoice], illegal_choices:Sequence[PresentableChoice]) -> None:
        self.graph_id = graph_id
        self.node_id = node_id
        self.title = title
        self.text = text
        self.speaker = speaker
        self.legal_choices = list(legal_choices)
        self.illegal_choices = list(illegal_choices)

    def __repr__(self) -> str:
        return f'PresentableNode({self.graph_id}/{self.node_id} legal={[c.choice_id for c in self.legal_choices]})'


class Resolution:
    """ the result of a start, choice or abandon request """

    def __init__(self, accepted:bool, graph_id:str, choice_id:Optional[str]=None, entry:Optional[elog.EventLogEntry]=None, active_graph_id:Optional[str]=None, active_node_id:Optional[str]=None, diagnostics:Sequence[str]=(), ended:Optional[tuple[str, bool]]=None) -> None:
        self.accepted = accepted
        self.graph_id = graph_id
        self.choice_id = choice_id
        self.entry = entry
        self.active_graph_id = active_graph_id
        self.active_node_id = active_node_id
        self.diagnostics = list(diagnostics)
        self.ended = ended

    def __repr__(self) -> str:
        return f'Resolution({"accepted" if self.accepted else "rejected"} {self.graph_id}/{self.choice_id} -> {self.active_graph_id}/{self.active_node_id})'

    @classmethod
    def rejected(cls, graph_id:str, choice_id:Optional[str], reason:str) -> "Resolution":
        return cls(False, graph_id, choice_id, diagnostics=[reason])


class GraphWalker(outs.AbstractGraphHooks):
    def __init__(self, world:ledger.WorldLedger, dispatcher:outs.OutcomeDispatcher) -> None:
        self.logger = logging.getLogger(util.fullname(self))
        self.ledger = world
        self.dispatcher = dispatcher
        dispatcher.graph_hooks = self
        self.instances:dict[str, GraphInstance] = {}
        self.ending:Optional[tuple[str, bool]] = None

    @property
    def collaborators(self) -> collaborators.Collaborators:
        return self.dispatcher.collaborators

    @property
    def graphs(self) -> Mapping[str, g.Graph]:
        return {k: v.graph for k,v in self.instances.items()}

    def instance(self, graph_id:str) -> GraphInstance:
        if graph_id not in self.instances:
            raise IllegalChoiceError(f'unknown graph {graph_id}')
        return self.instances[graph_id]

    def lifecycle(self, graph_id:str) -> ledger.Lifecycle:
        return self.instance(graph_id).lifecycle

    # registration

    def register_all(self, graphs:Iterable[g.Graph]) -> None:
        """ validates and registers graphs, all or nothing

        raises ContentError if any graph fails validation, in which case no
        graph is registered. """
        validated = g.validate_all(list(graphs), self.instances.keys())
        for graph_id, graph in validated.items():
            self.instances[graph_id] = GraphInstance(graph)
        self.logger.info(f'registered {len(validated)} graphs')

    def reset(self) -> None:
        for instance in self.instances.values():
            instance.lifecycle = ledger.Lifecycle.UNAVAILABLE
            instance.active_node_id = None
            instance.unlocked = False
        self.ending = None

    # hooks the dispatcher calls back into

    def unlock_graph(self, graph_id:str) -> None:
        if graph_id not in self.instances:
            self.dispatcher.report(f'cannot unlock unknown graph {graph_id}')
            return
        self.instances[graph_id].unlocked = True
        self.logger.debug(f'unlocked {graph_id}')

    def refresh_availability(self) -> None:
        snapshot = self.ledger.snapshot()
        for instance in self.instances.values():
            if instance.lifecycle != ledger.Lifecycle.UNAVAILABLE:
                continue
            if instance.graph.locked and not instance.unlocked:
                continue
            if reqs.all_met(instance.graph.unlock_requirements, snapshot, self.collaborators):
                self._transition(instance, ledger.Lifecycle.AVAILABLE)
                self.logger.info(f'{instance.graph.graph_id} is now available')

    def ending_triggered(self, ending_id:str, failed:bool) -> None:
        self.ending = (ending_id, failed)

    # queries

    def graphs_by_state(self, state:ledger.Lifecycle) -> list[str]:
        return [k for k,v in self.instances.items() if v.lifecycle == state]

    def main_quest_line(self) -> list[tuple[str, ledger.Lifecycle]]:
        return [(k, v.lifecycle) for k,v in self.instances.items() if v.graph.main]

    def active_branches(self) -> list[str]:
        """ branch tags of graphs the player is currently playing """
        return sorted(set(v.graph.branch_tag for v in self.instances.values() if v.lifecycle == ledger.Lifecycle.IN_PROGRESS))

    def current_graph_id(self) -> Optional[str]:
        """ the in progress main quest, or any in progress quest """
        in_progress = [v for v in self.instances.values() if v.lifecycle == ledger.Lifecycle.IN_PROGRESS and v.graph.kind == g.GraphKind.QUEST]
        for instance in in_progress:
            if instance.graph.main:
                return instance.graph.graph_id
        if in_progress:
            return in_progress[0].graph.graph_id
        return None

    def can_start(self, graph_id:str) -> bool:
        instance = self.instances.get(graph_id)
        if instance is None or self.ending is not None:
            return False
        if instance.lifecycle == ledger.Lifecycle.AVAILABLE:
            return True
        return instance.lifecycle == ledger.Lifecycle.COMPLETED and instance.graph.repeatable

    def presentable(self, graph_id:str) -> Optional[PresentableNode]:
        instance = self.instance(graph_id)
        node = instance.active_node
        if node is None:
            return None
        snapshot = self.ledger.snapshot()
        legal = []
        illegal = []
        if self.ending is not None:
            # nothing can be taken once the story has ended
            reason = f'the story has ended ({self.ending[0]})'
            illegal = [PresentableChoice(c.choice_id, c.text, [reason]) for c in node.choices]
            return PresentableNode(graph_id, node.node_id, node.title, node.text, node.speaker, legal, illegal)
        for choice in node.choices:
            unmet = reqs.unmet(node.requirements_for(choice), snapshot, self.collaborators)
            if unmet:
                illegal.append(PresentableChoice(choice.choice_id, choice.text, reqs.describe_all(unmet)))
            else:
                legal.append(PresentableChoice(choice.choice_id, choice.text))
        return PresentableNode(graph_id, node.node_id, node.title, node.text, node.speaker, legal, illegal)

    # operations

    def start(self, graph_id:str) -> Resolution:
        """ starts an available graph at its start node

        raises IllegalChoiceError, before changing anything, if the graph
        can't be started """
        self._check_session()
        instance = self.instance(graph_id)
        if not self.can_start(graph_id):
            if instance.lifecycle == ledger.Lifecycle.COMPLETED:
                raise IllegalChoiceError(f'{graph_id} is already completed')
            raise IllegalChoiceError(f'{graph_id} is {instance.lifecycle.value}, not available')

        self.dispatcher.begin(elog.EntryKind.START, graph_id, instance.graph.start_node_id)
        try:
            self._start(instance)
            self._finish_if_ended(instance)
        except Exception:
            self.dispatcher.settle()
            raise
        return self._commit(graph_id, None, graph_id)

    def resolve(self, graph_id:str, choice_id:str) -> Resolution:
        """ takes a choice on the active node of a graph

        raises IllegalChoiceError, before changing anything, if the choice
        isn't legal right now """
        self._check_session()
        instance = self.instance(graph_id)
        if instance.lifecycle != ledger.Lifecycle.IN_PROGRESS:
            raise IllegalChoiceError(f'{graph_id} is {instance.lifecycle.value}, not in progress')
        node = instance.active_node
        assert node is not None
        choice = node.choice(choice_id)
        if choice is None:
            raise IllegalChoiceError(f'no choice {choice_id} at {graph_id}/{node.node_id}')
        unmet = reqs.unmet(node.requirements_for(choice), self.ledger.snapshot(), self.collaborators)
        if unmet:
            raise IllegalChoiceError(f'{choice_id} is not legal: {", ".join(reqs.describe_all(unmet))}')

        self.dispatcher.begin(elog.EntryKind.CHOICE, graph_id, node.node_id, choice_id)
        try:
            active_graph_id = self._advance(instance, choice)
            self.refresh_availability()
        except Exception:
            self.dispatcher.settle()
            raise
        return self._commit(graph_id, choice_id, active_graph_id)

    def abandon(self, graph_id:str) -> Resolution:
        """ gives up on an available or in progress graph, it fails """
        self._check_session()
        instance = self.instance(graph_id)
        if instance.lifecycle not in (ledger.Lifecycle.AVAILABLE, ledger.Lifecycle.IN_PROGRESS):
            raise IllegalChoiceError(f'{graph_id} is {instance.lifecycle.value}, cannot abandon')

        self.dispatcher.begin(elog.EntryKind.ABANDON, graph_id, instance.active_node_id)
        try:
            self._fail(instance)
            self.refresh_availability()
        except Exception:
            self.dispatcher.settle()
            raise
        return self._commit(graph_id, None, None)

    def restore(self, active_node_ids:Mapping[str, str], unlocked:Iterable[str]) -> None:
        """ rebuilds instances from the ledger's lifecycle states """
        unlocked = set(unlocked)
        for graph_id, instance in self.instances.items():
            instance.lifecycle = self.ledger.get_quest_state(graph_id)
            instance.active_node_id = active_node_ids.get(graph_id)
            instance.unlocked = graph_id in unlocked

    def active_node_ids(self) -> dict[str, str]:
        return {k: v.active_node_id for k,v in self.instances.items() if v.active_node_id is not None}

    def unlocked_graph_ids(self) -> list[str]:
        return [k for k,v in self.instances.items() if v.unlocked]

    # internals

    def _check_session(self) -> None:
        if self.ending is not None:
            raise IllegalChoiceError(f'the story has ended ({self.ending[0]})')

    def _transition(self, instance:GraphInstance, state:ledger.Lifecycle) -> None:
        instance.lifecycle = state
        if state != ledger.Lifecycle.IN_PROGRESS:
            instance.active_node_id = None
        self.dispatcher.transition(instance.graph.graph_id, state)

    def _start(self, instance:GraphInstance) -> None:
        self.logger.info(f'starting {instance.graph.graph_id}')
        self._transition(instance, ledger.Lifecycle.IN_PROGRESS)
        self._enter_node(instance, instance.graph.start_node_id)

    def _enter_node(self, instance:GraphInstance, node_id:str) -> None:
        instance.active_node_id = node_id
        self.dispatcher.apply_outcomes(instance.graph.nodes[node_id].entry_outcomes)

    def _complete(self, instance:GraphInstance) -> None:
        self.logger.info(f'completed {instance.graph.graph_id}')
        self._transition(instance, ledger.Lifecycle.COMPLETED)
        self.dispatcher.apply_outcomes(instance.graph.completion_outcomes)

    def _fail(self, instance:GraphInstance) -> None:
        self.logger.info(f'failed {instance.graph.graph_id}')
        self._transition(instance, ledger.Lifecycle.FAILED)
        self.dispatcher.apply_outcomes(instance.graph.failure_outcomes)

    def _advance(self, instance:GraphInstance, choice:g.Choice) -> Optional[str]:
        """ applies a choice's outcomes and follows it, returns the graph left active """
        self.dispatcher.apply_outcomes(choice.outcomes)
        if self._finish_if_ended(instance):
            return instance.graph.graph_id
        if isinstance(choice.next, g.NodeRef):
            self._enter_node(instance, choice.next.node_id)
            self._finish_if_ended(instance)
            return instance.graph.graph_id
        self._complete(instance)
        if isinstance(choice.next, g.GraphRef) and self.ending is None:
            return self._chain(choice.next.graph_id)
        return None

    def _finish_if_ended(self, instance:GraphInstance) -> bool:
        """ ends the graph if an ending was triggered, no advancement after """
        if self.ending is None:
            return False
        if instance.lifecycle == ledger.Lifecycle.IN_PROGRESS:
            if self.ending[1]:
                self._fail(instance)
            else:
                self._complete(instance)
        return True

    def _chain(self, graph_id:str) -> Optional[str]:
        target = self.instances[graph_id]
        # the target may have just become available from our own outcomes
        self.refresh_availability()
        if not self.can_start(graph_id):
            self.dispatcher.report(f'cannot chain to {graph_id}, it is {target.lifecycle.value}')
            return None
        self._start(target)
        self._finish_if_ended(target)
        return graph_id if target.lifecycle == ledger.Lifecycle.IN_PROGRESS else None

    def _commit(self, graph_id:str, choice_id:Optional[str], active_graph_id:Optional[str]) -> Resolution:
        diagnostics = list(self.dispatcher.diagnostics)
        entry = self.dispatcher.commit()
        active_node_id = None
        if active_graph_id is not None:
            active_node_id = self.instances[active_graph_id].active_node_id
            if active_node_id is None:
                active_graph_id = None
        return Resolution(True, graph_id, choice_id, entry, active_graph_id, active_node_id, diagnostics, self.ending)
