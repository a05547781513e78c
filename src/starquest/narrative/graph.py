""" Narrative graphs: quests and dialogue trees

Both are the same thing, a directed graph of nodes joined by choices, gated
by requirements and carrying outcomes. Graphs are authored in toml (see
starquest/data/quests.toml) and are immutable once loaded.
"""

import enum
import logging
import collections
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Optional, Union

import toml # type: ignore
import graphviz # type: ignore

from starquest import config
from . import requirements as reqs
from . import outcomes as outs
from .errors import ContentError

logger = logging.getLogger(__name__)

class GraphKind(enum.Enum):
    QUEST = "quest"
    DIALOGUE = "dialogue"

BRANCH_TAGS = frozenset(("main", "alliance", "syndicate", "independent", "mystics", "settlers", "void_entity", "crew"))

class NodeRef:
    def __init__(self, node_id:str) -> None:
        self.node_id = node_id

    def __eq__(self, other:Any) -> bool:
        return isinstance(other, NodeRef) and other.node_id == self.node_id

    def __hash__(self) -> int:
        return hash(("node", self.node_id))

    def __repr__(self) -> str:
        return f'NodeRef({self.node_id})'

class GraphRef:
    def __init__(self, graph_id:str) -> None:
        self.graph_id = graph_id

    def __eq__(self, other:Any) -> bool:
        return isinstance(other, GraphRef) and other.graph_id == self.graph_id

    def __hash__(self) -> int:
        return hash(("graph", self.graph_id))

    def __repr__(self) -> str:
        return f'GraphRef({self.graph_id})'

Next = Union[NodeRef, GraphRef, None]


class Choice:
    def __init__(self, choice_id:str, text:str, requirements:Sequence[reqs.Requirement]=(), outcomes:Sequence[outs.Outcome]=(), next:Next=None) -> None:
        self.choice_id = choice_id
        self.text = text
        self.requirements = tuple(requirements)
        self.outcomes = tuple(outcomes)
        self.next = next

    def __repr__(self) -> str:
        return f'Choice({self.choice_id} -> {self.next})'


class Node:
    def __init__(self, node_id:str, text:str, choices:Sequence[Choice], title:Optional[str]=None, location:Optional[str]=None, speaker:Optional[str]=None, entry_outcomes:Sequence[outs.Outcome]=()) -> None:
        self.node_id = node_id
        self.text = text
        self.choices = tuple(choices)
        self.title = title
        self.location = location
        self.speaker = speaker
        self.entry_outcomes = tuple(entry_outcomes)

    def __repr__(self) -> str:
        return f'Node({self.node_id})'

    def choice(self, choice_id:str) -> Optional[Choice]:
        for c in self.choices:
            if c.choice_id == choice_id:
                return c
        return None

    def requirements_for(self, choice:Choice) -> list[reqs.Requirement]:
        """ everything gating choice, including being at this node's location """
        requirements = list(choice.requirements)
        if self.location is not None:
            requirements.append(reqs.Requirement(reqs.RequirementKind.AT_LOCATION, self.location))
        return requirements


class Graph:
    def __init__(
            self,
            graph_id:str,
            kind:GraphKind,
            title:str,
            description:str,
            start_node_id:str,
            nodes:Iterable[Node],
            unlock_requirements:Sequence[reqs.Requirement]=(),
            branch_tag:str="main",
            main:bool=False,
            locked:bool=False,
            repeatable:bool=False,
            completion_outcomes:Sequence[outs.Outcome]=(),
            failure_outcomes:Sequence[outs.Outcome]=(),
            speaker:Optional[str]=None) -> None:
        self.graph_id = graph_id
        self.kind = kind
        self.title = title
        self.description = description
        self.start_node_id = start_node_id
        self.nodes:dict[str, Node] = {n.node_id: n for n in nodes}
        self.unlock_requirements = tuple(unlock_requirements)
        self.branch_tag = branch_tag
        self.main = main
        self.locked = locked
        self.repeatable = repeatable
        self.completion_outcomes = tuple(completion_outcomes)
        self.failure_outcomes = tuple(failure_outcomes)
        self.speaker = speaker

    def __repr__(self) -> str:
        return f'Graph({self.graph_id} {self.kind.value} nodes={len(self.nodes)})'

    @property
    def start_node(self) -> Node:
        return self.nodes[self.start_node_id]

    def all_outcomes(self) -> Iterable[outs.Outcome]:
        yield from self.completion_outcomes
        yield from self.failure_outcomes
        for node in self.nodes.values():
            yield from node.entry_outcomes
            for choice in node.choices:
                yield from choice.outcomes

    def all_requirements(self) -> Iterable[reqs.Requirement]:
        yield from self.unlock_requirements
        for node in self.nodes.values():
            for choice in node.choices:
                yield from choice.requirements

    def reachable_node_ids(self) -> set[str]:
        seen:set[str] = set()
        if self.start_node_id not in self.nodes:
            return seen
        frontier = collections.deque([self.start_node_id])
        while frontier:
            node_id = frontier.popleft()
            if node_id in seen:
                continue
            seen.add(node_id)
            for choice in self.nodes[node_id].choices:
                if isinstance(choice.next, NodeRef) and choice.next.node_id in self.nodes:
                    frontier.append(choice.next.node_id)
        return seen

    def viz(self) -> graphviz.Graph:
        g = graphviz.Digraph(self.graph_id, graph_attr={"rankdir": "TB", "label": self.title})

        for node in self.nodes.values():
            shape = "doubleoctagon" if node.node_id == self.start_node_id else "box"
            label = node.title or node.node_id
            if node.location:
                label = f'{label}\n@{node.location}'
            g.node(node.node_id, label=label, shape=shape)
            for choice in node.choices:
                label = choice.text if len(choice.text) < 40 else f'{choice.text[:37]}...'
                if choice.requirements:
                    label = f'{label}\n[{", ".join(reqs.describe_all(choice.requirements))}]'
                if isinstance(choice.next, NodeRef):
                    g.edge(node.node_id, choice.next.node_id, label=label)
                elif isinstance(choice.next, GraphRef):
                    g.node(f'graph:{choice.next.graph_id}', label=choice.next.graph_id, shape="folder")
                    g.edge(node.node_id, f'graph:{choice.next.graph_id}', label=label)
                else:
                    g.node("complete", label="complete", shape="oval")
                    g.edge(node.node_id, "complete", label=label)

        return g


# loading from authored data

def _parse_list(items:Any, what:str, owner_id:str, problems:list[str]) -> list[Mapping[str, Any]]:
    if items is None:
        return []
    if not isinstance(items, list):
        problems.append(f'{what} for {owner_id} must be a list')
        return []
    return items

def parse_requirements(data:Any, owner_id:str, problems:list[str]) -> list[reqs.Requirement]:
    requirements = []
    for d in _parse_list(data, "requirements", owner_id, problems):
        try:
            requirements.append(reqs.parse_requirement(d))
        except ValueError as e:
            problems.append(f'bad requirement in {owner_id}: {e}')
    return requirements

def parse_outcomes(data:Any, owner_id:str, problems:list[str]) -> list[outs.Outcome]:
    """ outcomes get stable ids from their owner and their position """
    outcomes = []
    for i, d in enumerate(_parse_list(data, "outcomes", owner_id, problems)):
        try:
            outcomes.append(outs.parse_outcome(d, f'{owner_id}:{i}'))
        except ValueError as e:
            problems.append(f'bad outcome in {owner_id}: {e}')
    return outcomes

def _require_str(data:Mapping[str, Any], key:str, owner_id:str, problems:list[str], default:Optional[str]=None) -> str:
    value = data.get(key, default)
    if not isinstance(value, str):
        problems.append(f'missing or bad {key} in {owner_id}')
        return ""
    return value

def _optional_str(data:Mapping[str, Any], key:str, owner_id:str, problems:list[str]) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        problems.append(f'{key} in {owner_id} must be a string')
        return None
    return value

def _flag(data:Mapping[str, Any], key:str, owner_id:str, problems:list[str]) -> bool:
    value = data.get(key, False)
    if not isinstance(value, bool):
        problems.append(f'{key} in {owner_id} must be true or false')
        return False
    return value

def parse_choice(node_id:str, data:Mapping[str, Any], problems:list[str]) -> Choice:
    choice_id = _require_str(data, "id", f'choice in {node_id}', problems)
    owner_id = f'{node_id}/{choice_id}'
    text = _require_str(data, "text", owner_id, problems)

    next:Next = None
    if "next_node" in data and "next_graph" in data:
        problems.append(f'{owner_id} has both next_node and next_graph')
    elif "next_node" in data:
        next = NodeRef(_require_str(data, "next_node", owner_id, problems))
    elif "next_graph" in data:
        next = GraphRef(_require_str(data, "next_graph", owner_id, problems))

    return Choice(
        choice_id,
        text,
        parse_requirements(data.get("requirements"), owner_id, problems),
        parse_outcomes(data.get("outcomes"), owner_id, problems),
        next,
    )

def parse_node(data:Mapping[str, Any], default_speaker:Optional[str], problems:list[str]) -> Node:
    if not isinstance(data, Mapping):
        problems.append(f'node must be a table, got {data!r}')
        return Node("", "", [])
    node_id = _require_str(data, "id", "node", problems)
    choices = []
    seen:set[str] = set()
    for d in _parse_list(data.get("choices"), "choices", node_id, problems):
        if not isinstance(d, Mapping):
            problems.append(f'choice in {node_id} must be a table')
            continue
        choice = parse_choice(node_id, d, problems)
        if choice.choice_id in seen:
            problems.append(f'duplicate choice id {choice.choice_id} in {node_id}')
        seen.add(choice.choice_id)
        choices.append(choice)

    return Node(
        node_id,
        _require_str(data, "text", node_id, problems),
        choices,
        title=_optional_str(data, "title", node_id, problems),
        location=_optional_str(data, "location", node_id, problems),
        speaker=_optional_str(data, "speaker", node_id, problems) or default_speaker,
        entry_outcomes=parse_outcomes(data.get("entry_outcomes"), node_id, problems),
    )

def parse_graph(graph_id:str, data:Mapping[str, Any], problems:list[str]) -> Graph:
    """ Builds one graph from its authored form.

    Everything wrong with the graph is appended to problems rather than
    raised so a whole content file can be reported at once. """

    kind = GraphKind.QUEST
    try:
        kind = GraphKind(data.get("kind", "quest"))
    except ValueError:
        problems.append(f'unknown graph kind {data.get("kind")!r}')

    branch_tag = _require_str(data, "branch", graph_id, problems, default="main")
    if branch_tag and branch_tag not in BRANCH_TAGS:
        problems.append(f'unknown branch {branch_tag!r}')

    speaker = _optional_str(data, "speaker", graph_id, problems)
    nodes = []
    seen:set[str] = set()
    node_data = _parse_list(data.get("nodes"), "nodes", graph_id, problems)
    if not node_data:
        problems.append("graph has no nodes")
    for d in node_data:
        node = parse_node(d, speaker, problems)
        if node.node_id in seen:
            problems.append(f'duplicate node id {node.node_id}')
        seen.add(node.node_id)
        nodes.append(node)

    return Graph(
        graph_id,
        kind,
        _require_str(data, "title", graph_id, problems),
        _require_str(data, "description", graph_id, problems, default=""),
        _require_str(data, "start", graph_id, problems),
        nodes,
        unlock_requirements=parse_requirements(data.get("requirements"), graph_id, problems),
        branch_tag=branch_tag,
        main=_flag(data, "main", graph_id, problems),
        locked=_flag(data, "locked", graph_id, problems),
        repeatable=_flag(data, "repeatable", graph_id, problems),
        completion_outcomes=parse_outcomes(data.get("completion_outcomes"), f'{graph_id}.completion', problems),
        failure_outcomes=parse_outcomes(data.get("failure_outcomes"), f'{graph_id}.failure', problems),
        speaker=speaker,
    )


def validate(graph:Graph, graph_ids:Iterable[str]) -> list[str]:
    """ Checks a graph's references against itself and the other graphs.

    Parameters
    ----------
    graph : Graph
        the graph to check
    graph_ids : iterable of str
        ids of every graph that will be registered alongside this one,
        including graphs already registered

    Returns
    -------
    out : list of str
        everything wrong with graph, empty if it's fine
    """
    known = set(graph_ids)
    problems:list[str] = []

    if graph.start_node_id not in graph.nodes:
        problems.append(f'start node {graph.start_node_id} is not in the graph')

    for node in graph.nodes.values():
        for choice in node.choices:
            if isinstance(choice.next, NodeRef) and choice.next.node_id not in graph.nodes:
                problems.append(f'{node.node_id}/{choice.choice_id} goes to missing node {choice.next.node_id}')
            elif isinstance(choice.next, GraphRef) and choice.next.graph_id not in known:
                problems.append(f'{node.node_id}/{choice.choice_id} chains to unknown graph {choice.next.graph_id}')

    for outcome in graph.all_outcomes():
        if outcome.kind == outs.OutcomeKind.UNLOCK_QUEST and outcome.target not in known:
            problems.append(f'outcome {outcome.outcome_id} unlocks unknown graph {outcome.target}')

    for requirement in graph.all_requirements():
        if requirement.kind == reqs.RequirementKind.QUEST_COMPLETED and requirement.subject_id not in known:
            problems.append(f'requirement on unknown graph {requirement.subject_id}')

    if graph.start_node_id in graph.nodes:
        unreachable = set(graph.nodes) - graph.reachable_node_ids()
        for node_id in sorted(unreachable):
            problems.append(f'node {node_id} is unreachable from {graph.start_node_id}')

    return problems

def _check_all(graphs:Sequence[Graph], existing_ids:Iterable[str], problems:dict[str, list[str]], also_known:Iterable[str]=()) -> dict[str, Graph]:
    existing = set(existing_ids)
    by_id:dict[str, Graph] = {}
    for graph in graphs:
        if graph.graph_id in by_id or graph.graph_id in existing:
            problems[graph.graph_id].append("duplicate graph id")
        by_id[graph.graph_id] = graph

    known = existing | set(by_id) | set(also_known)
    for graph in by_id.values():
        graph_problems = validate(graph, known)
        if graph_problems:
            problems[graph.graph_id].extend(graph_problems)
    return by_id

def validate_all(graphs:Sequence[Graph], existing_ids:Iterable[str]=()) -> dict[str, Graph]:
    """ validates graphs together, raises ContentError listing every bad graph """
    problems:dict[str, list[str]] = collections.defaultdict(list)
    by_id = _check_all(graphs, existing_ids, problems)
    if problems:
        raise ContentError(problems)
    return by_id


def load_graphs(content:Mapping[str, Any], existing_ids:Iterable[str]=()) -> dict[str, Graph]:
    """ parses and validates a mapping of graph id to authored graph data

    Graphs that parsed cleanly are still validated when others didn't, so
    the ContentError lists every offending graph at once. """
    problems:dict[str, list[str]] = collections.defaultdict(list)
    graphs = []
    for graph_id, data in content.items():
        graph_problems:list[str] = []
        if not isinstance(data, Mapping):
            problems[graph_id].append(f'graph must be a table, got {data!r}')
            continue
        graph = parse_graph(graph_id, data, graph_problems)
        if graph_problems:
            problems[graph_id].extend(graph_problems)
        else:
            graphs.append(graph)
    # a broken graph is still a valid reference target for the others
    by_id = _check_all(graphs, existing_ids, problems, also_known=content.keys())
    if problems:
        raise ContentError(problems)
    return by_id

def read_content(files:Optional[Iterable[str]]=None, extra:Iterable[str]=()) -> dict[str, Any]:
    """ reads authored content from package data and extra files on disk """
    if files is None:
        files = config.Settings.content.FILES
    problems:dict[str, list[str]] = collections.defaultdict(list)
    content:dict[str, Any] = {}

    def add(source:str, data:Mapping[str, Any]) -> None:
        for graph_id, graph_data in data.items():
            if graph_id in content:
                problems[graph_id].append(f'duplicate graph id (again in {source})')
            content[graph_id] = graph_data

    for name in files:
        add(name, toml.loads(config.read_data_text(name)))
    for filename in extra:
        with open(filename, "rt") as f:
            add(filename, toml.load(f))

    if problems:
        raise ContentError(problems)
    return content

def load_content(files:Optional[Iterable[str]]=None, extra:Iterable[str]=()) -> dict[str, Graph]:
    graphs = load_graphs(read_content(files, extra))
    logger.info(f'loaded {len(graphs)} graphs')
    return graphs
