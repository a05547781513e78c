""" Narrative decision engine

Quests and companion dialogue trees are both graphs of nodes joined by
choices. Choices are gated by requirements evaluated against the world
ledger and, when taken, apply outcomes through the dispatcher. The walker
moves each graph through its lifecycle and chains graphs together, and the
event log records every resolution so the ledger can be rebuilt by replay.
"""

from .errors import NarrativeError, ContentError, IllegalChoiceError, SaveGameError
from .requirements import Requirement, RequirementKind, Comparator, parse_requirement, evaluate, all_met, unmet, describe
from .outcomes import Outcome, OutcomeKind, OutcomeDispatcher, AbstractGraphHooks, parse_outcome, replay
from .event_log import EventLog, EventLogEntry, EntryKind
from .graph import Graph, GraphKind, Node, Choice, NodeRef, GraphRef, load_content, load_graphs, validate, validate_all
from .walker import GraphWalker, GraphInstance, Resolution, PresentableNode, PresentableChoice
