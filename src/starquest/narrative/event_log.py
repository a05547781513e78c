""" Append-only history of everything the engine resolved

The log is the "story so far" for the UI, part of the save data, and a
consistency check: replaying it from an empty ledger must reproduce the
live ledger.
"""

import enum
import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import Any, Optional

from starquest import util
from starquest.core import ledger

class EntryKind(enum.Enum):
    CHOICE = "choice"
    START = "start"
    EXTERNAL = "external"
    ABANDON = "abandon"
    REFRESH = "refresh"
    NEW_GAME = "new_game"

class EventLogEntry:
    def __init__(
            self,
            entry_id:int,
            kind:EntryKind,
            timestamp:float,
            graph_id:Optional[str]=None,
            node_id:Optional[str]=None,
            choice_id:Optional[str]=None,
            outcomes:Sequence[Mapping[str, Any]]=(),
            transitions:Sequence[tuple[str, ledger.Lifecycle]]=(),
            source:Optional[str]=None) -> None:
        self.entry_id = entry_id
        self.kind = kind
        self.timestamp = timestamp
        self.graph_id = graph_id
        self.node_id = node_id
        self.choice_id = choice_id
        # serialized outcomes, in the order they were applied
        self.outcomes = tuple(dict(o) for o in outcomes)
        self.transitions = tuple(transitions)
        self.source = source

    @property
    def outcome_ids(self) -> list[str]:
        return [o.get("id", "") for o in self.outcomes]

    @property
    def outcome_kinds(self) -> list[str]:
        return [o["kind"] for o in self.outcomes]

    def __repr__(self) -> str:
        return f'EventLogEntry({self.entry_id} {self.kind.value} t={self.timestamp} {self.graph_id}/{self.node_id}/{self.choice_id} outcomes={self.outcome_ids})'

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.entry_id,
            "kind": self.kind.value,
            "timestamp": self.timestamp,
            "graph_id": self.graph_id,
            "node_id": self.node_id,
            "choice_id": self.choice_id,
            "outcomes": [dict(o) for o in self.outcomes],
            "transitions": [[g, s.value] for g,s in self.transitions],
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data:Mapping[str, Any]) -> "EventLogEntry":
        return cls(
            int(data["id"]),
            EntryKind(data["kind"]),
            float(data["timestamp"]),
            graph_id=data.get("graph_id"),
            node_id=data.get("node_id"),
            choice_id=data.get("choice_id"),
            outcomes=data.get("outcomes", []),
            transitions=[(g, ledger.Lifecycle(s)) for g,s in data.get("transitions", [])],
            source=data.get("source"),
        )


class EventLog:
    def __init__(self) -> None:
        self.logger = logging.getLogger(util.fullname(self))
        self._entries:list[EventLogEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[EventLogEntry]:
        return iter(self._entries)

    @property
    def last_timestamp(self) -> float:
        if not self._entries:
            return float("-inf")
        return self._entries[-1].timestamp

    def next_id(self) -> int:
        if not self._entries:
            return 1
        return self._entries[-1].entry_id + 1

    def append(self, entry:EventLogEntry) -> None:
        if self._entries:
            last = self._entries[-1]
            if entry.entry_id <= last.entry_id:
                raise ValueError(f'entry id {entry.entry_id} not after last id {last.entry_id}')
            if entry.timestamp < last.timestamp:
                raise ValueError(f'entry timestamp {entry.timestamp} before last timestamp {last.timestamp}')
        self._entries.append(entry)
        self.logger.debug(f'appended {entry}')

    def query(self, since:Optional[float]=None, after_id:Optional[int]=None) -> list[EventLogEntry]:
        """ entries in order, optionally only those strictly after since

        Entries can share a timestamp when the clock doesn't advance, so a
        caller polling for new entries should pass the last entry_id it saw
        as after_id instead. """
        entries:Iterable[EventLogEntry] = self._entries
        if since is not None:
            entries = (e for e in entries if e.timestamp > since)
        if after_id is not None:
            entries = (e for e in entries if e.entry_id > after_id)
        return list(entries)

    def choices(self) -> list[EventLogEntry]:
        return [e for e in self._entries if e.kind == EntryKind.CHOICE]

    def clear(self) -> None:
        self._entries.clear()

    def to_list(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self._entries]

    @classmethod
    def from_list(cls, data:Iterable[Mapping[str, Any]]) -> "EventLog":
        event_log = cls()
        for d in data:
            event_log.append(EventLogEntry.from_dict(d))
        return event_log
