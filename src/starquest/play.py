""" Console player for Star Quest narrative content

Walks the main quest line (and any other available quest or dialogue) in
a terminal, validates content, and renders graphs with graphviz.
"""

import os
import sys
import argparse
import logging
import contextlib
from collections.abc import Callable, Sequence
from typing import Optional

from starquest import config, util
from starquest.core import ledger, collaborators
from starquest.engine import NarrativeEngine
from starquest.narrative import graph as g
from starquest.narrative.errors import ContentError, SaveGameError
from starquest.serialization import save_game

HELP = """commands:
  <number>         take a choice
  start <graph>    start an available quest or dialogue
  abandon <graph>  give up on a quest
  travel <place>   move to an unlocked location
  status           flags, reputation, relationships and quests
  history          the story so far
  save             save to the --save file
  quit"""

class Console:
    """ Text walker over a NarrativeEngine.

    input_fn and output let tests drive a session without a terminal. """

    def __init__(self, engine:NarrativeEngine, locations:collaborators.Locations, saver:Optional[save_game.GameSaver]=None, save_filename:Optional[str]=None, input_fn:Callable[[str], str]=input, output:Callable[[str], None]=print) -> None:
        self.logger = logging.getLogger(util.fullname(self))
        self.engine = engine
        self.locations = locations
        self.saver = saver
        self.save_filename = save_filename
        self.input_fn = input_fn
        self.output = output
        self.current:Optional[str] = engine.walker.current_graph_id()

    def show_node(self) -> bool:
        if self.current is None or self.engine.lifecycle(self.current) != ledger.Lifecycle.IN_PROGRESS:
            self.current = self.engine.walker.current_graph_id()
        if self.current is None:
            available = self.engine.available_graphs()
            self.output(f'nothing in progress. available: {", ".join(available) or "none"}')
            return False

        node = self.engine.get_presentable_node(self.current)
        assert node is not None
        graph = self.engine.graphs[self.current]
        self.output("")
        self.output(f'== {graph.title} ==')
        if node.title:
            self.output(f'-- {node.title} --')
        if node.speaker:
            self.output(f'{node.speaker}: {node.text}')
        else:
            self.output(node.text)
        for i, choice in enumerate(node.legal_choices):
            self.output(f'  {i+1}. {choice.text}')
        for choice in node.illegal_choices:
            self.output(f'  -. {choice.text} ({"; ".join(choice.reasons)})')
        return True

    def show_status(self) -> None:
        world = self.engine.ledger
        self.output(f'location: {self.locations.current_location()}')
        self.output(f'flags: {", ".join(sorted(world.flags)) or "none"}')
        for faction, value in sorted(world.reputation.items()):
            self.output(f'  {faction}: {value} ({ledger.reputation_title(value)})')
        for companion, value in sorted(world.relationship.items()):
            self.output(f'  {companion}: {value} ({ledger.relationship_level(value)})')
        for graph_id, state in self.engine.walker.main_quest_line():
            self.output(f'  {graph_id}: {state.value}')

    def show_history(self) -> None:
        for entry in self.engine.history():
            self.output(f'{entry.entry_id:>4} {entry.kind.value:<9} {entry.graph_id or entry.source or ""} {entry.choice_id or ""}')

    def choose(self, number:int) -> None:
        assert self.current is not None
        node = self.engine.get_presentable_node(self.current)
        assert node is not None
        if not 1 <= number <= len(node.legal_choices):
            self.output("no such choice")
            return
        resolution = self.engine.resolve_choice(self.current, node.legal_choices[number-1].choice_id)
        for d in resolution.diagnostics:
            self.output(f'! {d}')
        self.current = resolution.active_graph_id

    def handle(self, line:str) -> bool:
        """ handles one command, returns False to stop """
        command, _, arg = line.strip().partition(" ")
        arg = arg.strip()
        if command in ("q", "quit", "exit"):
            return False
        elif command.isdigit():
            if self.current is None:
                self.output("nothing to choose from")
            else:
                self.choose(int(command))
        elif command == "start":
            resolution = self.engine.start(arg)
            if resolution.accepted:
                self.current = resolution.active_graph_id
            for d in resolution.diagnostics:
                self.output(f'! {d}')
        elif command == "abandon":
            for d in self.engine.abandon(arg or self.current or "").diagnostics:
                self.output(f'! {d}')
        elif command == "travel":
            try:
                self.locations.travel(arg)
            except ValueError as e:
                self.output(f'! {e}')
            else:
                self.engine.refresh()
        elif command == "status":
            self.show_status()
        elif command == "history":
            self.show_history()
        elif command == "save":
            if self.saver is None:
                self.output("no save file given")
            else:
                self.output(f'saved to {self.saver.save(self.engine, self.save_filename)}')
        else:
            self.output(HELP)
        return True

    def run(self) -> None:
        while self.engine.ending is None:
            self.show_node()
            try:
                line = self.input_fn("> ")
            except EOFError:
                break
            if not self.handle(line):
                break
        if self.engine.ending is not None:
            ending_id, failed = self.engine.ending
            self.output(f'THE END: {ending_id}{" (failed)" if failed else ""}')


def parse_skills(values:Sequence[str]) -> dict[str, int]:
    skills = {}
    for v in values:
        name, _, level = v.partition("=")
        skills[name] = int(level)
    return skills

def render_graphs(graphs:dict[str, g.Graph], directory:str) -> list[str]:
    os.makedirs(directory, exist_ok=True)
    filenames = []
    for graph_id, graph in graphs.items():
        filenames.append(graph.viz().save(filename=f'{graph_id}.gv', directory=directory))
    return filenames

def main() -> None:
    parser = argparse.ArgumentParser(description="Play through Star Quest narrative content in the terminal")
    parser.add_argument("--config", type=str, default=None,
            help="toml file overriding built-in settings")
    parser.add_argument("--content", nargs="*", type=str, default=[],
            help="extra content files to load alongside the built-in content")
    parser.add_argument("--validate", action="store_true",
            help="load and validate content, then exit")
    parser.add_argument("--viz", type=str, default=None,
            help="write graphviz sources for every graph to this directory, then exit")
    parser.add_argument("--skill", nargs="*", type=str, default=[],
            help="starting skills, e.g. Technical=2")
    parser.add_argument("--save", type=str, default=None,
            help="file the save command writes to")
    parser.add_argument("--load", type=str, default=None,
            help="save file to resume from")
    parser.add_argument("--log-level", type=str, default="WARNING",
            help="logging level, default WARNING")
    args = parser.parse_args()

    logging.basicConfig(
            stream=sys.stderr,
            format="%(asctime)s %(name)-12s %(levelname)-8s %(message)s",
            level=args.log_level.upper(),
    )
    # send warnings to the logger
    logging.captureWarnings(True)
    logger = logging.getLogger(__name__)

    with contextlib.ExitStack() as context_stack:
        if args.config:
            config_file = context_stack.enter_context(open(args.config, "rt"))
            try:
                config.load_config(config_file)
            except ValueError as e:
                print(e, file=sys.stderr)
                sys.exit(1)

        try:
            graphs = g.load_content(extra=args.content)
        except ContentError as e:
            print(e, file=sys.stderr)
            sys.exit(1)

        if args.validate:
            print(f'{len(graphs)} graphs ok')
            return
        if args.viz:
            for filename in render_graphs(graphs, args.viz):
                print(filename)
            return

        locations = collaborators.Locations()
        collabs = collaborators.Collaborators(
                progression=collaborators.Progression(parse_skills(args.skill)),
                locations=locations,
        )
        engine = NarrativeEngine(graphs, collabs)
        saver = save_game.GameSaver()
        if args.load:
            try:
                saver.load(args.load, engine)
            except (SaveGameError, OSError) as e:
                logger.error(f'could not load {args.load}: {e}')
                print(f'could not load {args.load}: {e}', file=sys.stderr)
                sys.exit(1)
        else:
            engine.new_game()

        Console(engine, locations, saver, args.save).run()

if __name__ == "__main__":
    main()
