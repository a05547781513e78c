""" Narrative engine errors """

from collections.abc import Mapping, Sequence

class NarrativeError(Exception):
    pass

class ContentError(NarrativeError):
    """ Authored content failed to load or validate.

    problems maps each offending graph id to everything wrong with it. """

    def __init__(self, problems:Mapping[str, Sequence[str]]) -> None:
        self.problems = {k: list(v) for k,v in problems.items()}
        lines = [f'{len(self.problems)} graph(s) failed validation:']
        for graph_id, graph_problems in self.problems.items():
            for p in graph_problems:
                lines.append(f'  {graph_id}: {p}')
        super().__init__("\n".join(lines))

class IllegalChoiceError(NarrativeError, ValueError):
    pass

class SaveGameError(NarrativeError):
    pass
