from typing import Any, Optional

import toml # type: ignore

from starquest.core import collaborators
from starquest.narrative import graph as g

class StepClock:
    """ A clock that advances by step every time it's read. """

    def __init__(self, start:float=1000., step:float=1.) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> float:
        t = self.now
        self.now += self.step
        return t

class MonitoringInventory(collaborators.Inventory):
    def __init__(self, *args:Any, **kwargs:Any) -> None:
        super().__init__(*args, **kwargs)
        self.given:list[tuple[str, int]] = []
        self.failed_removes:list[tuple[str, int]] = []

    def give_item(self, item_id:str, quantity:int=1) -> None:
        self.given.append((item_id, quantity))
        super().give_item(item_id, quantity)

    def remove_item(self, item_id:str, quantity:int=1) -> bool:
        removed = super().remove_item(item_id, quantity)
        if not removed:
            self.failed_removes.append((item_id, quantity))
        return removed

class MonitoringProgression(collaborators.Progression):
    def __init__(self, *args:Any, **kwargs:Any) -> None:
        super().__init__(*args, **kwargs)
        self.grants:list[int] = []
        self.skill_checks = 0

    def grant_experience(self, amount:int) -> None:
        self.grants.append(amount)
        super().grant_experience(amount)

    def get_skill_level(self, skill:str) -> int:
        self.skill_checks += 1
        return super().get_skill_level(skill)

class MonitoringCompanions(collaborators.Companions):
    def __init__(self) -> None:
        super().__init__()
        self.adjustments:list[tuple[str, int]] = []

    def adjust_relationship(self, companion_id:str, delta:int) -> None:
        self.adjustments.append((companion_id, delta))
        super().adjust_relationship(companion_id, delta)

class FailingProgression(MonitoringProgression):
    """ raises on the next failures grants, like a host service that is down """

    def __init__(self, *args:Any, failures:int=1, **kwargs:Any) -> None:
        super().__init__(*args, **kwargs)
        self.failures = failures

    def grant_experience(self, amount:int) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("progression service down")
        super().grant_experience(amount)

def graphs_from_toml(text:str) -> dict[str, g.Graph]:
    """ parses and validates graphs written inline in a test """
    return g.load_graphs(toml.loads(text))

def one_node_quest(graph_id:str, requirements:str="", locked:bool=False, repeatable:bool=False, outcomes:str="", next:Optional[str]=None) -> str:
    """ toml for a quest with a single node and a single choice """
    next_line = f'next_graph = "{next}"' if next else ""
    return f"""
[{graph_id}]
title = "{graph_id}"
start = "{graph_id}_start"
locked = {str(locked).lower()}
repeatable = {str(repeatable).lower()}
requirements = [{requirements}]

[[{graph_id}.nodes]]
id = "{graph_id}_start"
text = "the only node"

[[{graph_id}.nodes.choices]]
id = "done"
text = "finish"
{next_line}
outcomes = [{outcomes}]
"""
