import logging
from typing import Generator

import pytest

from starquest import config
from starquest.core import ledger, collaborators
from starquest.engine import NarrativeEngine
from starquest.narrative import graph as g
from starquest.narrative import outcomes as outs
from starquest.narrative import event_log as elog
from starquest.serialization import save_game
from . import StepClock, MonitoringInventory, MonitoringProgression, MonitoringCompanions

# some logging to turn on if we like
#logging.getLogger("starquest.narrative").level = logging.DEBUG

@pytest.fixture(autouse=True)
def settings() -> Generator[None, None, None]:
    # tests may poke at settings, start each one from the built-in config
    config.load_config()
    yield
    config.load_config()

@pytest.fixture(scope="session")
def content() -> dict[str, g.Graph]:
    return g.load_content()

@pytest.fixture
def clock() -> StepClock:
    return StepClock()

@pytest.fixture
def inventory() -> MonitoringInventory:
    return MonitoringInventory()

@pytest.fixture
def progression() -> MonitoringProgression:
    return MonitoringProgression({"Technical": 1})

@pytest.fixture
def locations() -> collaborators.Locations:
    return collaborators.Locations()

@pytest.fixture
def companions() -> MonitoringCompanions:
    return MonitoringCompanions()

@pytest.fixture
def collabs(inventory:MonitoringInventory, progression:MonitoringProgression, locations:collaborators.Locations, companions:MonitoringCompanions) -> collaborators.Collaborators:
    return collaborators.Collaborators(
            inventory=inventory,
            progression=progression,
            locations=locations,
            companions=companions,
    )

@pytest.fixture
def world() -> ledger.WorldLedger:
    return ledger.WorldLedger()

@pytest.fixture
def event_log() -> elog.EventLog:
    return elog.EventLog()

@pytest.fixture
def dispatcher(world:ledger.WorldLedger, collabs:collaborators.Collaborators, event_log:elog.EventLog, clock:StepClock) -> outs.OutcomeDispatcher:
    return outs.OutcomeDispatcher(world, collabs, event_log, clock)

@pytest.fixture
def engine(content:dict[str, g.Graph], collabs:collaborators.Collaborators, clock:StepClock) -> NarrativeEngine:
    return NarrativeEngine(content, collabs, clock)

@pytest.fixture
def game_saver(tmp_path) -> save_game.GameSaver:
    return save_game.GameSaver(str(tmp_path))
