import pytest

from starquest.core import ledger, collaborators
from starquest.engine import NarrativeEngine
from starquest.narrative import event_log as elog
from starquest.narrative import outcomes as outs
from starquest.narrative.errors import SaveGameError
from . import StepClock, FailingProgression, graphs_from_toml, one_node_quest

PROLOGUE = "quest_main_prologue"
CARGO = "quest_main_cargo_delivery"
ARTIFACT = "quest_main_artifact_mystery"
ENGINEER = "get_to_know_engineer"

def stage(graph_id, name):
    return f'{graph_id}_{name}'

def test_new_game(engine:NarrativeEngine):
    r = engine.new_game()
    assert r is not None
    assert r.accepted
    assert r.active_graph_id == PROLOGUE
    assert r.active_node_id == stage(PROLOGUE, "stage_1")

    assert engine.lifecycle(PROLOGUE) == ledger.Lifecycle.IN_PROGRESS
    assert engine.lifecycle(CARGO) == ledger.Lifecycle.AVAILABLE
    assert engine.lifecycle(ARTIFACT) == ledger.Lifecycle.UNAVAILABLE
    assert engine.lifecycle("quest_alliance_supply_run") == ledger.Lifecycle.UNAVAILABLE
    # the prologue introduces the engineer, which opens their dialogue
    assert engine.ledger.get_relationship("engineer") == 50
    assert engine.lifecycle(ENGINEER) == ledger.Lifecycle.AVAILABLE
    assert engine.lifecycle("engineer_heart_to_heart") == ledger.Lifecycle.UNAVAILABLE

    kinds = [e.kind for e in engine.history()]
    assert kinds == [elog.EntryKind.NEW_GAME, elog.EntryKind.START]

def test_new_game_resets(engine:NarrativeEngine):
    engine.new_game()
    engine.resolve_choice(PROLOGUE, stage(PROLOGUE, "stage_1_choice_1"))
    assert engine.ledger.has_flag("investigatedDistressSignal")

    engine.new_game()
    assert not engine.ledger.has_flag("investigatedDistressSignal")
    assert [e.entry_id for e in engine.history()] == [1, 2]
    assert engine.get_presentable_node().node_id == stage(PROLOGUE, "stage_1")

def test_prologue(engine:NarrativeEngine, locations, progression):
    engine.new_game()

    node = engine.get_presentable_node()
    assert node is not None
    assert node.graph_id == PROLOGUE
    assert node.title == "Unexpected Signal"
    assert [c.choice_id for c in node.legal_choices] == [stage(PROLOGUE, "stage_1_choice_1"), stage(PROLOGUE, "stage_1_choice_2")]

    r = engine.resolve_choice(PROLOGUE, stage(PROLOGUE, "stage_1_choice_1"))
    assert r.accepted
    assert r.active_node_id == stage(PROLOGUE, "stage_2")
    assert engine.ledger.has_flag("investigatedDistressSignal")
    assert "proxima_derelict" in locations.unlocked
    assert progression.grants == [50]
    assert r.entry.outcome_ids == [f'{stage(PROLOGUE, "stage_1")}/{stage(PROLOGUE, "stage_1_choice_1")}:{i}' for i in range(3)]

    # still aboard our ship, nothing on the derelict can be done yet
    node = engine.get_presentable_node()
    assert node.title == "The Derelict Ship"
    assert node.legal_choices == []
    dock = node.illegal_choices[0]
    assert dock.choice_id == stage(PROLOGUE, "stage_2_choice_1")
    assert dock.reasons == ["requires Technical skill 2", "must be at proxima_derelict"]

    locations.travel("proxima_derelict")
    node = engine.get_presentable_node()
    assert [c.choice_id for c in node.legal_choices] == [stage(PROLOGUE, "stage_2_choice_2")]
    assert node.illegal_choices[0].reasons == ["requires Technical skill 2"]

    # Technical 1 can't board
    entries = len(engine.history())
    before = engine.ledger.to_dict()
    r = engine.resolve_choice(PROLOGUE, stage(PROLOGUE, "stage_2_choice_1"))
    assert not r.accepted
    assert r.entry is None
    assert "Technical" in r.diagnostics[0]
    assert len(engine.history()) == entries
    assert engine.ledger.to_dict() == before
    assert engine.lifecycle(PROLOGUE) == ledger.Lifecycle.IN_PROGRESS

    # send a beacon and carry on with the delivery
    r = engine.resolve_choice(PROLOGUE, stage(PROLOGUE, "stage_2_choice_2"))
    assert r.accepted
    assert engine.ledger.get_reputation("Alliance") == 5
    assert engine.ledger.get_reputation("Syndicate") == -1
    assert engine.lifecycle(PROLOGUE) == ledger.Lifecycle.COMPLETED
    assert engine.lifecycle(CARGO) == ledger.Lifecycle.IN_PROGRESS
    assert r.active_graph_id == CARGO
    assert r.active_node_id == stage(CARGO, "stage_1")
    assert engine.get_presentable_node().graph_id == CARGO

    assert [e.kind for e in engine.history()] == [
        elog.EntryKind.NEW_GAME,
        elog.EntryKind.START,
        elog.EntryKind.CHOICE,
        elog.EntryKind.CHOICE,
    ]
    assert engine.verify_replay()

def test_technical_two_boards(engine:NarrativeEngine, locations, progression, inventory):
    progression.skills["Technical"] = 2
    engine.new_game()
    engine.resolve_choice(PROLOGUE, stage(PROLOGUE, "stage_1_choice_1"))
    locations.travel("proxima_derelict")

    r = engine.resolve_choice(PROLOGUE, stage(PROLOGUE, "stage_2_choice_1"))
    assert r.accepted
    assert r.active_node_id == stage(PROLOGUE, "stage_3")
    assert inventory.items["encrypted_data_core"] == 1
    assert engine.ledger.has_flag("discoveredArtifactData")

def test_void_ending(engine:NarrativeEngine, locations, collabs):
    engine.new_game()
    engine.apply_external([{"kind": "set_flag", "flag": "discoveredArtifact"}], "debug")
    assert engine.lifecycle(ARTIFACT) == ledger.Lifecycle.AVAILABLE

    assert engine.start(ARTIFACT).accepted
    engine.resolve_choice(ARTIFACT, stage(ARTIFACT, "stage_1_choice_2"))
    assert engine.ledger.get_reputation("Mystics") == 10
    assert engine.ledger.get_reputation("VoidEntity") == -5

    locations.travel("mystic_sanctuary")
    r = engine.resolve_choice(ARTIFACT, stage(ARTIFACT, "stage_2_mystics_choice_2"))
    assert r.accepted
    assert r.ended == ("voidCorruption", True)
    assert engine.ending == ("voidCorruption", True)
    assert collabs.presentation.ending == ("voidCorruption", True)
    assert engine.lifecycle(ARTIFACT) == ledger.Lifecycle.FAILED
    assert engine.ledger.get_reputation("VoidEntity") == 25
    assert engine.ledger.get_reputation("Mystics") == -5

    # nothing more happens after an ending
    entries = len(engine.history())
    assert not engine.resolve_choice(PROLOGUE, stage(PROLOGUE, "stage_1_choice_1")).accepted
    assert not engine.start(ENGINEER).accepted
    assert not engine.abandon(PROLOGUE).accepted
    assert engine.apply_external([{"kind": "set_flag", "flag": "x"}], "combat") is None
    assert len(engine.history()) == entries
    assert engine.verify_replay()

def test_reported_artifact_blocks_void(engine:NarrativeEngine, locations):
    engine.new_game()
    engine.apply_external([
        {"kind": "set_flag", "flag": "discoveredArtifact"},
        {"kind": "set_flag", "flag": "reportedArtifact"},
    ], "debug")
    engine.start(ARTIFACT)
    engine.resolve_choice(ARTIFACT, stage(ARTIFACT, "stage_1_choice_2"))
    locations.travel("mystic_sanctuary")
    node = engine.get_presentable_node(ARTIFACT)
    assert [c.choice_id for c in node.illegal_choices] == [stage(ARTIFACT, "stage_2_mystics_choice_2")]
    assert node.illegal_choices[0].reasons == ["only if not reportedArtifact"]

def test_locked_quest(engine:NarrativeEngine, collabs):
    supply_run = "quest_alliance_supply_run"
    engine.new_game()

    r = engine.start(supply_run)
    assert not r.accepted
    assert engine.diagnostics == r.diagnostics

    assert engine.apply_external([{"kind": "unlock_quest", "quest": supply_run}], "debug") is not None
    assert engine.lifecycle(supply_run) == ledger.Lifecycle.AVAILABLE
    assert supply_run in engine.available_graphs()

    assert engine.start(supply_run).accepted
    assert supply_run in engine.in_progress_graphs()
    r = engine.resolve_choice(supply_run, stage(supply_run, "stage_1_choice_1"))
    assert r.accepted
    assert list(collabs.encounters.pending) == [("combat", "colony_lane_pirates")]
    assert engine.lifecycle(supply_run) == ledger.Lifecycle.COMPLETED
    # completion outcomes
    assert engine.ledger.get_reputation("Alliance") == 5
    assert engine.ledger.get_reputation("Settlers") == 10
    assert r.entry.outcome_ids[-2:] == [f'{supply_run}.completion:0', f'{supply_run}.completion:1']

    # completed quests can't be replayed
    assert not engine.start(supply_run).accepted

def test_abandon_applies_failure_outcomes(engine:NarrativeEngine):
    valuable_cargo = "quest_syndicate_valuable_cargo"
    engine.new_game()
    engine.apply_external([{"kind": "unlock_quest", "quest": valuable_cargo}], "debug")

    r = engine.abandon(valuable_cargo)
    assert r.accepted
    assert r.entry.kind == elog.EntryKind.ABANDON
    assert engine.lifecycle(valuable_cargo) == ledger.Lifecycle.FAILED
    assert engine.ledger.get_reputation("Syndicate") == -10
    assert engine.ledger.get_reputation("Alliance") == 3

    assert not engine.abandon(valuable_cargo).accepted
    assert not engine.abandon("no_such_quest").accepted

def test_dialogue(engine:NarrativeEngine, companions):
    engine.new_game()
    r = engine.start(ENGINEER)
    assert r.accepted

    node = engine.get_presentable_node(ENGINEER)
    assert node.speaker == "engineer"
    assert node.node_id == "engineer-intro"

    engine.resolve_choice(ENGINEER, "ask-expertise")
    engine.resolve_choice(ENGINEER, "praise-work")
    assert engine.ledger.get_relationship("engineer") == 55
    assert companions.adjustments == [("engineer", 5)]

    # choice ids repeat across nodes, only the active node counts
    r = engine.resolve_choice(ENGINEER, "return-to-intro")
    assert r.active_node_id == "engineer-intro"
    assert engine.ledger.get_relationship("engineer") == 56

    engine.resolve_choice(ENGINEER, "ask-opinion")
    node = engine.get_presentable_node(ENGINEER)
    assert [c.choice_id for c in node.illegal_choices] == ["ask-danger"]

    engine.resolve_choice(ENGINEER, "return-to-intro")
    r = engine.resolve_choice(ENGINEER, "end-convo")
    assert r.active_graph_id is None
    assert engine.lifecycle(ENGINEER) == ledger.Lifecycle.COMPLETED

    # dialogue can be had again
    assert engine.start(ENGINEER).accepted
    assert engine.get_presentable_node(ENGINEER).node_id == "engineer-intro"

def test_relationship_opens_dialogue(engine:NarrativeEngine):
    engine.new_game()
    assert "engineer_heart_to_heart" not in engine.available_graphs()
    engine.apply_external([{"kind": "relationship_delta", "companion": "engineer", "amount": 20}], "gift")
    assert "engineer_heart_to_heart" in engine.available_graphs()

def test_apply_external(engine:NarrativeEngine, inventory):
    engine.new_game()
    entry = engine.apply_external([
        {"kind": "give_item", "item": "pirate_bounty", "quantity": 3},
        outs.Outcome(outs.OutcomeKind.REPUTATION_DELTA, "Settlers", 5),
    ], "combat")
    assert entry is not None
    assert entry.kind == elog.EntryKind.EXTERNAL
    assert entry.source == "combat"
    assert entry.outcome_ids == ["combat:0", ""]
    assert inventory.items["pirate_bounty"] == 3
    assert engine.ledger.get_reputation("Settlers") == 5

    entries = len(engine.history())
    assert engine.apply_external([{"kind": "set_flag", "flag": "ok"}, {"kind": "explode"}], "puzzle") is None
    assert not engine.ledger.has_flag("ok")
    assert len(engine.history()) == entries
    assert "puzzle" in engine.diagnostics[-1]

def test_remove_missing_item_diagnostic(engine:NarrativeEngine):
    engine.new_game()
    entry = engine.apply_external([{"kind": "remove_item", "item": "mysterious_artifact"}, {"kind": "set_flag", "flag": "after"}], "debug")
    assert entry is not None
    assert engine.ledger.has_flag("after")
    assert "mysterious_artifact" in engine.diagnostics[-1]

def test_refresh(collabs, progression):
    engine = NarrativeEngine(graphs_from_toml(one_node_quest("hard", requirements='{ kind = "skill_level", skill = "Technical", value = 2 }')), collabs, StepClock())
    assert engine.new_game() is None
    assert engine.lifecycle("hard") == ledger.Lifecycle.UNAVAILABLE
    entries = len(engine.history())

    # nothing changed, nothing logged
    assert engine.refresh() == []
    assert len(engine.history()) == entries

    # skills live outside the engine so it only notices on refresh
    progression.skills["Technical"] = 2
    assert engine.refresh() == ["hard"]
    assert engine.lifecycle("hard") == ledger.Lifecycle.AVAILABLE
    assert engine.history()[-1].kind == elog.EntryKind.REFRESH
    assert engine.verify_replay()

def test_history_since(engine:NarrativeEngine):
    engine.new_game()
    t = engine.history()[-1].timestamp
    engine.resolve_choice(PROLOGUE, stage(PROLOGUE, "stage_1_choice_2"))
    since = engine.history(since=t)
    assert len(since) == 1
    assert since[0].choice_id == stage(PROLOGUE, "stage_1_choice_2")

def test_serialize_restore(engine:NarrativeEngine, content, locations):
    engine.new_game()
    engine.resolve_choice(PROLOGUE, stage(PROLOGUE, "stage_1_choice_1"))
    engine.start(ENGINEER)
    engine.resolve_choice(ENGINEER, "ask-background")
    engine.apply_external([{"kind": "unlock_quest", "quest": "quest_alliance_supply_run"}], "debug")
    blob = engine.serialize()

    other_locations = collaborators.Locations()
    other_locations.unlock_location("proxima_derelict")
    other = NarrativeEngine(content, collaborators.Collaborators(locations=other_locations), StepClock(start=5000.))
    other.new_game()
    other.restore(blob)

    assert other.ledger == engine.ledger
    for graph_id in content:
        assert other.lifecycle(graph_id) == engine.lifecycle(graph_id)
    assert other.get_presentable_node(ENGINEER).node_id == "engineer-background"
    assert other.get_presentable_node().node_id == stage(PROLOGUE, "stage_2")
    assert other.event_log.to_list() == engine.event_log.to_list()
    assert other.walker.unlocked_graph_ids() == ["quest_alliance_supply_run"]
    assert other.serialize() == blob
    assert other.verify_replay()

    # both carry on the same way
    locations.travel("proxima_derelict")
    other_locations.travel("proxima_derelict")
    r1 = engine.resolve_choice(PROLOGUE, stage(PROLOGUE, "stage_2_choice_2"))
    r2 = other.resolve_choice(PROLOGUE, stage(PROLOGUE, "stage_2_choice_2"))
    assert r1.active_node_id == r2.active_node_id
    assert other.ledger == engine.ledger
    assert other.history()[-1].entry_id == engine.history()[-1].entry_id

def test_restore_ending(engine:NarrativeEngine, content):
    engine.new_game()
    engine.walker.ending = ("allianceHero", False)
    blob = engine.serialize()
    other = NarrativeEngine(content, clock=StepClock())
    other.restore(blob)
    assert other.ending == ("allianceHero", False)
    assert not other.start(ENGINEER).accepted

@pytest.mark.parametrize("tamper", [
    lambda blob: blob.clear(),
    lambda blob: blob.pop("event_log"),
    lambda blob: blob["graph_lifecycle_states"].update({"quest_ghost": "available"}),
    lambda blob: blob["graph_lifecycle_states"].update({PROLOGUE: "sleeping"}),
    lambda blob: blob["graph_lifecycle_states"].update({PROLOGUE: "completed"}),
    lambda blob: blob["active_node_ids"].clear(),
    lambda blob: blob["active_node_ids"].update({PROLOGUE: "nowhere"}),
    lambda blob: blob["active_node_ids"].update({CARGO: stage(CARGO, "stage_1")}),
    lambda blob: blob["unlocked_graphs"].append("quest_ghost"),
    lambda blob: blob["ledger"]["quest_state"].update({"quest_ghost": "available"}),
    lambda blob: blob["event_log"].reverse(),
])
def test_restore_rejects_malformed(engine:NarrativeEngine, content, tamper):
    engine.new_game()
    engine.resolve_choice(PROLOGUE, stage(PROLOGUE, "stage_1_choice_1"))
    blob = engine.serialize()
    tamper(blob)

    other = NarrativeEngine(content, clock=StepClock())
    other.new_game()
    before = other.serialize()
    with pytest.raises(SaveGameError):
        other.restore(blob)
    assert other.serialize() == before

def test_verify_replay_detects_tampering(engine:NarrativeEngine):
    engine.new_game()
    engine.resolve_choice(PROLOGUE, stage(PROLOGUE, "stage_1_choice_1"))
    assert engine.verify_replay()
    assert engine.replay() == engine.ledger

    engine.ledger.set_flag("cheated")
    assert not engine.verify_replay()

class BrokenSkills(collaborators.Progression):
    def __init__(self) -> None:
        super().__init__()
        self.broken = False

    def get_skill_level(self, skill:str) -> int:
        if self.broken:
            raise RuntimeError("skill service down")
        return super().get_skill_level(skill)

def test_collaborator_error_during_choice(clock):
    progression = FailingProgression()
    graphs = graphs_from_toml(
            one_node_quest("a", outcomes='{ kind = "set_flag", flag = "before" }, { kind = "grant_experience", amount = 10 }, { kind = "set_flag", flag = "after" }')
            + one_node_quest("b", outcomes='{ kind = "grant_experience", amount = 5 }'))
    engine = NarrativeEngine(graphs, collaborators.Collaborators(progression=progression), clock)
    engine.new_game()
    engine.start("a")

    r = engine.resolve_choice("a", "done")
    assert r.accepted
    assert any("progression service down" in d for d in r.diagnostics)
    assert engine.ledger.has_flag("before")
    assert engine.ledger.has_flag("after")
    assert engine.lifecycle("a") == ledger.Lifecycle.COMPLETED
    assert engine.verify_replay()

    # nothing is left half resolved
    assert engine.start("b").accepted
    assert engine.resolve_choice("b", "done").accepted
    assert progression.grants == [5]

def test_collaborator_error_outside_outcomes(clock):
    progression = BrokenSkills()
    graphs = graphs_from_toml(
            one_node_quest("a", outcomes='{ kind = "set_flag", flag = "f" }')
            + one_node_quest("b", requirements='{ kind = "skill_level", skill = "Piloting", value = 3 }'))
    engine = NarrativeEngine(graphs, collaborators.Collaborators(progression=progression), clock)
    engine.new_game()
    engine.start("a")

    progression.broken = True
    r = engine.resolve_choice("a", "done")
    assert not r.accepted
    assert "skill service down" in r.diagnostics[0]
    # what did change is still logged
    assert engine.ledger.has_flag("f")
    assert engine.history()[-1].kind == elog.EntryKind.CHOICE
    assert engine.verify_replay()
    assert not engine.dispatcher.in_entry

    progression.broken = False
    assert engine.refresh() == []
    assert engine.apply_external([{"kind": "set_flag", "flag": "later"}], "debug") is not None

def test_ending_makes_other_choices_illegal(clock):
    graphs = graphs_from_toml(
            one_node_quest("a")
            + one_node_quest("b", outcomes='{ kind = "trigger_ending", ending = "voidCorruption", fail = true }'))
    engine = NarrativeEngine(graphs, None, clock)
    engine.new_game()
    engine.start("a")
    engine.start("b")
    assert [c.choice_id for c in engine.get_presentable_node("a").legal_choices] == ["done"]

    engine.resolve_choice("b", "done")
    node = engine.get_presentable_node("a")
    assert node is not None
    assert node.legal_choices == []
    assert [c.choice_id for c in node.illegal_choices] == ["done"]
    assert "voidCorruption" in node.illegal_choices[0].reasons[0]
    assert not engine.resolve_choice("a", "done").accepted
