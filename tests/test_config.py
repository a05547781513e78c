import io

import pytest
import toml # type: ignore

from starquest import config
from starquest.core import ledger

def test_builtin_settings():
    assert config.Settings.reputation.MIN == -100
    assert config.Settings.reputation.MAX == 100
    assert config.Settings.relationship.INITIAL == 50
    assert "quests.toml" in config.Settings.content.FILES
    pairs = {(c["a"], c["b"]): c["divisor"] for c in config.Settings.reputation.COUPLING}
    assert pairs == {("Alliance", "Syndicate"): 3, ("Mystics", "VoidEntity"): 2}

def test_merge():
    a = {"x": 1, "nested": {"y": 2, "z": 3}}
    config.merge(a, {"nested": {"y": 5}, "w": 4})
    assert a == {"x": 1, "nested": {"y": 5, "z": 3}, "w": 4}

    with pytest.raises(ValueError):
        config.merge({"x": 1}, {"x": "one"})

def test_override_file():
    config.load_config(io.StringIO("[reputation]\nMAX = 50\n"))
    assert config.Settings.reputation.MAX == 50
    assert config.Settings.reputation.MIN == -100

    world = ledger.WorldLedger()
    assert world.set_reputation("Alliance", 80) == 50

def test_bad_override_type():
    with pytest.raises(ValueError):
        config.load_config(io.StringIO('[reputation]\nMAX = "lots"\n'))

@pytest.mark.parametrize("override,complaint", [
    ('[[reputation.COUPLING]]\na = "Alliance"\nb = "Syndicate"\ndivisor = 0\n', "divisor"),
    ('[[reputation.COUPLING]]\na = "Alliance"\nb = "Pirates"\ndivisor = 3\n', "Pirates"),
    ('[[reputation.COUPLING]]\na = "Mystics"\nb = "Mystics"\ndivisor = 2\n', "itself"),
    ('[reputation]\nMIN = 100\nMAX = -100\n', "reputation MIN"),
    ('[relationship]\nINITIAL = 150\n', "INITIAL"),
    ('[relationship]\nMIN = 60\n', "INITIAL"),
    ('[relationship.LEVELS]\nSmitten = 120\n', "Smitten"),
    ('[content]\nMAIN_QUEST = ""\n', "MAIN_QUEST"),
])
def test_bad_override_values(override, complaint):
    with pytest.raises(ValueError) as e:
        config.load_config(io.StringIO(override))
    assert complaint in str(e.value)
    # the previous settings are untouched
    assert config.Settings.relationship.INITIAL == 50
    pairs = {(c["a"], c["b"]): c["divisor"] for c in config.Settings.reputation.COUPLING}
    assert pairs == {("Alliance", "Syndicate"): 3, ("Mystics", "VoidEntity"): 2}

def test_check_builtin_config():
    assert config.check_config(toml.loads(config.read_data_text("config.toml"))) == []
