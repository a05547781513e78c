import toml # type: ignore
import importlib.resources
import types
from typing import Dict, Optional, Any, List, TextIO

from starquest.core.factions import FACTION_IDS

def merge(a:Dict[str, Any], b:Dict[str, Any], path:Optional[List[str]]=None) -> Dict[str, Any]:
    """ recursively merges b into a

    b[key] overrides a[key] if key present in both. raises an exception if
    b[key] and a[key] are not of the same type.

    inspired by https://stackoverflow.com/a/51653724/553580
    """

    if path is None: path = []
    for key in b:
        if key in a:
            if isinstance(a[key], dict) and isinstance(b[key], dict):
                merge(a[key], b[key], path + [str(key)])
            elif a[key].__class__ == b[key].__class__:
                a[key] = b[key]
            else:
                raise ValueError('Conflict at %s' % '.'.join(path + [str(key)]))
        else:
            a[key] = b[key]
    return a

def dict_to_simplenamespace(d:Dict[str, Any]) -> types.SimpleNamespace:
    """ Converts a dict recursively to a SimpleNamespace. """
    d = d.copy()
    for key in d:
        if isinstance(d[key], dict):
            d[key] = dict_to_simplenamespace(d[key])

    return types.SimpleNamespace(**d)

def read_data_text(name:str) -> str:
    return importlib.resources.files("starquest.data").joinpath(name).read_text(encoding="utf8")

def _is_int(x:Any) -> bool:
    return isinstance(x, int) and not isinstance(x, bool)

def check_config(config:Dict[str, Any]) -> List[str]:
    """ Checks the narrative settings hang together.

    merge only checks types against the built-in config, this checks values.

    Returns
    -------
    out : list of str
        everything wrong with config, empty if it's fine
    """

    problems:List[str] = []

    rep = config["reputation"]
    if not (_is_int(rep["MIN"]) and _is_int(rep["MAX"]) and rep["MIN"] < rep["MAX"]):
        problems.append(f'reputation MIN {rep["MIN"]!r} must be an integer below MAX {rep["MAX"]!r}')
    for pair in rep["COUPLING"]:
        for key in ("a", "b"):
            if pair.get(key) not in FACTION_IDS:
                problems.append(f'coupling faction {pair.get(key)!r} is not one of {sorted(FACTION_IDS)}')
        if pair.get("a") == pair.get("b"):
            problems.append(f'coupling couples {pair.get("a")!r} with itself')
        divisor = pair.get("divisor")
        if not _is_int(divisor) or divisor <= 0:
            problems.append(f'coupling divisor {divisor!r} for {pair.get("a")}/{pair.get("b")} must be a positive integer')
    thresholds = [t.get("threshold") for t in rep["TITLES"]]
    if not thresholds or not all(_is_int(t) for t in thresholds) or thresholds != sorted(thresholds):
        problems.append("reputation TITLES need integer thresholds, lowest first")

    rel = config["relationship"]
    if not (_is_int(rel["MIN"]) and _is_int(rel["MAX"]) and rel["MIN"] < rel["MAX"]):
        problems.append(f'relationship MIN {rel["MIN"]!r} must be an integer below MAX {rel["MAX"]!r}')
    else:
        if not _is_int(rel["INITIAL"]) or not rel["MIN"] <= rel["INITIAL"] <= rel["MAX"]:
            problems.append(f'relationship INITIAL {rel["INITIAL"]!r} is outside {rel["MIN"]}..{rel["MAX"]}')
        if not rel["LEVELS"]:
            problems.append("relationship LEVELS is empty")
        for level, bound in rel["LEVELS"].items():
            if not _is_int(bound) or not rel["MIN"] <= bound <= rel["MAX"]:
                problems.append(f'relationship level {level} at {bound!r} is outside {rel["MIN"]}..{rel["MAX"]}')

    content = config["content"]
    if not isinstance(content["MAIN_QUEST"], str) or not content["MAIN_QUEST"]:
        problems.append("content MAIN_QUEST must name a graph")
    if not content["FILES"]:
        problems.append("content FILES is empty")

    return problems

def load_config(config_file:Optional[TextIO]=None) -> types.SimpleNamespace:
    """ loads the built-in config, merged with config_file if given

    raises ValueError, leaving Settings as it was, if the result is bad """
    config = toml.loads(read_data_text("config.toml"))
    if config_file:
        override = toml.load(config_file)
        merge(config, override)

    problems = check_config(config)
    if problems:
        raise ValueError(f'bad config: {"; ".join(problems)}')

    global Settings
    Settings = dict_to_simplenamespace(config)

    return Settings

# it's ok to reload the config with a file elsewhere, but we start with the
# built-in config
Settings = load_config()
