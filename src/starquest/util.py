""" Utility functions shared across Star Quest """

import re
import logging
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

def fullname(o:Any) -> str:
    # from https://stackoverflow.com/a/2020083/553580
    # Python makes no guarantees as to whether the __module__ special
    # attribute is defined, so we take a more circumspect approach.

    if isinstance(o, type):
        klass = o
    else:
        klass = o.__class__

    module = klass.__module__
    if module is None or module == str.__class__.__module__:
        return klass.__qualname__  # Avoid reporting __builtin__
    else:
        return module + '.' + klass.__qualname__

def clip(x:int, min_x:int, max_x:int) -> int:
    return min_x if x < min_x else max_x if x > max_x else x

def trunc_div(n:int, d:int) -> int:
    """ integer division rounding toward zero

    e.g. trunc_div(-10, 3) == -3 where -10 // 3 == -4
    """
    q = abs(n) // abs(d)
    return q if (n < 0) == (d < 0) else -q

RE_CAMEL_TO_SNAKE_PHASE_1 = re.compile(r'(.)([A-Z][a-z]+)')
RE_CAMEL_TO_SNAKE_PHASE_2 = re.compile(r'([a-z0-9])([A-Z])')
def camel_to_snake(name: str) -> str:
    name = RE_CAMEL_TO_SNAKE_PHASE_1.sub(r'\1_\2', name)
    return RE_CAMEL_TO_SNAKE_PHASE_2.sub(r'\1_\2', name).lower()

T = TypeVar('T')

def enum_by_name(klass:type[T], name:str) -> T:
    """ looks up an enum member by case-insensitive snake or camel name.

    "skill_level", "SKILL_LEVEL" and "SkillLevel" all map to
    RequirementKind.SKILL_LEVEL """
    key = camel_to_snake(name).upper()
    try:
        return klass[key] # type: ignore[index]
    except KeyError as ke:
        raise ValueError(f'unknown {klass.__name__} "{name}"') from ke
