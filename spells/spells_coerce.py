"""
The coercion lattice between value kinds.

Only these edges exist, and each is applied at most once per request:

    Roll -> EvaluatedRoll -> Integer -> Number
    EvaluatedRoll -> List

Roll -> EvaluatedRoll is the only edge that draws randomness, so callers
pass in the `sample` function that performs it.
"""

from enum import Enum
from typing import Any, Callable

from spells.spells_datatypes import Roll, EvaluatedRoll, CoercionError


class Kind(str, Enum):
    ROLL = "roll"
    EVALUATED_ROLL = "evaluated-roll"
    INTEGER = "integer"
    NUMBER = "number"
    STRING = "string"
    LIST = "list"
    UNIT = "unit"


def kind_of(value: Any) -> Kind:
    match value:
        case None:
            return Kind.UNIT
        case bool():
            raise TypeError(f"not a spells value: {value!r}")
        case int():
            return Kind.INTEGER
        case float():
            return Kind.NUMBER
        case str():
            return Kind.STRING
        case list():
            return Kind.LIST
        case Roll():
            return Kind.ROLL
        case EvaluatedRoll():
            return Kind.EVALUATED_ROLL
    raise TypeError(f"not a spells value: {value!r}")


# Route from a kind to each reachable target, as the ordered list of edges.
ROUTES = {
    Kind.ROLL: {
        Kind.EVALUATED_ROLL: [Kind.EVALUATED_ROLL],
        Kind.INTEGER: [Kind.EVALUATED_ROLL, Kind.INTEGER],
        Kind.NUMBER: [Kind.EVALUATED_ROLL, Kind.INTEGER, Kind.NUMBER],
        Kind.LIST: [Kind.EVALUATED_ROLL, Kind.LIST],
    },
    Kind.EVALUATED_ROLL: {
        Kind.INTEGER: [Kind.INTEGER],
        Kind.NUMBER: [Kind.INTEGER, Kind.NUMBER],
        Kind.LIST: [Kind.LIST],
    },
    Kind.INTEGER: {
        Kind.NUMBER: [Kind.NUMBER],
    },
}


def _step(value: Any, target: Kind, sample: Callable[[Roll], EvaluatedRoll]) -> Any:
    match target:
        case Kind.EVALUATED_ROLL:
            return sample(value)
        case Kind.INTEGER:
            return value.total
        case Kind.NUMBER:
            return float(value)
        case Kind.LIST:
            return list(value.outcomes)
    raise CoercionError(kind_of(value).value, target.value)


def coerce(value: Any, target: Kind, sample: Callable[[Roll], EvaluatedRoll]) -> Any:
    """Converts `value` to the `target` kind along the lattice."""
    source = kind_of(value)
    if source == target:
        return value
    route = ROUTES.get(source, {}).get(target)
    if route is None:
        raise CoercionError(source.value, target.value)
    for edge in route:
        value = _step(value, edge, sample)
    return value


def numeric(value: Any, sample: Callable[[Roll], EvaluatedRoll]) -> int | float:
    """Coerces to the narrowest numeric kind: Integer where reachable, else Number."""
    if isinstance(value, float):
        return value
    return coerce(value, Kind.INTEGER, sample)
