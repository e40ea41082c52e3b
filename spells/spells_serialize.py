from __future__ import annotations

import json
from typing import Any

# YAML is already a project dependency (environment export)
import yaml

from spells.spells_datatypes import Scope, Constant, Function, Roll, EvaluatedRoll
from spells.spells_printer import Printer

# Bindings that describe the session, not the character.
SESSION_NAMES = ("?",)


# --------------------------
# Tome text
# --------------------------

def dump_tome(scope: Scope) -> str:
    """Writes the global bindings of `scope` as tome text that loads back to the same state.

    Functions come first, in definition order, then constants. Unit-valued
    constants have no literal form and are left out.
    """
    printer = Printer(precise=True)
    bindings = scope.root.bindings
    functions = []
    constants = []
    for name, binding in bindings.items():
        if name in SESSION_NAMES:
            continue
        match binding:
            case Function():
                functions.append(printer.pformat(binding))
            case Constant(value=None):
                continue
            case Constant(value=value):
                constants.append(f"{name} = {printer.pformat(value)}")
    lines = functions + constants
    return "\n".join(lines) + ("\n" if lines else "")


# --------------------------
# Export
# --------------------------

def _to_builtin(value: Any) -> Any:
    match value:
        case list():
            return [_to_builtin(v) for v in value]
        case Roll():
            return Printer().pformat(value)
        case EvaluatedRoll(roll=roll, outcomes=outcomes):
            return {'roll': Printer().pformat(roll), 'outcomes': list(outcomes), 'total': value.total}
    return value


def snapshot(scope: Scope) -> dict:
    """The constants of the global scope as plain Python data."""
    out = {}
    for name, binding in scope.root.bindings.items():
        if name in SESSION_NAMES or not isinstance(binding, Constant) or binding.value is None:
            continue
        out[name] = _to_builtin(binding.value)
    return out


def serialize(value: Any, *, fmt: str, pretty: bool = True) -> str:
    """
    Convert a native Python/spells value into a textual representation.
    - fmt: 'json' | 'yaml'
    """
    f = (fmt or '').lower()
    built = _to_builtin(value) if not isinstance(value, dict) else {k: _to_builtin(v) for k, v in value.items()}
    if f == 'json':
        return json.dumps(built, ensure_ascii=False, indent=2 if pretty else None)
    if f == 'yaml':
        return yaml.safe_dump(built, sort_keys=False)
    raise ValueError(f"Unsupported serialization format: {fmt}")
