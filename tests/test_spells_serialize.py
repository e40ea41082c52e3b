import json

import pytest
import yaml

from spells.spells_serialize import dump_tome, snapshot, serialize
from spells.spells_runtime import ScriptRunner
from spells.spells_datatypes import Scope, Roll, EvaluatedRoll


@pytest.fixture
def runner(rng):
    return ScriptRunner(load_default=False, rng=rng)


def fill(runner):
    for line in [
        "x = 5",
        "f(n) := n * 2",
        "r = 2d6",
        's = "hi"',
        "h = 2.5",
        "u = if 0 then 1",
        "zero := 0",
    ]:
        assert runner.evaluate_line(line).status == 'success'


def test_dump_writes_functions_then_constants(runner):
    fill(runner)
    assert dump_tome(runner.root_scope) == (
        "f(n) := n * 2\n"
        "zero() := 0\n"
        "x = 5\n"
        "r = 2d6\n"
        's = "hi"\n'
        "h = 2.5\n"
    )


def test_dump_skips_session_and_unit_bindings(runner):
    fill(runner)
    text = dump_tome(runner.root_scope)
    assert "?" not in text
    assert "u =" not in text


def test_dump_of_empty_scope_is_empty():
    assert dump_tome(Scope()) == ""


def test_dump_loads_back_to_the_same_environment(runner):
    fill(runner)
    text = dump_tome(runner.root_scope)
    fresh = ScriptRunner(load_default=False)
    assert fresh.load_tome(text).status == 'success'
    assert dump_tome(fresh.root_scope) == text
    assert fresh.evaluate_line("f(x)").value == 10
    assert fresh.root_scope.bindings["r"].value == Roll(6, 2)


def test_default_tome_survives_a_dump():
    runner = ScriptRunner()
    runner.evaluate_line("STRENGTH = 18")
    runner.evaluate_line("gain_gp(3)")
    fresh = ScriptRunner(load_default=False)
    assert fresh.load_tome(dump_tome(runner.root_scope)).status == 'success'
    assert fresh.evaluate_line("STR").value == 4
    assert fresh.evaluate_line("spend_gp(1)").value == 2


def test_dump_keeps_decimals_exact(runner):
    runner.evaluate_line("third = 1 / 3")
    fresh = ScriptRunner(load_default=False)
    fresh.load_tome(dump_tome(runner.root_scope))
    assert fresh.evaluate_line("third").value == 1 / 3


def test_dump_writes_evaluated_rolls_as_their_total(runner, rng):
    rng.script(4, 2, 6, 5)
    runner.evaluate_line("best = 4d6k3")
    assert dump_tome(runner.root_scope) == "best = 15\n"


# --- snapshot and export ---

def test_snapshot_holds_constants_only(runner):
    fill(runner)
    assert snapshot(runner.root_scope) == {"x": 5, "r": "2d6", "s": "hi", "h": 2.5}


def test_snapshot_of_evaluated_roll(runner, rng):
    rng.script(4, 2, 6, 5)
    runner.evaluate_line("best = 4d6k3")
    assert snapshot(runner.root_scope)["best"] == {'roll': "3d6", 'outcomes': [4, 6, 5], 'total': 15}


def test_serialize_json():
    data = {"STR": 2, "roll": Roll(20, 1, "a"), "names": ["a", "b"]}
    text = serialize(data, fmt="json")
    assert json.loads(text) == {"STR": 2, "roll": "1d20a", "names": ["a", "b"]}
    assert serialize({"a": 1}, fmt="json", pretty=False) == '{"a": 1}'


def test_serialize_yaml_keeps_order():
    text = serialize({"b": 1, "a": EvaluatedRoll(Roll(6, 2), (1, 2))}, fmt="YAML")
    assert text.index("b:") < text.index("a:")
    assert yaml.safe_load(text) == {"b": 1, "a": {"roll": "2d6", "outcomes": [1, 2], "total": 3}}


def test_serialize_unknown_format():
    with pytest.raises(ValueError):
        serialize({"a": 1}, fmt="toml")


def test_fresh_session_dump_carries_defaults():
    text = dump_tome(ScriptRunner().root_scope)
    assert "modifier(stat) := floor((stat - 10) / 2)\n" in text
    assert "WEALTH_CP = 0\n" in text
    assert snapshot(ScriptRunner().root_scope)["STRENGTH"] == 10


def test_bracketed_function_body_survives_a_dump(runner):
    runner.evaluate_line("hp = 1")
    runner.evaluate_line("rest() := (hp = hp + 1; hp)")
    text = dump_tome(runner.root_scope)
    assert "rest() := (hp = hp + 1; hp)\n" in text
    fresh = ScriptRunner(load_default=False)
    assert fresh.load_tome(text).status == 'success'
    assert fresh.evaluate_line("rest").value == 2
