import pytest

from spells.spells_interpreter import Evaluator
from spells.spells_runtime import StdLib
from spells.spells_parser import parse
from spells.spells_datatypes import (
    Scope, Constant, Function, Roll, EvaluatedRoll,
    UnboundNameError, ArityError, CoercionError, DomainError,
)


@pytest.fixture
def printed():
    return []


@pytest.fixture
def evaluator(rng, printed):
    ev = Evaluator(rng=rng, output=printed.append)
    StdLib(ev).install()
    return ev


@pytest.fixture
def scope():
    return Scope()


@pytest.fixture
def run(evaluator, scope):
    def _run(src):
        result = None
        for statement in parse(src):
            result = evaluator.evaluate(statement, scope)
        return result
    return _run


# --- literals and arithmetic ---

def test_roll_literal_stays_inert(run, rng, evaluator):
    assert run("2d6") == Roll(6, 2)
    assert rng.calls == []
    assert evaluator.rolls == []


def test_arithmetic_samples_rolls(run, rng, evaluator):
    rng.script(3, 4)
    assert run("2d6 + 1") == 8
    assert rng.calls == [(1, 6), (1, 6)]
    assert [r.outcomes for r in evaluator.rolls] == [(3, 4)]


def test_zero_sided_die_is_a_domain_error(run):
    with pytest.raises(DomainError):
        run("2d0")


@pytest.mark.parametrize("src, expected, kind", [
    ("7 / 2", 3.5, float),
    ("8 / 2", 4, int),
    ("-8 / 2", -4, int),
    ("2 ^ 10", 1024, int),
    ("2 ^ -1", 0.5, float),
    ("2.5 * 2", 5.0, float),
    ("10 - 15", -5, int),
    ("-(2 + 3)", -5, int),
])
def test_numeric_results(run, src, expected, kind):
    result = run(src)
    assert result == expected
    assert type(result) is kind


def test_division_by_zero(run):
    with pytest.raises(DomainError):
        run("1 / 0")
    with pytest.raises(DomainError):
        run("0 ^ -1")


def test_string_concatenation(run):
    assert run('"fire" + "ball"') == "fireball"
    with pytest.raises(CoercionError):
        run('"fire" + 1')


def test_comparisons_yield_one_or_zero(run):
    assert run("2 < 3") == 1
    assert run("2 >= 3") == 0
    assert run('"a" == "a"') == 1
    assert run("1.5 != 1.5") == 0


# --- keep, sort, advantage ---

def test_keep_highest_preserves_order(run, rng, evaluator):
    rng.script(2, 6, 1, 5)
    result = run("4d6k3")
    assert isinstance(result, EvaluatedRoll)
    assert result.outcomes == (2, 6, 5)
    assert result.roll.quantity == 3
    assert result.total == 13
    # dropped dice are not reported
    assert evaluator.rolls == [result]


def test_bare_keep_keeps_one(run, rng):
    rng.script(2, 6, 1, 5)
    assert run("4d6k").outcomes == (6,)


def test_keep_more_than_rolled_keeps_all(run, rng):
    rng.script(2, 6, 1, 5)
    assert run("4d6 k 10").outcomes == (2, 6, 1, 5)


def test_keep_negative_is_a_domain_error(run, rng):
    with pytest.raises(DomainError):
        run("4d6 k -1")
    assert rng.calls == []


def test_keep_on_a_list(run):
    assert run("[3, 9, 1, 7] k 2") == [9, 7]


def test_sort_rolls_and_lists(run, rng, evaluator):
    rng.script(5, 1, 3)
    result = run("3d6s")
    assert result.outcomes == (1, 3, 5)
    assert evaluator.rolls == [result]
    assert run("[3, 1, 2]s") == [1, 2, 3]


def test_advantage_marks_the_roll(run, rng):
    assert run("d20a") == Roll(20, 1, "a")
    assert run("d20d") == Roll(20, 1, "d")
    assert rng.calls == []


def test_opposite_modes_cancel(run):
    assert run("d20ad") == Roll(20, 1, None)
    assert run("d20da") == Roll(20, 1, None)
    assert run("d20aa") == Roll(20, 1, "a")


def test_advantage_keeps_the_higher_set(run, rng, evaluator):
    rng.script(4, 17)
    assert run("d20a + 0") == 17
    assert evaluator.rolls[0].discarded == (4,)


def test_disadvantage_keeps_the_lower_set(run, rng, evaluator):
    rng.script(4, 17)
    assert run("d20d + 0") == 4
    assert evaluator.rolls[0].discarded == (17,)


def test_advantage_compares_set_totals(run, rng, evaluator):
    rng.script(6, 1, 3, 3)
    assert run("2d6a + 0") == 7
    assert evaluator.rolls[0].outcomes == (6, 1)
    assert evaluator.rolls[0].discarded == (3, 3)


def test_advantage_on_an_evaluated_roll_draws_again(run, rng, evaluator):
    rng.script(1, 1, 1, 6, 6, 6)
    result = run("(3d6 k 3)a")
    assert result.outcomes == (6, 6, 6)
    assert result.discarded == (1, 1, 1)
    assert len(evaluator.rolls) == 1
    assert evaluator.rolls[0].outcomes == (6, 6, 6)


# --- names, functions, scopes ---

def test_constant_returns_stored_value(run, rng):
    run("x = 1d6")
    assert run("x") == Roll(6, 1)
    rng.script(1, 6)
    assert run("x + x") == 7


def test_zero_parameter_function_reevaluates_on_each_reference(run, rng, evaluator):
    run("r := 1d6")
    rng.script(2, 5)
    assert run("r + r") == 7
    assert len(evaluator.rolls) == 2


def test_function_with_parameters_referenced_bare(run):
    run("sub(a, b) := a - b")
    with pytest.raises(ArityError):
        run("sub")


def test_function_call_arity(run):
    run("sub(a, b) := a - b")
    assert run("sub(4 * 5, 4)") == 16
    with pytest.raises(ArityError) as exc:
        run("sub(1)")
    assert (exc.value.expected, exc.value.got) == (2, 1)


def test_unknown_names(run):
    with pytest.raises(UnboundNameError):
        run("nothing + 1")
    with pytest.raises(UnboundNameError):
        run("nothing(1)")


def test_calling_a_constant_is_a_type_error(run):
    run("x = 1")
    with pytest.raises(TypeError) as exc:
        run("x(2)")
    assert "constant" in str(exc.value)


def test_user_functions_shadow_builtins(run):
    run("floor(x) := 99")
    assert run("floor(1.5)") == 99


def test_functions_see_globals_not_callers(run):
    run("g := x")
    run("f(x) := g")
    with pytest.raises(UnboundNameError):
        run("f(1)")
    run("x = 10")
    assert run("f(1)") == 10


def test_assignment_inside_a_function_writes_global(run, scope):
    run("set(v) := y = v")
    assert run("set(5)") == 5
    assert scope.bindings["y"] == Constant(5)
    assert "v" not in scope.bindings


def test_function_definition_stores_the_body(run, scope):
    assert run("double(n) := n * 2") is None
    assert isinstance(scope.bindings["double"], Function)
    assert scope.bindings["double"].params == ["n"]


def test_failed_assignment_installs_nothing(run, scope):
    with pytest.raises(CoercionError):
        run('z = floor("x")')
    assert "z" not in scope


def test_recursion_through_globals(run):
    run("fact(n) := if n <= 1 then 1 else n * fact(n - 1)")
    assert run("fact(5)") == 120


# --- control flow ---

def test_conditional(run):
    assert run("if 1 then 2 else 3") == 2
    assert run("if 0 then 2 else 3") == 3
    assert run("if 0 then 2") is None
    assert run('if "" then 1 else 2') == 2
    assert run("if [] then 1 else 2") == 2


def test_conditional_samples_rolls(run, rng):
    rng.script(1)
    assert run('if d20 - 1 then "hit" else "miss"') == "miss"


def test_unit_cannot_be_used_as_a_number(run):
    with pytest.raises(CoercionError) as exc:
        run("(if 0 then 2) + 1")
    assert exc.value.from_kind == "unit"
    with pytest.raises(CoercionError):
        run("if (if 0 then 1) then 1")


def test_sequence_returns_the_last_value(run, scope):
    assert run("(x = 1; x + 1)") == 2
    assert scope.bindings["x"] == Constant(1)


# --- built-ins ---

@pytest.mark.parametrize("src, expected", [
    ("floor(3.8)", 3),
    ("ceil(1.2)", 2),
    ("floor(-1.5)", -2),
    ("quantity(10d4)", 10),
    ("dice(6d8)", 8),
    ("avg(3d8)", 13.5),
    ("avg(10d4)", 25),
    ("add(2, 3)", 5),
    ("neg(4)", -4),
])
def test_builtins(run, rng, src, expected):
    assert run(src) == expected
    assert rng.calls == []


def test_builtin_arity(run):
    with pytest.raises(ArityError) as exc:
        run("floor(1, 2)")
    assert (exc.value.name, exc.value.expected, exc.value.got) == ("floor", 1, 2)
    with pytest.raises(ArityError):
        run("floor")


def test_builtin_type_errors(run):
    with pytest.raises(CoercionError):
        run('floor("x")')
    with pytest.raises(CoercionError):
        run("quantity(3)")


def test_print_emits_and_returns(run, evaluator, printed):
    assert run("print(1 + 2)") == 3
    assert run('print("hello")') == "hello"
    assert run("print(2d6)") == Roll(6, 2)
    assert printed == ["3", "hello", "2d6"]
    assert evaluator.side_effects[0] == {'topics': ['stdout'], 'message': '3'}


def test_call_stack_survives_an_error(run, evaluator):
    run("f(x) := floor(x)")
    with pytest.raises(CoercionError):
        run('f("s")')
    assert [frame['name'] for frame in evaluator.call_stack] == ["f", "floor"]
