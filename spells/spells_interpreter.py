"""
The core spells interpreter: a tree-walking Evaluator.
"""
import inspect
import os
import random
import sys
from typing import Any, Callable, Dict, List, Optional

from spells.spells_datatypes import (
    Node, Scope, Constant, Function, Roll, EvaluatedRoll,
    NumberLiteral, RollLiteral, StringLiteral, Identifier,
    BinaryOp, UnaryPrefixOp, UnaryPostfixOp, Call, ListLiteral,
    If, Sequence, Assign,
    UnboundNameError, ArityError, DomainError,
)
from spells.spells_coerce import Kind, coerce

# Operator symbol -> built-in function name
BINARY_FUNCTIONS = {
    "+": "add", "-": "sub", "*": "mul", "/": "div", "^": "pow", "k": "keep",
    "==": "eq", "!=": "neq", "<": "lt", "<=": "lte", ">": "gt", ">=": "gte",
}
PREFIX_FUNCTIONS = {"-": "neg"}
POSTFIX_FUNCTIONS = {"a": "adv", "d": "disadv", "s": "sort", "k": "keep"}


def default_rng() -> random.Random:
    seed = os.environ.get("SPELLS_SEED")
    return random.Random(int(seed)) if seed else random.Random()


def check_argument_count(name: str, func: Callable, args: List[Any]):
    params = [
        p for p in inspect.signature(func).parameters.values()
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
    ]
    required = sum(1 for p in params if p.default is p.empty)
    if not required <= len(args) <= len(params):
        raise ArityError(name, required if len(args) < required else len(params), len(args))


class Evaluator:
    """The spells execution engine."""
    def __init__(self, rng: Optional[Any] = None, output: Optional[Callable[[str], Any]] = None):
        # Any object with randint(a, b); sampling a Roll is the only consumer.
        self.rng = rng if rng is not None else default_rng()
        self.output = output
        self.builtins: Dict[str, Callable] = {}
        self.side_effects: List[Dict] = []
        self.call_stack: List[Dict] = []
        # Every EvaluatedRoll sampled since the driver last cleared it.
        self.rolls: List[EvaluatedRoll] = []
        self.current_node = None

    def _dbg(self, *parts):
        if os.environ.get("SPELLS_DEBUG"):
            print("[DBG]", *parts, file=sys.stderr)

    def _push_frame(self, name, args, call_site_node):
        self.call_stack.append({
            'name': name,
            'args': args,
            'call_site': getattr(call_site_node, 'loc', None),
        })

    def _pop_frame(self):
        if self.call_stack:
            self.call_stack.pop()

    # --- randomness ---

    def draw(self, roll: Roll) -> tuple:
        return tuple(self.rng.randint(1, roll.die) for _ in range(roll.quantity))

    def sample(self, roll: Roll) -> EvaluatedRoll:
        """Draws fresh outcomes for `roll`. Never cached: every call rolls again."""
        if roll.die < 1:
            raise DomainError(f"a die needs at least one side, not {roll.die}")
        outcomes = self.draw(roll)
        discarded = ()
        if roll.mode is not None:
            other = self.draw(roll)
            outcomes, discarded = pick_better(roll.mode, outcomes, other)
        evaluated = EvaluatedRoll(roll, outcomes, discarded)
        self._dbg("sample", roll, "->", list(outcomes), "discarded", list(discarded))
        self.rolls.append(evaluated)
        return evaluated

    def replace_logged(self, old: EvaluatedRoll, new: EvaluatedRoll):
        """Swaps `old` for `new` in the roll log so dropped dice are not reported."""
        for i, logged in enumerate(self.rolls):
            if logged is old:
                self.rolls[i] = new
                return

    def coerce(self, value: Any, kind: Kind) -> Any:
        return coerce(value, kind, self.sample)

    def emit(self, topic: str, message: str):
        self.side_effects.append({'topics': [topic], 'message': message})
        if self.output is not None and topic == 'stdout':
            self.output(message)

    # --- evaluation ---

    def evaluate(self, node: Node, scope: Scope) -> Any:
        """Public entry point for evaluation."""
        self.current_node = node
        return self._eval(node, scope)

    def _eval(self, node: Node, scope: Scope) -> Any:
        match node:
            case NumberLiteral(value=value):
                return value
            case RollLiteral(quantity=quantity, die=die):
                if die < 1:
                    self.current_node = node
                    raise DomainError(f"a die needs at least one side, not {die}")
                return Roll(die, quantity)
            case StringLiteral(text=text):
                return text
            case Identifier(name=name):
                self.current_node = node
                return self._resolve_name(name, node, scope)
            case ListLiteral(elements=elements):
                return [self._eval(e, scope) for e in elements]
            case BinaryOp(op=op, left=left, right=right):
                lhs = self._eval(left, scope)
                rhs = self._eval(right, scope)
                self.current_node = node
                return self.call_builtin(BINARY_FUNCTIONS[op], [lhs, rhs], node)
            case UnaryPrefixOp(op=op, operand=operand):
                value = self._eval(operand, scope)
                self.current_node = node
                return self.call_builtin(PREFIX_FUNCTIONS[op], [value], node)
            case UnaryPostfixOp(op=op, operand=operand):
                value = self._eval(operand, scope)
                self.current_node = node
                return self.call_builtin(POSTFIX_FUNCTIONS[op], [value], node)
            case Call():
                return self._call(node, scope)
            case If(cond=cond, then=then, else_=else_):
                if self.truthy(self._eval(cond, scope)):
                    return self._eval(then, scope)
                if else_ is not None:
                    return self._eval(else_, scope)
                return None
            case Sequence(first=first, rest=rest):
                self._eval(first, scope)
                return self._eval(rest, scope)
            case Assign():
                return self._assign(node, scope)
        raise TypeError(f"cannot evaluate {node!r}")

    def _resolve_name(self, name: str, node: Node, scope: Scope) -> Any:
        binding = scope.get(name)
        match binding:
            case Constant(value=value):
                return value
            case Function(params=[]):
                # A bare zero-parameter function is a call.
                return self.call_function(binding, [], scope, node)
            case Function(params=params):
                raise ArityError(name, len(params), 0)
        if name in self.builtins:
            self.current_node = node
            check_argument_count(name, self.builtins[name], [])
            return self.call_builtin(name, [], node)
        raise UnboundNameError(name)

    def _call(self, node: Call, scope: Scope) -> Any:
        name = node.callee
        binding = scope.get(name)
        if binding is None and name not in self.builtins:
            self.current_node = node
            raise UnboundNameError(name)
        if isinstance(binding, Constant):
            self.current_node = node
            raise TypeError(f"'{name}' is a constant, not a function")
        args = [self._eval(a, scope) for a in node.args]
        self.current_node = node
        if isinstance(binding, Function):
            return self.call_function(binding, args, scope, node)
        return self.call_builtin(name, args, node)

    def call_function(self, function: Function, args: List[Any], scope: Scope, node: Optional[Node] = None) -> Any:
        self._dbg("call", function.name, "argc", len(args))
        # The call scope hangs off the global scope: no closures.
        call_scope = scope.call_scope(function, args)
        self._push_frame(function.name, args, node)
        result = self._eval(function.body, call_scope)
        self._pop_frame()
        return result

    def call_builtin(self, name: str, args: List[Any], node: Optional[Node] = None) -> Any:
        func = self.builtins.get(name)
        if func is None:
            raise UnboundNameError(name)
        check_argument_count(name, func, args)
        self._push_frame(name, args, node)
        result = func(*args)
        self._pop_frame()
        return result

    def _assign(self, node: Assign, scope: Scope) -> Any:
        if node.is_function:
            function = Function(node.name, list(node.params or []), node.body)
            scope.define(node.name, function)
            self._dbg("define", node.name, function.params)
            return None
        # Evaluate first: a failing body must not leave a binding behind.
        value = self._eval(node.body, scope)
        scope.define(node.name, Constant(value))
        self._dbg("bind", node.name, "=", value)
        return value

    def truthy(self, value: Any) -> bool:
        if isinstance(value, (str, list)):
            return len(value) > 0
        if isinstance(value, float):
            return value != 0.0
        return self.coerce(value, Kind.INTEGER) != 0


def pick_better(mode: str, first: tuple, second: tuple) -> tuple:
    """Returns (kept, discarded) between two draws: higher total for 'a', lower for 'd'."""
    if mode == "a":
        return (first, second) if sum(first) >= sum(second) else (second, first)
    return (first, second) if sum(first) <= sum(second) else (second, first)
