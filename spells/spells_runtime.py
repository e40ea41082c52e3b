# spells_runtime.py

import inspect
import math
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, List, Optional, Literal, Dict

from spells.spells_parser import Parser
from spells.spells_lexer import Lexer
from spells.spells_interpreter import Evaluator, pick_better
from spells.spells_coerce import Kind, kind_of, numeric
from spells.spells_datatypes import (
    Scope, Constant, Node, Assign, Roll, EvaluatedRoll,
    LexError, ParseError, UnboundNameError, ArityError, CoercionError, DomainError,
)

# ===================================================================
# 1. Built-in functions
# ===================================================================


class StdLib:
    """Contains Python implementations for all spells built-ins."""
    def __init__(self, evaluator: Evaluator):
        self.evaluator = evaluator

    def install(self):
        """Binds every `_name` method into the evaluator as built-in `name`."""
        for name, member in inspect.getmembers(self):
            if name.startswith('_') and not name.startswith('__') and callable(member):
                self.evaluator.builtins[name[1:]] = member

    # --- coercion helpers ---
    def number(self, value):
        return numeric(value, self.evaluator.sample)

    def evaluated(self, value) -> EvaluatedRoll:
        match value:
            case Roll():
                return self.evaluator.sample(value)
            case EvaluatedRoll():
                return value
        raise CoercionError(kind_of(value).value, Kind.EVALUATED_ROLL.value)

    def count(self, value) -> int:
        n = self.number(value)
        if isinstance(n, float):
            if not n.is_integer():
                raise DomainError(f"cannot keep {n} dice")
            n = int(n)
        if n < 0:
            raise DomainError(f"cannot keep a negative number of dice ({n})")
        return n

    # --- Math ---
    def _add(self, a, b):
        if isinstance(a, str) and isinstance(b, str):
            return a + b
        return self.number(a) + self.number(b)
    def _sub(self, a, b): return self.number(a) - self.number(b)
    def _mul(self, a, b): return self.number(a) * self.number(b)

    def _div(self, a, b):
        x, y = self.number(a), self.number(b)
        if y == 0:
            raise DomainError("division by zero")
        if isinstance(x, int) and isinstance(y, int) and x % y == 0:
            return x // y
        return x / y

    def _pow(self, b, e):
        x, y = self.number(b), self.number(e)
        if isinstance(x, int) and isinstance(y, int) and y < 0:
            x = float(x)
        try:
            result = x ** y
        except ZeroDivisionError:
            raise DomainError("zero cannot be raised to a negative power")
        if isinstance(result, complex):
            raise DomainError(f"{x} ^ {y} has no real value")
        return result

    def _neg(self, x): return -self.number(x)

    def _floor(self, x): return math.floor(self.number(x))
    def _ceil(self, x): return math.ceil(self.number(x))

    # --- Comparison: 1 for true, 0 for false ---
    def comparable(self, a, b):
        if isinstance(a, (str, list)) or isinstance(b, (str, list)):
            if type(a) is not type(b):
                raise CoercionError(kind_of(b).value, kind_of(a).value)
            return a, b
        return self.number(a), self.number(b)

    def _eq(self, a, b):
        x, y = self.comparable(a, b)
        return int(x == y)
    def _neq(self, a, b):
        x, y = self.comparable(a, b)
        return int(x != y)
    def _lt(self, a, b):
        x, y = self.comparable(a, b)
        return int(x < y)
    def _lte(self, a, b):
        x, y = self.comparable(a, b)
        return int(x <= y)
    def _gt(self, a, b):
        x, y = self.comparable(a, b)
        return int(x > y)
    def _gte(self, a, b):
        x, y = self.comparable(a, b)
        return int(x >= y)

    # --- Dice ---
    def roll_of(self, value) -> Roll:
        match value:
            case Roll():
                return value
            case EvaluatedRoll(roll=roll):
                return roll
        raise CoercionError(kind_of(value).value, Kind.ROLL.value)

    def _quantity(self, r): return self.roll_of(r).quantity
    def _dice(self, r): return self.roll_of(r).die

    def _avg(self, r):
        roll = self.roll_of(r)
        return roll.quantity * (roll.die + 1) / 2

    def _keep(self, value, n=1):
        count = self.count(n)
        if isinstance(value, list):
            return [value[i] for i in self.highest([self.number(v) for v in value], count)]
        evaluated = self.evaluated(value)
        outcomes = evaluated.outcomes
        kept = tuple(outcomes[i] for i in self.highest(outcomes, count))
        result = EvaluatedRoll(replace(evaluated.roll, quantity=len(kept)), kept, evaluated.discarded)
        self.evaluator.replace_logged(evaluated, result)
        return result

    def highest(self, values, count: int) -> List[int]:
        """Indices of the `count` highest values, in their original order."""
        ranked = sorted(range(len(values)), key=lambda i: (-values[i], i))
        return sorted(ranked[:count])

    def _adv(self, value): return self.with_mode(value, "a")
    def _disadv(self, value): return self.with_mode(value, "d")

    def with_mode(self, value, mode: str):
        match value:
            case Roll(mode=current):
                # The opposite marker cancels back to a plain roll.
                if current is not None and current != mode:
                    return replace(value, mode=None)
                return replace(value, mode=mode)
            case EvaluatedRoll(roll=roll, outcomes=outcomes):
                again = self.evaluator.draw(roll)
                kept, dropped = pick_better(mode, outcomes, again)
                result = EvaluatedRoll(roll, kept, value.discarded + dropped)
                self.evaluator.replace_logged(value, result)
                return result
        raise CoercionError(kind_of(value).value, Kind.ROLL.value)

    def _sort(self, value):
        if isinstance(value, list):
            return sorted(value, key=self.number)
        evaluated = self.evaluated(value)
        result = replace(evaluated, outcomes=tuple(sorted(evaluated.outcomes)))
        self.evaluator.replace_logged(evaluated, result)
        return result

    # --- I/O ---
    def _print(self, value):
        from spells.spells_printer import Printer
        self.evaluator.emit('stdout', Printer().to_str(value))
        return value


# ===================================================================
# 2. Script Execution
# ===================================================================

@dataclass
class ExecutionResult:
    """The structured result of evaluating a line or loading a tome."""
    status: Literal['success', 'error']
    value: Any = None
    rolls: List[EvaluatedRoll] = field(default_factory=list)
    statement: Optional[Node] = None
    error_message: Optional[str] = None
    error_token: Optional[Dict[str, Any]] = None
    errors: List[str] = field(default_factory=list)
    side_effects: List[Dict] = field(default_factory=list)

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_token and 'line' in self.error_token:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            if not msg.startswith("Error on line "):
                col_info = f", col {col}" if col is not None else ""
                return f"Error on line {line}{col_info}: {msg}"
        return msg


class ScriptRunner:
    """Parses and evaluates spells source against one global scope."""

    _default_ast: Optional[List[Node]] = None

    def __init__(self, load_default: bool = True, rng=None, output=None):
        self.root_scope = Scope()
        self.evaluator = Evaluator(rng=rng, output=output)
        StdLib(self.evaluator).install()
        if load_default:
            self._initialize()

    def _initialize(self):
        """Loads default.tome into the root scope."""
        # AST is parsed once and cached on the class
        if ScriptRunner._default_ast is None:
            path = Path(__file__).parent / "default.tome"
            source = path.read_text(encoding="utf-8")
            try:
                ScriptRunner._default_ast = Parser(Lexer(source)).parse_program()
            except SyntaxError as e:
                raise RuntimeError(f"Failed to parse default.tome: {e}") from e

        # Evaluation happens for each instance
        for statement in ScriptRunner._default_ast:
            self.evaluator.evaluate(statement, self.root_scope)
        self.evaluator.rolls.clear()

    def _reset(self):
        self.evaluator.side_effects = []
        self.evaluator.call_stack.clear()
        self.evaluator.rolls = []

    def _parse(self, source: str) -> List[Node]:
        return Parser(Lexer(source)).parse_program()

    def evaluate_line(self, source: str) -> ExecutionResult:
        """Evaluates every statement in `source`; the result describes the last one."""
        self._reset()
        try:
            statements = self._parse(source)
        except SyntaxError as e:
            return self._error(e, source)

        result = ExecutionResult(status='success', side_effects=self.evaluator.side_effects)
        for statement in statements:
            try:
                value = self._run_statement(statement)
            except Exception as e:
                failed = self._error(e, source)
                failed.rolls = list(self.evaluator.rolls)
                failed.statement = statement
                return failed
            result.value = value
            result.statement = statement
        result.rolls = list(self.evaluator.rolls)
        return result

    def _evaluate_statement(self, statement: Node) -> Any:
        """Evaluates one statement; if it fails, the bindings are put back as they were."""
        self.evaluator.call_stack.clear()
        saved = dict(self.root_scope.bindings)
        try:
            return self.evaluator.evaluate(statement, self.root_scope)
        except Exception:
            self.root_scope.bindings.clear()
            self.root_scope.bindings.update(saved)
            raise

    def _run_statement(self, statement: Node) -> Any:
        # Rolls shown for a line belong to its last statement.
        self.evaluator.rolls = []
        value = self._evaluate_statement(statement)
        # A bare roll at top level is rolled.
        if isinstance(value, Roll) and not isinstance(statement, Assign):
            value = self.evaluator.sample(value).total
        self.root_scope.define("?", Constant(value))
        return value

    def load_tome(self, source: str, stop_on_error: bool = False) -> ExecutionResult:
        """Evaluates a tome into the root scope; `?` is left untouched."""
        self._reset()
        try:
            statements = self._parse(source)
        except SyntaxError as e:
            return self._error(e, source)

        errors = []
        first_error = None
        for statement in statements:
            try:
                self._evaluate_statement(statement)
            except Exception as e:
                failed = self._error(e, source)
                errors.append(failed.format_error())
                first_error = first_error or failed
                if stop_on_error:
                    break
        self.evaluator.rolls.clear()
        if first_error is not None:
            first_error.errors = errors
            first_error.side_effects = self.evaluator.side_effects
            return first_error
        return ExecutionResult(status='success', side_effects=self.evaluator.side_effects)

    def _error(self, e: Exception, source: str) -> ExecutionResult:
        node = getattr(self.evaluator, 'current_node', None)
        err_msg, err_token = self._format_runtime_error(e, source, node)
        self.evaluator.side_effects.append({'topics': ['stderr'], 'message': err_msg})
        return ExecutionResult(
            status='error',
            error_message=err_msg,
            error_token=err_token,
            side_effects=self.evaluator.side_effects,
        )

    def _format_runtime_error(self, e, source: str, node) -> tuple[str, Optional[dict]]:
        line = col = None
        match e:
            case LexError() | ParseError():
                kind = type(e).__name__
                line, col = e.line, e.col
                msg = f"{kind}: {e.msg}"
            case UnboundNameError() | ArityError() | CoercionError() | DomainError():
                msg = f"{type(e).__name__}: {e}"
            case RecursionError():
                msg = "RecursionError: too many nested calls"
            case TypeError():
                msg = f"TypeError: {e}"
            case _:
                msg = f"InternalError: {e}"

        if line is None:
            loc = getattr(node, 'loc', None) if node is not None else None
            if loc:
                line, col = loc

        token = None
        if line is not None:
            token = {'line': line, 'col': col}
            context = self._source_context(source, line, col)
            if context:
                msg = f"{msg}\n{context}"

        st = self._format_stacktrace()
        if st and not isinstance(e, SyntaxError):
            msg += "\n" + st
        return msg, token

    def _source_context(self, source: str, line: int, col: Optional[int], radius: int = 1) -> str:
        lines = source.splitlines()
        if not line or line < 1 or line > len(lines):
            return ""
        start = max(1, line - radius)
        end = min(len(lines), line + radius)
        width = len(str(end))
        out = []
        for i in range(start, end + 1):
            prefix = ">" if i == line else " "
            ln = str(i).rjust(width)
            out.append(f"{prefix} {ln} | {lines[i - 1]}")
            if i == line and col is not None:
                caret = " " * max(col - 1, 0)
                out.append(f"  {' ' * width} | {caret}^")
        return "\n".join(out)

    def _format_stacktrace(self) -> str:
        stack = self.evaluator.call_stack
        if not stack:
            return ""
        from spells.spells_printer import Printer
        pf = Printer().pformat
        frames = []
        for frame in stack:
            name = frame.get('name') or '<call>'
            args = ", ".join(pf(a) for a in frame.get('args') or [])
            frames.append(f"{name}({args})")
        return "Stacktrace: " + " -> ".join(frames)
