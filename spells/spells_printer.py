"""
A pretty-printer for spells values and syntax trees.
"""
import pystache

from spells.spells_datatypes import (
    Roll, EvaluatedRoll, Constant, Function,
    NumberLiteral, RollLiteral, StringLiteral, Identifier,
    BinaryOp, UnaryPrefixOp, UnaryPostfixOp, Call, ListLiteral,
    If, Sequence, Assign,
)

# Binding strength of each node when printed; children that bind looser are parenthesized.
BINARY_STRENGTH = {
    "==": 3, "!=": 3, "<": 3, "<=": 3, ">": 3, ">=": 3,
    "k": 4,
    "+": 5, "-": 5,
    "*": 6, "/": 6,
    "^": 8,
}
PREFIX_STRENGTH = 7
POSTFIX_STRENGTH = 9
ATOM_STRENGTH = 10

ROLLED_TEMPLATE = "{{expr}}    Rolls: {{rolls}}    Total: {{total}}"
TOTAL_TEMPLATE = "{{expr}}    Total: {{total}}"


class Printer:
    """Formats spells values and ASTs as readable, re-loadable source text.

    With `precise=True` decimals keep every digit; otherwise they are shown
    to two places.
    """

    def __init__(self, precise: bool = False):
        self.precise = precise
        self._handlers = self._create_handlers()
        self._renderer = pystache.Renderer(escape=lambda u: u)

    def pformat(self, obj) -> str:
        """Public entry point to format a value or AST node."""
        handler = self._handlers.get(type(obj))
        if handler is None:
            return repr(obj)
        return handler(obj)

    def to_str(self, value) -> str:
        """Like pformat, but strings come out bare."""
        if isinstance(value, str):
            return value
        return self.pformat(value)

    def _create_handlers(self):
        return {
            int: str,
            float: self._pformat_float,
            str: self._pformat_str,
            list: self._pformat_list,
            type(None): lambda _: "",
            Roll: self._pformat_roll,
            EvaluatedRoll: lambda r: str(r.total),
            Constant: lambda c: self.pformat(c.value),
            Function: self._pformat_function,
            NumberLiteral: self._pformat_number_literal,
            RollLiteral: lambda n: f"{n.quantity}d{n.die}",
            StringLiteral: lambda n: self._pformat_str(n.text),
            Identifier: lambda n: n.name,
            BinaryOp: self._pformat_binary,
            UnaryPrefixOp: lambda n: f"-{self._child(n.operand, PREFIX_STRENGTH)}",
            UnaryPostfixOp: self._pformat_postfix,
            Call: lambda n: f"{n.callee}({', '.join(self.pformat(a) for a in n.args)})",
            ListLiteral: lambda n: f"[{', '.join(self.pformat(e) for e in n.elements)}]",
            If: self._pformat_if,
            Sequence: self._pformat_sequence,
            Assign: self._pformat_assign,
        }

    # --- values ---

    def _pformat_float(self, obj: float) -> str:
        if self.precise:
            return repr(obj)
        return ('%.2f' % obj).rstrip('0').rstrip('.')

    def _pformat_str(self, obj: str) -> str:
        escaped = obj.replace('\\', '\\\\').replace('"', '\\"')
        return f'"{escaped}"'

    def _pformat_list(self, obj: list) -> str:
        return f"[{', '.join(self.pformat(v) for v in obj)}]"

    def _pformat_roll(self, obj: Roll) -> str:
        return f"{obj.quantity}d{obj.die}{obj.mode or ''}"

    def _pformat_function(self, fn: Function, op: str = ":=") -> str:
        return f"{fn.name}({', '.join(fn.params)}) {op} {self._body(fn.body)}"

    # --- syntax ---

    def _pformat_number_literal(self, node: NumberLiteral) -> str:
        if isinstance(node.value, float):
            text = repr(node.value)
            if 'e' in text or 'inf' in text or 'nan' in text:
                text = ('%.17f' % node.value).rstrip('0')
                if text.endswith('.'):
                    text += '0'
            return text
        return str(node.value)

    def strength(self, node) -> int:
        match node:
            case BinaryOp(op=op):
                return BINARY_STRENGTH[op]
            case UnaryPrefixOp():
                return PREFIX_STRENGTH
            case UnaryPostfixOp():
                return POSTFIX_STRENGTH
            case If() | Sequence() | Assign():
                return 0
        return ATOM_STRENGTH

    def _child(self, node, minimum: int) -> str:
        text = self.pformat(node)
        if self.strength(node) < minimum:
            return f"({text})"
        return text

    def _pformat_binary(self, node: BinaryOp) -> str:
        power = BINARY_STRENGTH[node.op]
        if node.op == "^":
            # right-associative; the exponent may carry its own minus
            left = self._child(node.left, power + 1)
            right = self._child(node.right, PREFIX_STRENGTH)
        else:
            left = self._child(node.left, power)
            right = self._child(node.right, power + 1)
        return f"{left} {node.op} {right}"

    def _pformat_postfix(self, node: UnaryPostfixOp) -> str:
        base = node.operand
        while isinstance(base, UnaryPostfixOp):
            base = base.operand
        operand = self._child(node.operand, POSTFIX_STRENGTH)
        # "x a" must not collapse into the name "xa"
        text = f"{operand} {node.op}" if isinstance(base, Identifier) else f"{operand}{node.op}"
        # a bare trailing k would swallow a following "- n" as its count
        return f"({text})" if node.op == "k" else text

    def _pformat_if(self, node: If) -> str:
        text = f"if {self._child(node.cond, 1)} then {self._child(node.then, 1)}"
        if node.else_ is not None:
            text += f" else {self._child(node.else_, 1)}"
        return text

    def _pformat_sequence(self, node: Sequence) -> str:
        return f"{self.pformat(node.first)}; {self.pformat(node.rest)}"

    def _body(self, node) -> str:
        # outside brackets a ; would end the statement
        return self._child(node, 1) if isinstance(node, Sequence) else self.pformat(node)

    def _pformat_assign(self, node: Assign) -> str:
        if node.is_function:
            return f"{node.name}({', '.join(node.params or [])}) := {self._body(node.body)}"
        return f"{node.name} = {self._body(node.body)}"

    # --- result lines ---

    def render(self, result) -> str:
        """Formats one ExecutionResult as the line shown to the user."""
        if result.status != 'success':
            return result.format_error()
        statement = result.statement
        if isinstance(statement, Assign):
            if statement.is_function:
                return self._pformat_function(
                    Function(statement.name, list(statement.params or []), statement.body), op="="
                )
            return f"{statement.name} = {self.pformat(result.value)}"
        if result.value is None:
            return ""
        context = {
            'expr': self.pformat(statement) if statement is not None else "",
            'total': self.pformat(result.value),
        }
        if result.rolls:
            context['rolls'] = ", ".join(str(o) for r in result.rolls for o in r.outcomes)
            return self._renderer.render(ROLLED_TEMPLATE, context)
        return self._renderer.render(TOTAL_TEMPLATE, context)
