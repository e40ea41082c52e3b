"""
Defines the core data types for the spells language runtime.

This module provides the error taxonomy, the AST node classes produced by
the parser, the runtime value classes that have no Python-native
counterpart (rolls), the two binding kinds and the Scope that holds them.

Plain values use Python natives: Integer is `int`, Number is `float`,
String is `str`, List is `list` and the unit result is `None`.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Tuple


# =================================================================
# Errors
# =================================================================

class LexError(SyntaxError):
    def __init__(self, char: str, line: int, col: int):
        super().__init__(f"unexpected character {char!r}")
        self.char = char
        self.line = line
        self.col = col


class ParseError(SyntaxError):
    def __init__(self, expected: str, found: str, line: Optional[int] = None, col: Optional[int] = None):
        super().__init__(f"expected {expected} but found {found}")
        self.expected = expected
        self.found = found
        self.line = line
        self.col = col


class UnboundNameError(NameError):
    def __init__(self, name: str):
        super().__init__(f"'{name}' is not defined")
        self.name = name


class ArityError(TypeError):
    def __init__(self, name: str, expected: int, got: int):
        super().__init__(f"{name} expects {expected} argument{'' if expected == 1 else 's'}, got {got}")
        self.name = name
        self.expected = expected
        self.got = got


class CoercionError(TypeError):
    def __init__(self, from_kind: str, to_kind: str):
        super().__init__(f"{from_kind} cannot be used as {to_kind}")
        self.from_kind = from_kind
        self.to_kind = to_kind


class DomainError(ValueError):
    pass


# =================================================================
# AST
# =================================================================

Loc = Optional[Tuple[int, int]]


class Node:
    """Base class for AST nodes. `loc` is (line, col) of the first token."""
    pass


@dataclass
class NumberLiteral(Node):
    value: Any
    loc: Loc = field(default=None, compare=False, repr=False)


@dataclass
class RollLiteral(Node):
    quantity: int
    die: int
    loc: Loc = field(default=None, compare=False, repr=False)


@dataclass
class StringLiteral(Node):
    text: str
    loc: Loc = field(default=None, compare=False, repr=False)


@dataclass
class Identifier(Node):
    name: str
    loc: Loc = field(default=None, compare=False, repr=False)


@dataclass
class BinaryOp(Node):
    op: str
    left: Node
    right: Node
    loc: Loc = field(default=None, compare=False, repr=False)


@dataclass
class UnaryPrefixOp(Node):
    op: str
    operand: Node
    loc: Loc = field(default=None, compare=False, repr=False)


@dataclass
class UnaryPostfixOp(Node):
    op: str
    operand: Node
    loc: Loc = field(default=None, compare=False, repr=False)


@dataclass
class Call(Node):
    callee: str
    args: List[Node]
    loc: Loc = field(default=None, compare=False, repr=False)


@dataclass
class ListLiteral(Node):
    elements: List[Node]
    loc: Loc = field(default=None, compare=False, repr=False)


@dataclass
class If(Node):
    cond: Node
    then: Node
    else_: Optional[Node] = None
    loc: Loc = field(default=None, compare=False, repr=False)


@dataclass
class Sequence(Node):
    first: Node
    rest: Node
    loc: Loc = field(default=None, compare=False, repr=False)


@dataclass
class Assign(Node):
    name: str
    params: Optional[List[str]]
    body: Node
    is_function: bool
    loc: Loc = field(default=None, compare=False, repr=False)


# =================================================================
# Rolls
# =================================================================

@dataclass(frozen=True)
class Roll:
    """An unresolved dice expression. No randomness has been drawn.

    `mode` is "a" (advantage), "d" (disadvantage) or None.
    """
    die: int
    quantity: int = 1
    mode: Optional[str] = None

    def __repr__(self) -> str:
        from spells.spells_printer import Printer
        return f"Roll({Printer().pformat(self)})"


@dataclass(frozen=True)
class EvaluatedRoll:
    """A Roll paired with the outcomes sampled for it."""
    roll: Roll
    outcomes: Tuple[int, ...]
    discarded: Tuple[int, ...] = ()

    @property
    def total(self) -> int:
        return sum(self.outcomes)

    def __repr__(self) -> str:
        from spells.spells_printer import Printer
        return f"EvaluatedRoll({Printer().pformat(self.roll)} -> {list(self.outcomes)!r})"


# =================================================================
# Bindings and Scope
# =================================================================

@dataclass
class Constant:
    value: Any


@dataclass
class Function:
    name: str
    params: List[str]
    body: Node


class Scope:
    """A table of bindings with an optional parent.

    The global scope has no parent. A call scope is a child of the global
    scope holding the call's parameters; names not found there resolve
    against the global scope only, never against the caller.
    """
    def __init__(self, parent: Optional['Scope'] = None):
        self.bindings: Dict[str, Any] = {}
        self.parent = parent

    @property
    def root(self) -> 'Scope':
        scope = self
        while scope.parent is not None:
            scope = scope.parent
        return scope

    def define(self, name: str, binding) -> None:
        """Inserts or overwrites a binding in the global scope."""
        self.root.bindings[name] = binding

    def lookup(self, name: str):
        owner = self.find_owner(name)
        if owner is None:
            raise UnboundNameError(name)
        return owner.bindings[name]

    def find_owner(self, name: str) -> Optional['Scope']:
        if name in self.bindings:
            return self
        if self.parent is not None:
            return self.parent.find_owner(name)
        return None

    def call_scope(self, function: Function, args: List[Any]) -> 'Scope':
        if len(args) != len(function.params):
            raise ArityError(function.name, len(function.params), len(args))
        scope = Scope(parent=self.root)
        for param, value in zip(function.params, args):
            scope.bindings[param] = Constant(value)
        return scope

    def get(self, name: str, default: Any = None) -> Any:
        owner = self.find_owner(name)
        if owner is None:
            return default
        return owner.bindings[name]

    def __contains__(self, name: Any) -> bool:
        return isinstance(name, str) and self.find_owner(name) is not None

    def __repr__(self) -> str:
        keys = ', '.join(self.bindings.keys())
        parent_id = f", parent=#{id(self.parent)}" if self.parent else ""
        return f"<Scope bindings=[{keys}]{parent_id}>"
