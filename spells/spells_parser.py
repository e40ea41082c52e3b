"""
Builds spells ASTs from a token stream.

A precedence-climbing parser. Binding strength, weakest first:

    ;            statement separator; a sequence inside brackets
    = :=         assignment, right-associative
    == != < <= > >=
    k            keep, left-associative
    + -
    * /
    -            unary minus
    ^            right-associative
    a d s k      postfix
    calls, grouping, lists, literals, if/then/else
"""

from typing import Iterable, List, Optional

from spells.spells_datatypes import (
    ParseError, Node,
    NumberLiteral, RollLiteral, StringLiteral, Identifier,
    BinaryOp, UnaryPrefixOp, UnaryPostfixOp, Call, ListLiteral,
    If, Sequence, Assign,
)
from spells.spells_lexer import Token, Lexer

# Binary operators by binding power; higher binds tighter.
BINARY_POWER = {
    "==": 1, "!=": 1, "<": 1, "<=": 1, ">": 1, ">=": 1,
    "k": 2,
    "+": 3, "-": 3,
    "*": 4, "/": 4,
}


class Parser:
    def __init__(self, tokens: Iterable[Token]):
        self.tokens: List[Token] = list(tokens)
        if not self.tokens or self.tokens[-1].kind != "eof":
            last = self.tokens[-1] if self.tokens else None
            self.tokens.append(Token("eof", "", last.line if last else 1, last.col if last else 1))
        self.pos = 0
        self.depth = 0

    # --- token helpers ---

    def _index(self, offset: int = 0) -> int:
        """Index of the offset-th significant token; newlines are insignificant inside brackets."""
        last = len(self.tokens) - 1
        i = self.pos
        seen = 0
        while i < last:
            if self.depth > 0 and self.tokens[i].kind == "newline":
                i += 1
                continue
            if seen == offset:
                return i
            seen += 1
            i += 1
        return last

    def peek(self, offset: int = 0) -> Token:
        return self.tokens[self._index(offset)]

    def next(self) -> Token:
        i = self._index()
        tok = self.tokens[i]
        if tok.kind != "eof":
            self.pos = i + 1
        return tok

    def at(self, kind: str, text: Optional[str] = None, offset: int = 0) -> bool:
        tok = self.peek(offset)
        return tok.kind == kind and (text is None or tok.text == text)

    def expect(self, kind: str, text: Optional[str] = None, what: Optional[str] = None) -> Token:
        tok = self.peek()
        if tok.kind != kind or (text is not None and tok.text != text):
            raise self.error(what or (repr(text) if text else kind), tok)
        return self.next()

    def skip_newlines(self):
        while self.tokens[self.pos].kind == "newline":
            self.pos += 1

    def error(self, expected: str, tok: Token) -> ParseError:
        return ParseError(expected, tok.describe(), tok.line, tok.col)

    def starts_operand(self, offset: int = 0) -> bool:
        tok = self.peek(offset)
        if tok.kind in ("number", "roll", "string", "identifier", "postfix"):
            return True
        if tok.kind == "keyword":
            return tok.text == "if"
        return tok.text in ("(", "[", "-") and tok.kind in ("punct", "operator")

    # --- statements ---

    def parse_program(self) -> List[Node]:
        """Parses every top-level statement, separated by newlines or ';'."""
        statements = []
        while True:
            while self.at("newline") or self.at("punct", ";"):
                self.next()
            if self.at("eof"):
                return statements
            statements.append(self.statement())
            if not (self.at("newline") or self.at("punct", ";") or self.at("eof")):
                raise self.error("end of statement", self.peek())

    def statement(self) -> Node:
        return self.assignment()

    def sequence(self) -> Node:
        first = self.assignment()
        if self.at("punct", ";"):
            tok = self.next()
            self.skip_newlines()
            rest = self.sequence()
            return Sequence(first, rest, loc=(tok.line, tok.col))
        return first

    def assignment(self) -> Node:
        start = self.peek()
        target = self.comparison()
        tok = self.peek()
        if tok.kind != "operator" or tok.text not in ("=", ":="):
            return target
        self.next()
        self.skip_newlines()
        loc = (start.line, start.col)

        if tok.text == "=":
            if isinstance(target, Call):
                raise ParseError("':=' to define a function", "'='", tok.line, tok.col)
            if not isinstance(target, Identifier):
                raise ParseError("a name before '='", "an expression", start.line, start.col)
            return Assign(target.name, None, self.assignment(), False, loc=loc)

        if isinstance(target, Identifier):
            params = []
        elif isinstance(target, Call) and all(isinstance(a, Identifier) for a in target.args):
            params = [a.name for a in target.args]
        else:
            raise ParseError("a name or name(params) before ':='", "an expression", start.line, start.col)
        name = target.name if isinstance(target, Identifier) else target.callee
        return Assign(name, params, self.assignment(), True, loc=loc)

    # --- expressions ---

    def comparison(self) -> Node:
        return self.binary(1)

    def binary(self, min_power: int) -> Node:
        left = self.unary()
        while True:
            tok = self.peek()
            op = self._binary_op(tok)
            if op is None:
                return left
            power = BINARY_POWER[op]
            if power < min_power:
                return left
            if op == "k" and not self.starts_operand(1):
                # bare k: postfix keep-highest-one
                self.next()
                left = UnaryPostfixOp("k", left, loc=(tok.line, tok.col))
                continue
            self.next()
            self.skip_newlines()
            right = self.binary(power + 1)
            left = BinaryOp(op, left, right, loc=(tok.line, tok.col))

    def _binary_op(self, tok: Token) -> Optional[str]:
        if tok.kind == "operator" and tok.text in BINARY_POWER:
            return tok.text
        if tok.kind == "postfix" and tok.text == "k":
            return "k"
        return None

    def unary(self) -> Node:
        if self.at("operator", "-"):
            tok = self.next()
            return UnaryPrefixOp("-", self.unary(), loc=(tok.line, tok.col))
        return self.power()

    def power(self) -> Node:
        base = self.postfix()
        if self.at("operator", "^"):
            tok = self.next()
            self.skip_newlines()
            exponent = self.unary()
            return BinaryOp("^", base, exponent, loc=(tok.line, tok.col))
        return base

    def postfix(self) -> Node:
        node = self.primary()
        while self.at("postfix") and self.peek().text in "ads":
            tok = self.next()
            node = UnaryPostfixOp(tok.text, node, loc=(tok.line, tok.col))
        return node

    def primary(self) -> Node:
        tok = self.peek()
        loc = (tok.line, tok.col)
        match tok.kind:
            case "number":
                self.next()
                value = float(tok.text) if "." in tok.text else int(tok.text)
                return NumberLiteral(value, loc=loc)
            case "roll":
                self.next()
                quantity, die = tok.text.split("d")
                return RollLiteral(int(quantity) if quantity else 1, int(die), loc=loc)
            case "string":
                self.next()
                return StringLiteral(tok.text, loc=loc)
            case "identifier" | "postfix":
                self.next()
                if self.tokens[self.pos].kind == "punct" and self.tokens[self.pos].text == "(":
                    return self.call(tok)
                return Identifier(tok.text, loc=loc)
            case "keyword" if tok.text == "if":
                return self.conditional()
            case "punct" if tok.text == "(":
                self.next()
                self.depth += 1
                try:
                    inner = self.sequence()
                    self.expect("punct", ")", "')'")
                finally:
                    self.depth -= 1
                return inner
            case "punct" if tok.text == "[":
                self.next()
                self.depth += 1
                try:
                    elements = self.comma_list("]")
                finally:
                    self.depth -= 1
                return ListLiteral(elements, loc=loc)
        raise self.error("an expression", tok)

    def call(self, name_tok: Token) -> Call:
        self.next()  # '('
        self.depth += 1
        try:
            args = self.comma_list(")")
        finally:
            self.depth -= 1
        return Call(name_tok.text, args, loc=(name_tok.line, name_tok.col))

    def comma_list(self, closer: str) -> List[Node]:
        items = []
        if self.at("punct", closer):
            self.next()
            return items
        while True:
            items.append(self.assignment())
            if self.at("punct", ","):
                self.next()
                continue
            self.expect("punct", closer, f"',' or {closer!r}")
            return items

    def conditional(self) -> If:
        tok = self.next()  # 'if'
        self.skip_newlines()
        cond = self.assignment()
        self.skip_newlines()
        self.expect("keyword", "then", "'then'")
        self.skip_newlines()
        then = self.assignment()
        else_ = None
        if self._else_follows():
            self.skip_newlines()
            self.next()  # 'else'
            self.skip_newlines()
            else_ = self.assignment()
        return If(cond, then, else_, loc=(tok.line, tok.col))

    def _else_follows(self) -> bool:
        i = self.pos
        while self.tokens[i].kind == "newline":
            i += 1
        tok = self.tokens[i]
        return tok.kind == "keyword" and tok.text == "else"


def parse(source: str) -> List[Node]:
    """Lexes and parses `source` into a list of top-level statements."""
    return Parser(Lexer(source)).parse_program()
