"""
Converts spells source text into tokens.
"""

import re
from dataclasses import dataclass
from typing import Iterator

from spells.spells_datatypes import LexError

KEYWORDS = ("if", "then", "else")
POSTFIX_LETTERS = "adsk"

# Longest operators first so ':=' and '==' win over ':' and '='.
OPERATORS = (":=", "==", "!=", "<=", ">=", "+", "-", "*", "/", "^", "=", "<", ">")
PUNCTUATION = "()[],;"

_ROLL = re.compile(r"[0-9]*d[0-9]+")
_NUMBER = re.compile(r"[0-9]+(\.[0-9]+)?")
_WORD = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_STRING = re.compile(r'"((?:[^"\\\n]|\\.)*)"')
_SPACE = re.compile(r"[ \t\r]+")
_ESCAPE = re.compile(r"\\(.)")


@dataclass(frozen=True)
class Token:
    kind: str  # number, roll, string, identifier, postfix, keyword, operator, punct, newline, eof
    text: str
    line: int
    col: int

    def ends_operand(self) -> bool:
        return self.kind in ("number", "roll", "postfix") or self.text in (")", "]")

    def describe(self) -> str:
        if self.kind == "eof":
            return "end of input"
        if self.kind == "newline":
            return "end of line"
        return repr(self.text)


class Lexer:
    """A lazy token stream over `text`. Iterating again starts over."""

    def __init__(self, text: str):
        self.text = text

    def __iter__(self) -> Iterator[Token]:
        return self.tokens()

    def tokens(self) -> Iterator[Token]:
        text = self.text
        pos = 0
        line = 1
        line_start = 0
        prev = None
        adjacent = False

        while pos < len(text):
            col = pos - line_start + 1
            c = text[pos]

            m = _SPACE.match(text, pos)
            if m:
                pos = m.end()
                adjacent = False
                continue

            if c == "#":
                end = text.find("\n", pos)
                pos = len(text) if end == -1 else end
                adjacent = False
                continue

            if c == "\n":
                prev = Token("newline", "\n", line, col)
                yield prev
                pos += 1
                line += 1
                line_start = pos
                adjacent = False
                continue

            # A dice letter glued onto an operand is a postfix operator: 4d6k3, d20a, (2d6)s
            if adjacent and prev is not None and prev.ends_operand() and c in POSTFIX_LETTERS:
                tok = Token("postfix", c, line, col)
                pos += 1
            elif (m := _ROLL.match(text, pos)) and not _continues_word(text, m.end()):
                tok = Token("roll", m.group(), line, col)
                pos = m.end()
            elif m := _NUMBER.match(text, pos):
                tok = Token("number", m.group(), line, col)
                pos = m.end()
            elif m := _WORD.match(text, pos):
                word = m.group()
                if word in KEYWORDS:
                    kind = "keyword"
                elif len(word) == 1 and word in POSTFIX_LETTERS:
                    kind = "postfix"
                else:
                    kind = "identifier"
                tok = Token(kind, word, line, col)
                pos = m.end()
            elif m := _STRING.match(text, pos):
                tok = Token("string", _ESCAPE.sub(r"\1", m.group(1)), line, col)
                pos = m.end()
            elif c == "?":
                tok = Token("identifier", "?", line, col)
                pos += 1
            else:
                op = next((o for o in OPERATORS if text.startswith(o, pos)), None)
                if op is not None:
                    tok = Token("operator", op, line, col)
                    pos += len(op)
                elif c in PUNCTUATION:
                    tok = Token("punct", c, line, col)
                    pos += 1
                else:
                    raise LexError(c, line, col)

            prev = tok
            adjacent = True
            yield tok

        yield Token("eof", "", line, len(text) - line_start + 1)


def _continues_word(text: str, end: int) -> bool:
    """True when a roll-shaped prefix is really the start of a longer identifier (d20x, d4_max)."""
    if end >= len(text):
        return False
    c = text[end]
    if c in POSTFIX_LETTERS:
        return end + 1 < len(text) and (text[end + 1].isalnum() or text[end + 1] == "_") and not _only_postfix(text, end)
    return c.isalpha() or c == "_"


def _only_postfix(text: str, pos: int) -> bool:
    """True when text[pos:] starts with a run of postfix letters optionally followed by digits (d20as, 4d6k3)."""
    while pos < len(text) and text[pos] in POSTFIX_LETTERS:
        if text[pos] == "k":
            return True
        pos += 1
    return pos >= len(text) or not (text[pos].isalnum() or text[pos] == "_")


def tokenize(text: str) -> list[Token]:
    return list(Lexer(text))
