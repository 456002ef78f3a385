"""
Turns nimlet source text into a flat token stream.

Indentation is significant: the tokenizer tracks an indentation stack and
emits INDENT / DEDENT tokens around nested suites, with NEWLINE tokens
terminating logical lines. Newlines inside brackets do not end a line.
"""
from dataclasses import dataclass
from enum import Enum
from typing import List

from nimlet.nimlet_datatypes import INT_MAX, LexError


class TokenKind(Enum):
    INT = "int"
    FLOAT = "float"
    STRING = "string"
    IDENT = "ident"
    KEYWORD = "keyword"
    OP = "op"
    LPAREN = "("
    RPAREN = ")"
    LBRACKET = "["
    RBRACKET = "]"
    LBRACE = "{"
    RBRACE = "}"
    COMMA = ","
    COLON = ":"
    DOT = "."
    NEWLINE = "newline"
    INDENT = "indent"
    DEDENT = "dedent"
    EOF = "eof"


KEYWORDS = frozenset({
    "var", "let", "const", "if", "elif", "else", "while", "for", "in",
    "case", "of", "proc", "return", "break", "continue", "block", "defer",
    "discard",
    "and", "or", "not", "mod", "div", "true", "false", "nil",
})

# Longest first so greedy matching picks '..<' over '..' over '.'.
OPERATORS = (
    "..<", "..", "==", "!=", "<=", ">=", "+=", "-=", "*=", "/=", "%=", "&=",
    "+", "-", "*", "/", "%", "=", "<", ">", "&", "$", "@",
)

PUNCTUATION = {
    "(": TokenKind.LPAREN,
    ")": TokenKind.RPAREN,
    "[": TokenKind.LBRACKET,
    "]": TokenKind.RBRACKET,
    "{": TokenKind.LBRACE,
    "}": TokenKind.RBRACE,
    ",": TokenKind.COMMA,
    ":": TokenKind.COLON,
    ".": TokenKind.DOT,
}

ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "\\": "\\",
    '"': '"',
    "'": "'",
    "0": "\0",
}

TAB_WIDTH = 4


def is_digit(ch: str) -> bool:
    # ASCII only; str.isdigit() also accepts characters like '²'
    return "0" <= ch <= "9"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    lexeme: str
    line: int
    col: int

    def __repr__(self):
        return f"Token({self.kind.name}, {self.lexeme!r}, {self.line}:{self.col})"


class Tokenizer:
    """Single pass scanner over one source fragment."""

    def __init__(self, source: str):
        self.source = source.replace("\r\n", "\n")
        self.pos = 0
        self.line = 1
        self.col = 1
        self.tokens: List[Token] = []
        self.indents = [0]
        self.depth = 0  # bracket nesting
        self.at_line_start = True

    # --- cursor helpers ---
    def _peek(self, offset: int = 0) -> str:
        i = self.pos + offset
        return self.source[i] if i < len(self.source) else ""

    def _advance(self) -> str:
        ch = self.source[self.pos]
        self.pos += 1
        if ch == "\n":
            self.line += 1
            self.col = 1
        else:
            self.col += 1
        return ch

    def _emit(self, kind: TokenKind, lexeme: str, line: int, col: int):
        self.tokens.append(Token(kind, lexeme, line, col))

    # --- main loop ---
    def tokenize(self) -> List[Token]:
        while self.pos < len(self.source):
            if self.at_line_start and self.depth == 0:
                self._scan_indentation()
                if self.pos >= len(self.source):
                    break
            ch = self._peek()
            if ch == "\n":
                self._newline()
            elif ch in " \t":
                self._advance()
            elif ch == "#":
                self._skip_comment()
            elif is_digit(ch):
                self._number()
            elif ch.isalpha() or ch == "_":
                self._word()
            elif ch in "\"'":
                self._string(ch)
            else:
                self._symbol()
        self._finish()
        return self.tokens

    def _scan_indentation(self):
        """Measure leading whitespace; blank and comment-only lines are skipped."""
        while True:
            width = 0
            while self._peek() in (" ", "\t"):
                width += TAB_WIDTH if self._peek() == "\t" else 1
                self._advance()
            ch = self._peek()
            if ch == "#":
                self._skip_comment()
                ch = self._peek()
            if ch == "\n":
                self._advance()
                continue
            if ch == "":
                return
            break
        self.at_line_start = False
        current = self.indents[-1]
        if width > current:
            self.indents.append(width)
            self._emit(TokenKind.INDENT, "", self.line, self.col)
        elif width < current:
            while width < self.indents[-1]:
                self.indents.pop()
                self._emit(TokenKind.DEDENT, "", self.line, self.col)
            if width != self.indents[-1]:
                raise LexError(self.line, self.col, "inconsistent dedent")

    def _newline(self):
        line, col = self.line, self.col
        self._advance()
        if self.depth > 0:
            return
        if self.tokens and self.tokens[-1].kind not in (TokenKind.NEWLINE, TokenKind.INDENT, TokenKind.DEDENT):
            self._emit(TokenKind.NEWLINE, "\n", line, col)
        self.at_line_start = True

    def _skip_comment(self):
        while self._peek() not in ("\n", ""):
            self._advance()

    def _number(self):
        line, col = self.line, self.col
        start = self.pos
        is_float = False
        while is_digit(self._peek()) or self._peek() == "_":
            self._advance()
        # '1..5' is a range, not a float
        if self._peek() == "." and is_digit(self._peek(1)):
            is_float = True
            self._advance()
            while is_digit(self._peek()) or self._peek() == "_":
                self._advance()
        if self._peek() in ("e", "E"):
            nxt = self._peek(1)
            if is_digit(nxt) or (nxt in "+-" and nxt and is_digit(self._peek(2))):
                is_float = True
                self._advance()
                if self._peek() in "+-":
                    self._advance()
                while is_digit(self._peek()):
                    self._advance()
        text = self.source[start:self.pos]
        if self._peek().isalpha() or self._peek() == "_":
            raise LexError(self.line, self.col, f"malformed number literal {text + self._peek()!r}")
        if not is_float and int(text.replace("_", "")) > INT_MAX:
            raise LexError(line, col, f"malformed number literal {text!r}: out of int range")
        self._emit(TokenKind.FLOAT if is_float else TokenKind.INT, text, line, col)

    def _word(self):
        line, col = self.line, self.col
        start = self.pos
        while self._peek().isalnum() or self._peek() == "_":
            self._advance()
        text = self.source[start:self.pos]
        kind = TokenKind.KEYWORD if text in KEYWORDS else TokenKind.IDENT
        self._emit(kind, text, line, col)

    def _string(self, quote: str):
        line, col = self.line, self.col
        self._advance()
        chars = []
        while True:
            ch = self._peek()
            if ch == "":
                raise LexError(line, col, "unterminated string literal")
            if ch == "\n":
                raise LexError(self.line, self.col, "newline in string literal")
            if ch == quote:
                self._advance()
                break
            if ch == "\\":
                esc_line, esc_col = self.line, self.col
                self._advance()
                code = self._peek()
                if code not in ESCAPES:
                    raise LexError(esc_line, esc_col, f"unknown escape sequence '\\{code}'")
                self._advance()
                chars.append(ESCAPES[code])
                continue
            chars.append(self._advance())
        self._emit(TokenKind.STRING, "".join(chars), line, col)

    def _symbol(self):
        line, col = self.line, self.col
        for op in OPERATORS:
            if self.source.startswith(op, self.pos):
                for _ in op:
                    self._advance()
                self._emit(TokenKind.OP, op, line, col)
                return
        ch = self._peek()
        if ch in PUNCTUATION:
            self._advance()
            if ch in "([{":
                self.depth += 1
            elif ch in ")]}":
                self.depth = max(0, self.depth - 1)
            self._emit(PUNCTUATION[ch], ch, line, col)
            return
        raise LexError(line, col, f"unexpected character {ch!r}")

    def _finish(self):
        if self.tokens and self.tokens[-1].kind not in (TokenKind.NEWLINE, TokenKind.DEDENT):
            self._emit(TokenKind.NEWLINE, "\n", self.line, self.col)
        while len(self.indents) > 1:
            self.indents.pop()
            self._emit(TokenKind.DEDENT, "", self.line, self.col)
        self._emit(TokenKind.EOF, "", self.line, self.col)


def tokenize(source: str) -> List[Token]:
    """Tokenize a complete fragment. Raises LexError on malformed input."""
    return Tokenizer(source).tokenize()
