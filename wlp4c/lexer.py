"""
Lexical Analyzer (Lexer) for WLP4

Converts source text into the token stream consumed by the LR parser.
The stream is always bracketed by a BOF and an EOF token.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from wlp4c.errors import CompileError, ErrorKind


class TokenKind(str, Enum):
    """Terminal symbols of the WLP4 grammar"""
    # Literals and names
    ID = "ID"
    NUM = "NUM"
    NULL = "NULL"

    # Keywords
    RETURN = "RETURN"
    IF = "IF"
    ELSE = "ELSE"
    WHILE = "WHILE"
    PRINTLN = "PRINTLN"
    WAIN = "WAIN"
    INT = "INT"
    NEW = "NEW"
    DELETE = "DELETE"

    # Operators
    BECOMES = "BECOMES"          # =
    EQ = "EQ"                    # ==
    NE = "NE"                    # !=
    LT = "LT"                    # <
    GT = "GT"                    # >
    LE = "LE"                    # <=
    GE = "GE"                    # >=
    PLUS = "PLUS"                # +
    MINUS = "MINUS"              # -
    STAR = "STAR"                # *
    SLASH = "SLASH"              # /
    PCT = "PCT"                  # %
    AMP = "AMP"                  # &

    # Delimiters
    LPAREN = "LPAREN"            # (
    RPAREN = "RPAREN"            # )
    LBRACE = "LBRACE"            # {
    RBRACE = "RBRACE"            # }
    LBRACK = "LBRACK"            # [
    RBRACK = "RBRACK"            # ]
    COMMA = "COMMA"              # ,
    SEMI = "SEMI"                # ;

    # Stream markers
    BOF = "BOF"
    EOF = "EOF"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Token:
    """Represents a lexical token"""
    kind: str
    lexeme: str
    line: int = 0
    column: int = 0

    def __repr__(self) -> str:
        return f"Token({self.kind}, {self.lexeme!r}, {self.line}:{self.column})"


class LexerError(CompileError):
    """Lexer error with line and column information"""
    kind = ErrorKind.LEXICAL

    def __init__(self, message: str, line: int, column: int):
        self.line = line
        self.column = column
        super().__init__(f"{message} at {line}:{column}")
        self.message = message


INT_MAX = 2147483647


def _is_digit(c: str) -> bool:
    return "0" <= c <= "9"


def _is_alnum(c: str) -> bool:
    return _is_digit(c) or "a" <= c <= "z" or "A" <= c <= "Z"


class Lexer:
    """Lexical analyzer for WLP4 source code"""

    KEYWORDS: Dict[str, TokenKind] = {
        "return": TokenKind.RETURN,
        "if": TokenKind.IF,
        "else": TokenKind.ELSE,
        "while": TokenKind.WHILE,
        "println": TokenKind.PRINTLN,
        "wain": TokenKind.WAIN,
        "int": TokenKind.INT,
        "new": TokenKind.NEW,
        "delete": TokenKind.DELETE,
        "NULL": TokenKind.NULL,
    }

    # Two-character operators are tried before their one-character prefixes.
    DOUBLE: Dict[str, TokenKind] = {
        "==": TokenKind.EQ,
        "!=": TokenKind.NE,
        "<=": TokenKind.LE,
        ">=": TokenKind.GE,
    }

    SINGLE: Dict[str, TokenKind] = {
        "(": TokenKind.LPAREN,
        ")": TokenKind.RPAREN,
        "{": TokenKind.LBRACE,
        "}": TokenKind.RBRACE,
        "[": TokenKind.LBRACK,
        "]": TokenKind.RBRACK,
        "=": TokenKind.BECOMES,
        "<": TokenKind.LT,
        ">": TokenKind.GT,
        "+": TokenKind.PLUS,
        "-": TokenKind.MINUS,
        "*": TokenKind.STAR,
        "/": TokenKind.SLASH,
        "%": TokenKind.PCT,
        "&": TokenKind.AMP,
        ",": TokenKind.COMMA,
        ";": TokenKind.SEMI,
    }

    def __init__(self, source: str):
        """Initialize lexer with source code"""
        self.source = source
        self.position = 0
        self.line = 1
        self.column = 1
        self.tokens: List[Token] = []
        self.errors: List[LexerError] = []

    def current_char(self) -> Optional[str]:
        """Get current character without consuming"""
        if self.position >= len(self.source):
            return None
        return self.source[self.position]

    def peek_char(self, offset: int = 1) -> Optional[str]:
        """Peek ahead at character"""
        pos = self.position + offset
        if pos >= len(self.source):
            return None
        return self.source[pos]

    def advance(self) -> Optional[str]:
        """Consume and return current character"""
        if self.position >= len(self.source):
            return None

        char = self.source[self.position]
        self.position += 1

        if char == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1

        return char

    def skip_whitespace(self) -> None:
        while self.current_char() is not None and self.current_char() in " \t\r\n":
            self.advance()

    def skip_line_comment(self) -> None:
        while self.current_char() is not None and self.current_char() != "\n":
            self.advance()

    def read_while(self, pred) -> str:
        start = self.position
        while self.current_char() is not None and pred(self.current_char()):
            self.advance()
        return self.source[start:self.position]

    def read_number(self, line: int, column: int) -> Optional[Token]:
        digits = self.read_while(_is_digit)
        trailing = self.current_char()
        if trailing is not None and _is_alnum(trailing):
            self.errors.append(LexerError(f"Malformed number '{digits}{trailing}'", line, column))
            self.read_while(_is_alnum)
            return None
        if len(digits) > 1 and digits[0] == "0":
            self.errors.append(LexerError(f"Number with leading zero '{digits}'", line, column))
            return None
        if int(digits) > INT_MAX:
            self.errors.append(LexerError(f"Number out of range '{digits}'", line, column))
            return None
        return Token(TokenKind.NUM.value, digits, line, column)

    def read_word(self, line: int, column: int) -> Token:
        word = self.read_while(_is_alnum)
        kind = self.KEYWORDS.get(word, TokenKind.ID)
        return Token(kind.value, word, line, column)

    def tokenize(self) -> List[Token]:
        """Tokenize entire source code.

        Errors do not stop the scan; check ``has_errors()`` afterwards.
        """
        self.tokens = [Token(TokenKind.BOF.value, "BOF", 0, 0)]
        self.errors = []

        while True:
            self.skip_whitespace()
            char = self.current_char()
            if char is None:
                break

            token_line = self.line
            token_column = self.column

            if char == "/" and self.peek_char() == "/":
                self.skip_line_comment()
                continue

            if _is_digit(char):
                tok = self.read_number(token_line, token_column)
                if tok is not None:
                    self.tokens.append(tok)
                continue

            if _is_alnum(char):
                self.tokens.append(self.read_word(token_line, token_column))
                continue

            pair = char + (self.peek_char() or "")
            if pair in self.DOUBLE:
                self.advance()
                self.advance()
                self.tokens.append(Token(self.DOUBLE[pair].value, pair, token_line, token_column))
            elif char in self.SINGLE:
                self.advance()
                self.tokens.append(Token(self.SINGLE[char].value, char, token_line, token_column))
            elif char == "!":
                self.errors.append(LexerError("'!' without '='", token_line, token_column))
                self.advance()
            else:
                self.errors.append(LexerError(f"Unexpected character '{char}'", token_line, token_column))
                self.advance()

        self.tokens.append(Token(TokenKind.EOF.value, "EOF", self.line, self.column))
        return self.tokens

    def has_errors(self) -> bool:
        """Check if any lexer errors occurred"""
        return len(self.errors) > 0

    def get_errors(self) -> List[LexerError]:
        """Get all lexer errors"""
        return self.errors


def read_token_stream(text: str) -> List[Token]:
    """Read pre-scanned tokens, one ``KIND lexeme`` pair per line.

    BOF/EOF are added when the input does not already carry them.
    """
    tokens: List[Token] = []
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        parts = line.split(None, 1)
        if len(parts) != 2:
            raise LexerError(f"Malformed token line '{line}'", lineno, 1)
        kind, lexeme = parts
        if kind not in TokenKind.__members__:
            raise LexerError(f"Unknown token kind '{kind}'", lineno, 1)
        tokens.append(Token(kind, lexeme, lineno, 1))

    if not tokens or tokens[0].kind != TokenKind.BOF.value:
        tokens.insert(0, Token(TokenKind.BOF.value, "BOF", 0, 0))
    if tokens[-1].kind != TokenKind.EOF.value:
        tokens.append(Token(TokenKind.EOF.value, "EOF", 0, 0))
    return tokens


def format_tokens(tokens: List[Token]) -> str:
    """Inverse of ``read_token_stream``; BOF/EOF markers are omitted."""
    lines = [
        f"{t.kind} {t.lexeme}"
        for t in tokens
        if t.kind not in (TokenKind.BOF.value, TokenKind.EOF.value)
    ]
    return "\n".join(lines) + ("\n" if lines else "")
