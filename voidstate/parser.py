from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Tuple

from .errors import VoidStateError
from .nodes import (
    FunctionCall,
    Import,
    ListLiteral,
    ListRef,
    Literal,
    MapLiteral,
    MapRef,
    Node,
    PathLiteral,
    Symbol,
    VariableDeclaration,
)

SYMBOL_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*(?:-[A-Za-z0-9_]+)*")
NUMBER_PATTERN = re.compile(r"\d+(?:\.\d+)?")

PUNCTUATION = {
    "{": "LBRACE",
    "}": "RBRACE",
    "[": "LBRACKET",
    "]": "RBRACKET",
    "(": "LPAREN",
    ")": "RPAREN",
    "=": "EQUALS",
    ";": "SEMI",
    ",": "COMMA",
    ".": "DOT",
}

KEYWORDS = {
    "true": "BOOL",
    "false": "BOOL",
    "import": "IMPORT",
}

# Characters that end an unquoted path.
PATH_BREAK = frozenset(" \t\r\n{}[]();,=#")

ARGUMENT_START = frozenset({"STRING", "NUMBER", "BOOL", "PATH", "SYMBOL", "LBRACE", "LBRACKET", "LPAREN"})


class ParseError(VoidStateError):
    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
        token: Optional[str] = None,
        source: Optional[str] = None,
    ):
        self.line = line
        self.column = column
        self.token = token
        self.source = source
        location = f" (line {line}, col {column})" if line is not None and column is not None else ""
        prefix = f"{source}: " if source else ""
        super().__init__(f"{prefix}{message}{location}")


@dataclass
class Token:
    type: str
    value: str
    line: int
    column: int
    end_line: int = 0
    spaced: bool = True  # whitespace or line start before this token


class Lexer:
    def __init__(self, text: str, source: Optional[str] = None):
        self.text = text
        self.source = source
        self.length = len(text)
        self.pos = 0
        self.line = 1
        self.col = 1

    def tokenize(self) -> Iterator[Token]:
        spaced = True
        while self.pos < self.length:
            ch = self.text[self.pos]
            if ch in " \t\r\n":
                self._advance(1)
                spaced = True
                continue
            if ch == "#":
                while self.pos < self.length and self.text[self.pos] != "\n":
                    self._advance(1)
                spaced = True
                continue

            start_line, start_col = self.line, self.col
            if ch in "'\"":
                token = self._string()
            elif ch == "/" or self.text.startswith("./", self.pos) or self.text.startswith("../", self.pos):
                token = self._path()
            elif ch in PUNCTUATION:
                self._advance(1)
                token = Token(PUNCTUATION[ch], ch, start_line, start_col)
            elif ch.isdigit():
                token = self._number()
            elif ch.isalpha() or ch == "_":
                token = self._symbol()
            else:
                raise ParseError(f"Unexpected character '{ch}'", self.line, self.col, token=ch, source=self.source)

            token.end_line = self.line
            token.spaced = spaced
            spaced = False
            yield token
        yield Token("EOF", "", self.line, self.col, end_line=self.line)

    def _advance(self, count: int) -> None:
        for _ in range(count):
            if self.pos >= self.length:
                return
            if self.text[self.pos] == "\n":
                self.line += 1
                self.col = 1
            else:
                self.col += 1
            self.pos += 1

    def _symbol(self) -> Token:
        start_line, start_col = self.line, self.col
        match = SYMBOL_PATTERN.match(self.text, self.pos)
        # isalpha() accepts letters the pattern does not
        if match is None:
            ch = self.text[self.pos]
            raise ParseError(f"Unexpected character '{ch}'", start_line, start_col, token=ch, source=self.source)
        value = match.group(0)
        self._advance(len(value))
        return Token(KEYWORDS.get(value, "SYMBOL"), value, start_line, start_col)

    def _number(self) -> Token:
        start_line, start_col = self.line, self.col
        match = NUMBER_PATTERN.match(self.text, self.pos)
        assert match is not None
        value = match.group(0)
        self._advance(len(value))
        return Token("NUMBER", value, start_line, start_col)

    def _read_quoted(self) -> str:
        start_line, start_col = self.line, self.col
        quote = self.text[self.pos]
        self._advance(1)
        chars: List[str] = []
        while self.pos < self.length:
            ch = self.text[self.pos]
            if ch == quote:
                self._advance(1)
                return "".join(chars)
            chars.append(ch)
            self._advance(1)
        raise ParseError("Unterminated string literal", start_line, start_col, token=quote, source=self.source)

    def _string(self) -> Token:
        start_line, start_col = self.line, self.col
        return Token("STRING", self._read_quoted(), start_line, start_col)

    def _path(self) -> Token:
        start_line, start_col = self.line, self.col
        parts: List[str] = []
        while self.pos < self.length:
            ch = self.text[self.pos]
            if ch in PATH_BREAK:
                break
            if ch in "'\"":
                parts.append(self._read_quoted())
                continue
            parts.append(ch)
            self._advance(1)
        return Token("PATH", "".join(parts), start_line, start_col)


class Parser:
    def __init__(self, tokens: Iterable[Token], source: Optional[str] = None):
        self.tokens = list(tokens)
        self.source = source
        self.index = 0
        self.current = self.tokens[0]
        self.previous: Optional[Token] = None

    def parse(self) -> List[Node]:
        statements: List[Node] = []
        while self.current.type != "EOF":
            if self.current.type == "SEMI":
                self._advance()
                continue
            statements.append(self._parse_expression())
            if self.current.type == "SEMI":
                self._advance()
            elif self.current.type != "EOF" and self.current.line == self.previous.end_line:
                raise self._error(f"Unexpected {self.current.type} after expression")
        return statements

    def _parse_expression(self) -> Node:
        tok = self.current
        if tok.type == "IMPORT":
            self._advance()
            if self.current.type not in ("PATH", "STRING"):
                raise self._error(f"Expected a path after 'import' but got {self.current.type}")
            path_tok = self.current
            self._advance()
            return Import(path_tok.value, line=tok.line, column=tok.column)

        if tok.type == "SYMBOL":
            ref = self._parse_reference()
            if self.current.type == "EQUALS":
                self._advance()
                value = self._parse_expression()
                return VariableDeclaration(ref, value, line=tok.line, column=tok.column)
            if isinstance(ref, Symbol) and self._at_argument():
                return self._parse_call(ref)
            return ref

        return self._parse_primary()

    def _parse_call(self, name: Symbol) -> FunctionCall:
        args: List[Node] = []
        while self._at_argument():
            if self.current.type == "SYMBOL":
                args.append(self._parse_reference())
            else:
                args.append(self._parse_primary())
        return FunctionCall(name.name, args, line=name.line, column=name.column)

    def _at_argument(self) -> bool:
        if self.current.type not in ARGUMENT_START:
            return False
        return self.previous is not None and self.current.line == self.previous.end_line

    def _parse_primary(self) -> Node:
        tok = self.current
        if tok.type == "STRING":
            self._advance()
            return Literal(tok.value, line=tok.line, column=tok.column)
        if tok.type == "NUMBER":
            self._advance()
            number = float(tok.value) if "." in tok.value else int(tok.value)
            return Literal(number, line=tok.line, column=tok.column)
        if tok.type == "BOOL":
            self._advance()
            return Literal(tok.value == "true", line=tok.line, column=tok.column)
        if tok.type == "PATH":
            self._advance()
            return PathLiteral(tok.value, line=tok.line, column=tok.column)
        if tok.type == "LBRACE":
            return self._parse_map()
        if tok.type == "LBRACKET":
            return self._parse_list()
        if tok.type == "LPAREN":
            self._advance()
            inner = self._parse_expression()
            self._expect("RPAREN")
            return inner
        if tok.type == "SYMBOL":
            return self._parse_reference()
        raise self._error(f"Unexpected token {tok.type}")

    def _parse_map(self) -> MapLiteral:
        start = self._expect("LBRACE")
        entries: List[Tuple[str, Node]] = []
        seen = set()
        while self.current.type != "RBRACE":
            if self.current.type in ("SEMI", "COMMA"):
                self._advance()
                continue
            key_tok = self.current
            if key_tok.type != "SYMBOL":
                raise self._error(f"Expected a symbol at key position in map but got {key_tok.type}")
            self._advance()
            self._expect("EQUALS")
            value = self._parse_expression()
            if key_tok.value in seen:
                raise ParseError(
                    f"Key '{key_tok.value}' already exists in map",
                    key_tok.line,
                    key_tok.column,
                    token=key_tok.value,
                    source=self.source,
                )
            seen.add(key_tok.value)
            entries.append((key_tok.value, value))
        self._expect("RBRACE")
        return MapLiteral(entries, line=start.line, column=start.column)

    def _parse_list(self) -> ListLiteral:
        start = self._expect("LBRACKET")
        items: List[Node] = []
        while self.current.type != "RBRACKET":
            if self.current.type == "COMMA":
                self._advance()
                continue
            if self.current.type == "EOF":
                raise self._error("Unterminated list")
            items.append(self._parse_expression())
        self._expect("RBRACKET")
        return ListLiteral(items, line=start.line, column=start.column)

    def _parse_reference(self) -> Node:
        tok = self._expect("SYMBOL")
        node: Node = Symbol(tok.value, line=tok.line, column=tok.column)
        while True:
            if self.current.type == "DOT":
                self._advance()
                if self.current.type == "NUMBER":
                    raise self._error(f"Can not index map '{tok.value}' with a number")
                field_tok = self._expect("SYMBOL")
                node = MapRef(node, field_tok.value, line=tok.line, column=tok.column)
            elif self.current.type == "LBRACKET" and not self.current.spaced:
                self._advance()
                index_tok = self._expect("NUMBER")
                index = float(index_tok.value)
                if not index.is_integer():
                    raise ParseError(
                        f"Can not index list '{tok.value}' by non-integer number {index_tok.value}",
                        index_tok.line,
                        index_tok.column,
                        token=index_tok.value,
                        source=self.source,
                    )
                self._expect("RBRACKET")
                node = ListRef(node, int(index), line=tok.line, column=tok.column)
            else:
                return node

    def _expect(self, token_type: str) -> Token:
        if self.current.type != token_type:
            raise self._error(f"Expected {token_type} but got {self.current.type}")
        tok = self.current
        self._advance()
        return tok

    def _error(self, message: str) -> ParseError:
        tok = self.current
        return ParseError(message, tok.line, tok.column, token=tok.value, source=self.source)

    def _advance(self) -> None:
        self.previous = self.current
        self.index += 1
        if self.index >= len(self.tokens):
            last = self.tokens[-1]
            self.current = Token("EOF", "", last.line, last.column, end_line=last.end_line)
        else:
            self.current = self.tokens[self.index]


def parse(text: str, source: Optional[str] = None) -> List[Node]:
    """Parse DSL text into a list of top-level statements."""
    lexer = Lexer(text, source=source)
    parser = Parser(lexer.tokenize(), source=source)
    return parser.parse()


def parse_script(path) -> List[Node]:
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    return parse(text, source=str(path))
