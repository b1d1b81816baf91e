"""Tokens of the descriptor DSL.

A schema is a sequence of alias and struct definitions::

    define Score as int32          # alias
    Point { x: float64, y: float64 }

Type references are names decorated with ``[]`` (sequence), ``[N]``
(fixed array) or ``?`` (optional), or ``{K: V}`` maps.
"""

import ply.lex as lex


class DescriptorLexer:
    """ply lexer for descriptor definitions."""

    keywords = {
        "define": "DEFINE",
        "as": "AS",
    }

    tokens = [
        "IDENTIFIER",
        "INTEGER",
        # struct bodies and map types
        "LBRACE",
        "RBRACE",
        "COLON",
        "COMMA",
        # type suffixes
        "LBRACKET",
        "RBRACKET",
        "QUESTION",
    ] + list(keywords.values())

    t_LBRACE = r"\{"
    t_RBRACE = r"\}"
    t_COLON = r":"
    t_COMMA = r","
    t_LBRACKET = r"\["
    t_RBRACKET = r"\]"
    t_QUESTION = r"\?"

    t_ignore = " \t\r"
    t_ignore_COMMENT = r"\#[^\n]*"

    def __init__(self) -> None:
        self.lexer: lex.Lexer = None  # type: ignore

    def t_INTEGER(self, t: lex.LexToken) -> lex.LexToken:
        r"\d+"
        # Only array lengths are numeric, so no sign
        t.value = int(t.value)
        return t

    def t_IDENTIFIER(self, t: lex.LexToken) -> lex.LexToken:
        r"[a-zA-Z_][a-zA-Z0-9_]*"
        t.type = self.keywords.get(t.value, "IDENTIFIER")
        return t

    def t_newline(self, t: lex.LexToken) -> None:
        r"\n+"
        t.lexer.lineno += len(t.value)

    def t_error(self, t: lex.LexToken) -> None:
        raise SyntaxError(f"Unexpected character {t.value[0]!r} in descriptor at line {t.lineno}")

    def build(self, **kwargs) -> None:  # type: ignore
        """Build the underlying ply lexer."""
        self.lexer = lex.lex(module=self, **kwargs)

    def input(self, data: str) -> None:
        self.lexer.input(data)

    def token(self) -> lex.LexToken | None:
        return self.lexer.token()

    def tokenize(self, data: str) -> list[lex.LexToken]:
        """Return every token of ``data``; used for diagnostics and tests."""
        self.input(data)
        return list(iter(self.token, None))
