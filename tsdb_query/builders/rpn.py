"""
Infix to RPN translation for rrdtool CDEF expressions.

Implements a small tokenizer and recursive descent parser for arithmetic
expressions ('value * 100', '(rx + tx) / 8') and emits the comma-separated
reverse polish notation rrdtool expects ('value,100,*').
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..exceptions import QueryError


@dataclass
class Token:
    """Represents a lexical token."""
    type: str
    value: str
    position: int


class Tokenizer:
    """Tokenizes arithmetic expressions."""

    TOKEN_PATTERNS = [
        (re.compile(r'\d+(?:\.\d+)?'), 'NUMBER'),
        (re.compile(r'[a-zA-Z_][a-zA-Z0-9_\.]*'), 'IDENTIFIER'),
        (re.compile(r'[+\-]'), 'ADD_OP'),
        (re.compile(r'[*/%]'), 'MUL_OP'),
        (re.compile(r'\('), 'LPAREN'),
        (re.compile(r'\)'), 'RPAREN'),
        (re.compile(r'\s+'), 'WHITESPACE'),
    ]

    def __init__(self, expression: str):
        self.expression = expression
        self.position = 0
        self.tokens: List[Token] = []
        self._tokenize()

    def _tokenize(self) -> None:
        while self.position < len(self.expression):
            for pattern, token_type in self.TOKEN_PATTERNS:
                match = pattern.match(self.expression, self.position)
                if match:
                    if token_type != 'WHITESPACE':
                        self.tokens.append(Token(token_type, match.group(0), self.position))
                    self.position = match.end()
                    break
            else:
                raise QueryError(
                    f"Invalid character at position {self.position} in expression "
                    f"'{self.expression}': '{self.expression[self.position]}'"
                )


class RPNTranslator:
    """Parses tokens and emits RPN terms.

    Grammar:
        expr   := term (ADD_OP term)*
        term   := factor (MUL_OP factor)*
        factor := NUMBER | IDENTIFIER | '(' expr ')' | ADD_OP factor
    """

    def __init__(self, tokens: List[Token], names: Optional[Dict[str, str]] = None):
        self.tokens = tokens
        self.names = names or {}
        self.position = 0
        self.output: List[str] = []

    def _current_token(self) -> Optional[Token]:
        if self.position < len(self.tokens):
            return self.tokens[self.position]
        return None

    def _consume(self, expected_type: Optional[str] = None) -> Token:
        token = self._current_token()
        if token is None:
            raise QueryError("Unexpected end of expression")
        if expected_type and token.type != expected_type:
            raise QueryError(f"Expected {expected_type}, got {token.type}: {token.value}")
        self.position += 1
        return token

    def translate(self) -> str:
        if not self.tokens:
            raise QueryError("Empty expression")
        self._parse_expr()
        if self._current_token() is not None:
            token = self._current_token()
            raise QueryError(f"Unexpected token '{token.value}' at position {token.position}")
        return ','.join(self.output)

    def _parse_expr(self) -> None:
        self._parse_term()
        while self._current_token() and self._current_token().type == 'ADD_OP':
            operator = self._consume().value
            self._parse_term()
            self.output.append(operator)

    def _parse_term(self) -> None:
        self._parse_factor()
        while self._current_token() and self._current_token().type == 'MUL_OP':
            operator = self._consume().value
            self._parse_factor()
            self.output.append(operator)

    def _parse_factor(self) -> None:
        token = self._consume()
        if token.type == 'NUMBER':
            self.output.append(token.value)
        elif token.type == 'IDENTIFIER':
            self.output.append(self.names.get(token.value, token.value))
        elif token.type == 'LPAREN':
            self._parse_expr()
            self._consume('RPAREN')
        elif token.type == 'ADD_OP':
            self._parse_factor()
            if token.value == '-':
                self.output.extend(['-1', '*'])
        else:
            raise QueryError(f"Unexpected token '{token.value}' at position {token.position}")


def infix_to_rpn(expression: str, names: Optional[Dict[str, str]] = None) -> str:
    """Translate an arithmetic expression to rrdtool RPN.

    Expressions that already contain commas are assumed to be RPN and are
    returned unchanged.

    Args:
        expression: Infix expression
        names: Identifier substitutions (field name to DEF name)

    Returns:
        Comma-separated RPN expression

    Raises:
        QueryError: If the expression cannot be parsed
    """
    if ',' in expression:
        return expression.strip()
    tokens = Tokenizer(expression).tokens
    return RPNTranslator(tokens, names).translate()
