"""Chat command patterns.

A pattern such as ``assign {{...users}} to {{...tasks}}`` is tokenized once;
``CommandMatcher.match`` then binds each variable to the run of input words
it consumes::

    >>> CommandMatcher("labels {{...labels}}").match("labels ~bug ~urgent")
    MatchResult(matched=True, variables={'labels': ['bug', 'urgent']})
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from .logging import get_logger

LITERAL = "literal"
VARIABLE = "variable"
LABEL_MARKER = "~"

_VARIABLE = re.compile(r"\{\{\.\.\.(\w+)\}\}")


@dataclass(frozen=True)
class Token:
    kind: str
    position: int
    value: str | None = None
    name: str | None = None

    @property
    def is_variable(self) -> bool:
        return self.kind == VARIABLE


@dataclass
class MatchResult:
    matched: bool
    variables: dict[str, list[str]] = field(default_factory=dict)


def tokenize(pattern: Any) -> tuple[Token, ...]:
    if not isinstance(pattern, str):
        return ()
    tokens: list[Token] = []
    for position, word in enumerate(pattern.split()):
        variable = _VARIABLE.fullmatch(word)
        if variable:
            tokens.append(Token(VARIABLE, position, name=variable.group(1)))
        else:
            tokens.append(Token(LITERAL, position, value=word))
    return tuple(tokens)


class CommandMatcher:
    def __init__(self, pattern: Any, *, bot_username: str | None = None) -> None:
        self.bot_username = bot_username
        self._tokens = tokenize(pattern)
        self.logger = get_logger()

    @property
    def tokens(self) -> tuple[Token, ...]:
        return tuple(self._tokens)

    @property
    def pattern(self) -> str:
        return " ".join(
            f"{{{{...{t.name}}}}}" if t.is_variable else str(t.value) for t in self._tokens
        )

    def is_simple_command(self) -> bool:
        return all(not t.is_variable for t in self._tokens)

    def handle_input(self, message: Any) -> MatchResult | None:
        """Match a chat message, requiring and stripping ``@bot_username`` when configured."""
        if not isinstance(message, str) or not message.strip():
            return None
        text = message.strip()
        if self.bot_username:
            mention = f"@{self.bot_username}"
            if not text.startswith(mention):
                return None
            text = text[len(mention):]
        return self.match(text)

    def match(self, text: Any) -> MatchResult | None:
        if not isinstance(text, str):
            return None
        words = text.split()
        if not words:
            return None

        variables: dict[str, list[str]] = {}
        index = 0
        for i, token in enumerate(self._tokens):
            if not token.is_variable:
                if index >= len(words) or words[index] != token.value:
                    self.logger.debug(f"Literal mismatch: expected {token.value!r}")
                    return None
                index += 1
                continue

            following = self._tokens[i + 1] if i + 1 < len(self._tokens) else None
            captured: list[str] = []
            if token.name == "labels":
                while index < len(words) and words[index].startswith(LABEL_MARKER):
                    captured.append(words[index][len(LABEL_MARKER):])
                    index += 1
            elif following is not None and not following.is_variable:
                while index < len(words) and words[index] != following.value:
                    captured.append(words[index])
                    index += 1
            else:
                captured.extend(words[index:])
                index = len(words)
            variables[str(token.name)] = captured

        if index != len(words):
            self.logger.debug(f"Unconsumed input: {len(words) - index} trailing word(s)")
            return None
        return MatchResult(matched=True, variables=variables)


__all__ = ["CommandMatcher", "MatchResult", "Token", "tokenize"]
