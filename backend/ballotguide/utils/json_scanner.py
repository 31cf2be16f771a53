"""
Single-pass scanning primitives for partially received JSON text.

The scanners keep their position between calls so a buffer that grows by
appends is only ever walked once. Every scanner is an owned value; nothing
here is shared between requests.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Callable, Optional

_SEPARATORS = frozenset(" \t\r\n,")


class LexState(Enum):
    OUTSIDE_STRING = "outside"
    INSIDE_STRING = "inside"
    AFTER_ESCAPE = "escape"


def step(state: LexState, ch: str) -> LexState:
    """Advance the string lexer by one character."""
    if state is LexState.AFTER_ESCAPE:
        return LexState.INSIDE_STRING
    if state is LexState.INSIDE_STRING:
        if ch == "\\":
            return LexState.AFTER_ESCAPE
        if ch == '"':
            return LexState.OUTSIDE_STRING
        return state
    if ch == '"':
        return LexState.INSIDE_STRING
    return state


def skip_separators(text: str, pos: int) -> int:
    while pos < len(text) and text[pos] in _SEPARATORS:
        pos += 1
    return pos


class ObjectScanner:
    """Find the end of one ``{...}`` span, resuming where the last call stopped."""

    def __init__(self, start: int):
        self.start = start
        self._pos = start
        self._depth = 0
        self._state = LexState.OUTSIDE_STRING

    def advance(self, text: str) -> Optional[int]:
        """Return the index just past the closing brace, or None if not yet closed."""
        while self._pos < len(text):
            ch = text[self._pos]
            self._pos += 1
            if self._state is not LexState.OUTSIDE_STRING or ch == '"':
                self._state = step(self._state, ch)
                continue
            if ch == "{":
                self._depth += 1
            elif ch == "}":
                self._depth -= 1
                if self._depth == 0:
                    return self._pos
        return None


class TokenSeeker:
    """Incremental ``str.find`` over an append-only buffer."""

    def __init__(self, token: str, start: int = 0):
        self.token = token
        self._from = start

    def find(self, text: str) -> Optional[int]:
        idx = text.find(self.token, self._from)
        if idx == -1:
            self._from = max(self._from, len(text) - len(self.token) + 1)
            return None
        return idx

    def restart(self, start: int) -> None:
        self._from = start


class ArraySeeker:
    """Locate the opening bracket of the array stored under ``"<key>"``."""

    def __init__(self, key: str, start: int = 0):
        self._key = TokenSeeker(f'"{key}"', start)
        self._bracket: Optional[TokenSeeker] = None

    def find(self, text: str) -> Optional[int]:
        """Return the index just past ``[``, or None if not yet present."""
        if self._bracket is None:
            idx = self._key.find(text)
            if idx is None:
                return None
            self._bracket = TokenSeeker("[", idx + len(self._key.token))
        idx = self._bracket.find(text)
        if idx is None:
            return None
        return idx + 1


class StringFieldScanner:
    """Extract the value of a top-level string field once its closing quote arrives."""

    def __init__(self, key: str):
        self._key = TokenSeeker(f'"{key}"')
        self._pos: Optional[int] = None
        self._colon_seen = False
        self._value_start: Optional[int] = None
        self._state = LexState.INSIDE_STRING

    def advance(self, text: str) -> Optional[str]:
        while True:
            if self._pos is None:
                idx = self._key.find(text)
                if idx is None:
                    return None
                self._pos = idx + len(self._key.token)
            if self._value_start is None:
                pos = self._pos
                while pos < len(text):
                    ch = text[pos]
                    if ch.isspace():
                        pos += 1
                    elif ch == ":" and not self._colon_seen:
                        self._colon_seen = True
                        pos += 1
                    elif ch == '"' and self._colon_seen:
                        pos += 1
                        self._value_start = pos
                        break
                    else:
                        break
                self._pos = pos
                if self._value_start is None:
                    if pos >= len(text):
                        return None
                    self._reset(pos)
                    continue
            while self._pos < len(text):
                ch = text[self._pos]
                self._pos += 1
                self._state = step(self._state, ch)
                if self._state is LexState.OUTSIDE_STRING:
                    return _unescape(text[self._value_start:self._pos - 1])
            return None

    def _reset(self, pos: int) -> None:
        # Not a string value; look for the next occurrence of the key.
        self._key.restart(pos)
        self._pos = None
        self._colon_seen = False
        self._value_start = None
        self._state = LexState.INSIDE_STRING


def _unescape(raw: str) -> str:
    try:
        return json.loads(f'"{raw}"')
    except ValueError:
        return raw


class ArrayExtractor:
    """Pull complete objects out of one JSON array as the buffer grows.

    Objects lacking the discriminant are skipped. A balanced span that still
    fails to parse halts the array: the bytes already received cannot change,
    so no later data can make it valid.
    """

    def __init__(self, start: int, accept: Callable[[dict], bool]):
        self.cursor = start
        self.closed = False
        self.halted = False
        self._accept = accept
        self._scanner: Optional[ObjectScanner] = None

    @property
    def active(self) -> bool:
        return not (self.closed or self.halted)

    def advance(self, text: str) -> list[dict]:
        found: list[dict] = []
        while self.active:
            if self._scanner is None:
                pos = skip_separators(text, self.cursor)
                self.cursor = pos
                if pos >= len(text):
                    break
                ch = text[pos]
                if ch == "]":
                    self.closed = True
                    self.cursor = pos + 1
                    break
                if ch != "{":
                    self.halted = True
                    break
                self._scanner = ObjectScanner(pos)
            end = self._scanner.advance(text)
            if end is None:
                break
            span = text[self._scanner.start:end]
            try:
                obj = json.loads(span)
            except ValueError:
                self.halted = True
                break
            self._scanner = None
            self.cursor = end
            if isinstance(obj, dict) and self._accept(obj):
                found.append(obj)
        return found


def is_race(obj: dict) -> bool:
    return bool(obj.get("office"))


def is_proposition(obj: dict) -> bool:
    return obj.get("number") is not None
