"""
Incremental extraction of race and proposition objects from a streaming
guide response.

Each request owns its extractor: the buffer, cursor and phase live on the
instance and only ever move forward.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ballotguide.utils.json_scanner import (
    ArrayExtractor,
    ArraySeeker,
    StringFieldScanner,
    is_proposition,
    is_race,
)


class Phase(Enum):
    SEEKING_RACES_ARRAY = "seeking_races"
    IN_RACES_ARRAY = "races"
    SEEKING_PROPS_ARRAY = "seeking_propositions"
    IN_PROPS_ARRAY = "propositions"
    DONE = "done"


@dataclass
class FlushResult:
    races_emitted: int
    propositions_emitted: int
    buffer: str


class StreamingExtractor:
    def __init__(
        self,
        on_race: Optional[Callable[[dict], None]] = None,
        on_proposition: Optional[Callable[[dict], None]] = None,
        on_profile_summary: Optional[Callable[[str], None]] = None,
    ):
        self._on_race = on_race
        self._on_proposition = on_proposition
        self._on_profile_summary = on_profile_summary

        self._buffer = ""
        self.phase = Phase.SEEKING_RACES_ARRAY
        self.races_emitted = 0
        self.propositions_emitted = 0
        self.profile_emitted = False

        self._summary = StringFieldScanner("profileSummary")
        self._seeker: Optional[ArraySeeker] = ArraySeeker("races")
        self._array: Optional[ArrayExtractor] = None

    @property
    def buffer(self) -> str:
        return self._buffer

    def feed(self, chunk: str) -> None:
        if chunk:
            # The attribute must not hold a second reference, or CPython
            # copies the whole buffer on every append.
            buffer, self._buffer = self._buffer, ""
            buffer += chunk
            self._buffer = buffer
        self._process()

    def flush(self) -> FlushResult:
        self._process()
        return FlushResult(
            races_emitted=self.races_emitted,
            propositions_emitted=self.propositions_emitted,
            buffer=self._buffer,
        )

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def _process(self) -> None:
        if not self.profile_emitted:
            summary = self._summary.advance(self._buffer)
            if summary is not None:
                self.profile_emitted = True
                if self._on_profile_summary:
                    self._on_profile_summary(summary)

        while self.phase is not Phase.DONE:
            if self.phase in (Phase.SEEKING_RACES_ARRAY, Phase.SEEKING_PROPS_ARRAY):
                start = self._seeker.find(self._buffer)
                if start is None:
                    return
                if self.phase is Phase.SEEKING_RACES_ARRAY:
                    self._array = ArrayExtractor(start, is_race)
                    self.phase = Phase.IN_RACES_ARRAY
                else:
                    self._array = ArrayExtractor(start, is_proposition)
                    self.phase = Phase.IN_PROPS_ARRAY

            for obj in self._array.advance(self._buffer):
                self._emit(obj)

            if not self._array.closed:
                return
            if self.phase is Phase.IN_RACES_ARRAY:
                self._seeker = ArraySeeker("propositions", self._array.cursor)
                self.phase = Phase.SEEKING_PROPS_ARRAY
            else:
                self.phase = Phase.DONE

    def _emit(self, obj: dict) -> None:
        if self.phase is Phase.IN_RACES_ARRAY:
            self.races_emitted += 1
            if self._on_race:
                self._on_race(obj)
        else:
            self.propositions_emitted += 1
            if self._on_proposition:
                self._on_proposition(obj)
