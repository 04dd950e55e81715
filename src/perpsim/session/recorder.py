"""
Session recorders.

The manager reports session starts and ends to an external persistence sink.
Recording is best-effort: the manager logs recorder failures and carries on.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import orjson

if TYPE_CHECKING:
    from perpsim.contracts.session import FinalSessionSnapshot, SessionSnapshot


class SessionRecorder(Protocol):
    """Persistence sink for session lifecycle events."""

    async def record_start(self, snapshot: SessionSnapshot) -> None: ...

    async def record_end(self, final: FinalSessionSnapshot) -> None: ...


class InMemorySessionRecorder:
    """Keeps every recorded event in lists."""

    def __init__(self) -> None:
        self.started: list[SessionSnapshot] = []
        self.ended: list[FinalSessionSnapshot] = []

    async def record_start(self, snapshot: SessionSnapshot) -> None:
        self.started.append(snapshot)

    async def record_end(self, final: FinalSessionSnapshot) -> None:
        self.ended.append(final)


class JsonlSessionRecorder:
    """
    Append one JSON line per event to a file.

    Each line is {"event": "start" | "end", "session": {...}} with sorted keys.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _append(self, event: str, payload: dict[str, object]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("ab") as f:
            f.write(orjson.dumps({"event": event, "session": payload}, option=orjson.OPT_SORT_KEYS))
            f.write(b"\n")

    async def record_start(self, snapshot: SessionSnapshot) -> None:
        await asyncio.to_thread(self._append, "start", snapshot.model_dump(mode="json"))

    async def record_end(self, final: FinalSessionSnapshot) -> None:
        await asyncio.to_thread(self._append, "end", final.model_dump(mode="json"))
