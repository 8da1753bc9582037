"""Live content stream for incrementally delivered replies.

A :class:`ContentStream` carries the text fragments of one assistant reply
from the agent loop to whichever outbound handler renders it.  The loop
opens a stream on the first text fragment of a round, pushes every further
fragment and closes it when the round ends.  Handlers consume the
fragments with ``async for`` and can await :meth:`ContentStream.result`
for the whole text.

Fragments are kept in a list and every ``async for`` keeps its own
position in it, so each handler subscribed to a surface reads the whole
reply, including fragments pushed before it started.  The producer never
waits on a slow consumer.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, List


class ContentStream:
    """An append-only sequence of text fragments with any number of readers.

    Notes
    -----
    :meth:`end` is idempotent so the stream is closed exactly once no
    matter how many code paths try to close it.  Pushing after the stream
    has been closed raises :class:`RuntimeError`.
    """

    def __init__(self) -> None:
        self._fragments: List[str] = []
        self._changed: asyncio.Event = asyncio.Event()
        self._done: asyncio.Event = asyncio.Event()
        self._closed: bool = False

    async def __aiter__(self) -> AsyncIterator[str]:
        """Iterate over all fragments, from the first, until the stream is closed."""
        position = 0
        while True:
            if position < len(self._fragments):
                fragment = self._fragments[position]
                position += 1
                yield fragment
                continue
            if self._closed:
                return
            await self._changed.wait()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def fragment_count(self) -> int:
        return len(self._fragments)

    def push(self, fragment: str) -> None:
        """Append a fragment to the stream.

        Raises
        ------
        RuntimeError
            If the stream has already been closed.
        """
        if self._closed:
            raise RuntimeError("Cannot push to a closed ContentStream")
        if not fragment:
            return
        self._fragments.append(fragment)
        self._wake_readers()

    def end(self) -> None:
        """Close the stream.  Subsequent calls are no-ops."""
        if self._closed:
            return
        self._closed = True
        self._wake_readers()
        self._done.set()

    def _wake_readers(self) -> None:
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

    def text(self) -> str:
        """Return the fragments pushed so far, concatenated."""
        return "".join(self._fragments)

    async def result(self) -> str:
        """Wait for the stream to close and return the full text."""
        await self._done.wait()
        return self.text()
