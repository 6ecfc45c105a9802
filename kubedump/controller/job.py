"""Units of deferred work executed by the controller's workers."""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

JobFn = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class Job:
    """A coroutine function plus a stable identity.

    Equality and hashing use ``id`` only, so the same Job requeued after a
    failure is recognised by the work queue.
    """

    fn: JobFn = field(compare=False)
    description: str = field(default="", compare=False)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    async def run(self) -> None:
        await self.fn()

    def __str__(self) -> str:
        return self.description or self.id
