"""Best-effort parallel fetch.

Runs independent fallible fetches concurrently and maps every failure (exception
or timeout) to that source's documented default, so one flaky collaborator never
blocks the whole assembly.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from buck.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Source:
    """A named fetch and the value it contributes when it fails."""

    name: str
    fetch: Callable[[], Awaitable[Any]]
    default: Any = None


@dataclass
class FanoutResult:
    values: dict[str, Any] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)

    def __getitem__(self, name: str) -> Any:
        return self.values[name]

    @property
    def complete(self) -> bool:
        return not self.failed


async def _call(source: Source, timeout: float | None) -> Any:
    result = source.fetch()
    if timeout is None:
        return await result
    return await asyncio.wait_for(result, timeout=timeout)


async def gather_with_defaults(
    *sources: Source,
    timeout: float | None = None,
) -> FanoutResult:
    """Run all sources concurrently; failed sources yield a copy of their default."""
    names = [s.name for s in sources]
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate source names: {names}")

    results = await asyncio.gather(
        *(_call(s, timeout) for s in sources),
        return_exceptions=True,
    )

    out = FanoutResult()
    for source, result in zip(sources, results, strict=True):
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            logger.warning(
                "fanout_source_failed",
                source=source.name,
                error=str(result) or type(result).__name__,
            )
            out.values[source.name] = copy.copy(source.default)
            out.failed.append(source.name)
        else:
            out.values[source.name] = result
    return out
