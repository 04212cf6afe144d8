"""Log-based readiness detection.

A container is ready once a known marker line shows up in its output.
Matching is done per complete line, so partial lines and earlier boot
messages never count as the marker.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import deque
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from vaultfixture.errors import ReadinessTimeoutError
from vaultfixture.logging_schema import LogEvent

if TYPE_CHECKING:
    from vaultfixture.options import InstanceConfig

logger = logging.getLogger(__name__)

# Lines kept for the timeout error context
RECENT_LINES = 20


async def iter_lines(chunks: AsyncIterator[bytes]) -> AsyncIterator[str]:
    """Re-assemble text lines from arbitrarily split byte chunks.

    A trailing line without a newline is yielded when the stream ends.
    """
    buffer = b""
    try:
        async for chunk in chunks:
            buffer += chunk
            *complete, buffer = buffer.split(b"\n")
            for raw in complete:
                yield raw.rstrip(b"\r").decode("utf-8", errors="replace")
        if buffer:
            yield buffer.rstrip(b"\r").decode("utf-8", errors="replace")
    finally:
        await _aclose(chunks)


async def _aclose(stream: AsyncIterator) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()


class LogReadiness:
    """Wait for a readiness marker in a container's log lines.

    Args:
        pattern: Regex searched in each line.
        timeout: Seconds to wait before giving up.
        occurrences: Number of matching lines required.
    """

    def __init__(self, pattern: str | re.Pattern[str], timeout: float, occurrences: int = 1) -> None:
        self._pattern = re.compile(pattern) if isinstance(pattern, str) else pattern
        self.timeout = timeout
        self.occurrences = occurrences

    @classmethod
    def from_config(cls, config: InstanceConfig) -> LogReadiness:
        return cls(
            config.readiness_pattern,
            config.readiness_timeout,
            occurrences=config.readiness_occurrences,
        )

    @property
    def pattern(self) -> str:
        return self._pattern.pattern

    def matches(self, line: str) -> bool:
        return self._pattern.search(line) is not None

    async def wait(self, lines: AsyncIterator[str]) -> str:
        """Consume lines until the marker has matched enough times.

        Returns:
            The line that completed readiness

        Raises:
            ReadinessTimeoutError: Timeout elapsed or the stream ended first.
        """
        recent: deque[str] = deque(maxlen=RECENT_LINES)
        seen = 0
        try:
            async with asyncio.timeout(self.timeout):
                async for line in lines:
                    recent.append(line)
                    if not self.matches(line):
                        continue
                    seen += 1
                    logger.debug("Readiness marker matched (%d/%d)", seen, self.occurrences)
                    if seen >= self.occurrences:
                        return line
        except TimeoutError:
            logger.warning(
                "Readiness marker not seen in time",
                extra={
                    "event": LogEvent.READINESS_TIMEOUT,
                    "pattern": self.pattern,
                    "timeout": self.timeout,
                },
            )
            raise ReadinessTimeoutError(self.pattern, self.timeout, list(recent)) from None
        finally:
            await _aclose(lines)

        raise ReadinessTimeoutError(
            self.pattern,
            self.timeout,
            list(recent),
            message=f"Log stream closed before readiness marker {self.pattern!r} appeared",
        )
