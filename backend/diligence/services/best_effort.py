"""Best-effort aggregation of independent data sources.

Each source is a zero-argument coroutine function. A source that raises or
exceeds the timeout is reported as SourceUnavailable and replaced by its
default, so one slow collection never blocks or fails a whole page.
"""

import asyncio
import logging
import os
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from diligence.errors import SourceUnavailable

logger = logging.getLogger(__name__)

SOURCE_TIMEOUT_SECONDS = float(os.getenv("DASHBOARD_SOURCE_TIMEOUT_SECONDS", "5"))

SourceFn = Callable[[], Awaitable[Any]]


async def fetch_source(name: str, fetch: SourceFn, timeout: Optional[float] = None) -> Any:
    """Run one source, converting any failure into SourceUnavailable."""
    try:
        return await asyncio.wait_for(fetch(), timeout or SOURCE_TIMEOUT_SECONDS)
    except SourceUnavailable:
        raise
    except asyncio.TimeoutError as e:
        raise SourceUnavailable(name, "timed out") from e
    except Exception as e:
        raise SourceUnavailable(name, str(e)) from e


async def gather_best_effort(
    sources: Dict[str, Tuple[SourceFn, Any]],
    timeout: Optional[float] = None,
) -> Tuple[Dict[str, Any], List[str]]:
    """Fetch all sources concurrently.

    Args:
        sources: name -> (fetch function, default value)
        timeout: per-source timeout in seconds

    Returns:
        (name -> value, names of sources that fell back to their default)
    """
    names = list(sources)
    outcomes = await asyncio.gather(
        *(fetch_source(name, sources[name][0], timeout) for name in names),
        return_exceptions=True,
    )

    values: Dict[str, Any] = {}
    unavailable: List[str] = []
    for name, outcome in zip(names, outcomes):
        if isinstance(outcome, SourceUnavailable):
            logger.warning(f"Best-effort source degraded to default: {outcome.message}")
            values[name] = sources[name][1]
            unavailable.append(name)
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            values[name] = outcome
    return values, unavailable
