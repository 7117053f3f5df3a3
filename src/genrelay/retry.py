"""Bounded "retry until the model answered" loop.

The core never retries on its own. ``generate_until_content`` is the one
attempt loop applications layer on top of ``generate_with_tools``.
"""

from __future__ import annotations

from collections.abc import Mapping
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from genrelay.config import Config
    from genrelay.providers.models import GenerateRequest

log = logging.getLogger(__name__)

#: Attempts made by the content-retry loop before giving up.
CONTENT_ATTEMPTS = 3


def has_content(result: Any) -> bool:
    """Success check of the content-retry loop.

    Only the presence of a ``content`` key is checked (or an already
    unwrapped string); its value is not validated.
    """
    if isinstance(result, str):
        return True
    return isinstance(result, Mapping) and "content" in result


async def generate_until_content(
    request: GenerateRequest,
    *,
    config: Config,
    attempts: int = CONTENT_ATTEMPTS,
) -> Any:
    """Call ``generate_with_tools`` until a result carries content.

    Attempts run back to back. Any exception is retried until the last
    attempt, then re-raised. If every attempt returns a result without
    content, the last result is returned.
    """
    from genrelay.dispatch import generate_with_tools

    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    result: Any = None
    for attempt in range(1, attempts + 1):
        try:
            result = await generate_with_tools(request, config=config)
        except Exception as exc:
            if attempt >= attempts:
                raise
            log.debug("Attempt %d/%d failed: %s", attempt, attempts, exc)
            continue
        if has_content(result):
            return result
        log.debug("Attempt %d/%d returned no content", attempt, attempts)

    log.warning("%s returned no content after %d attempts", config.provider, attempts)
    return result
