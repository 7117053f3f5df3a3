"""Small HTTP-related constants shared across genrelay.

Kept separate from the provider modules to avoid circular imports.
"""

from __future__ import annotations

# Status codes that upstream SDK failures are marked retryable for.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})
