from __future__ import annotations

import pytest

from thermia_online._transport import RetryPolicy


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Two attempts, no backoff."""
    return RetryPolicy(attempts=2, base_delay=0)
