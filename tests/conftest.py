from __future__ import annotations

import pytest

from shepherd.domain.reconciliation import ChangeApplier
from tests.helpers.sources import RecordingSleep


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def applier(recording_sleep: RecordingSleep) -> ChangeApplier:
    """Applier with the default backoff schedule, no jitter and no real sleeping."""

    return ChangeApplier(
        attempts=4,
        base_delay=0.5,
        max_delay=60.0,
        jitter_ratio=0.1,
        call_timeout=5.0,
        sleep=recording_sleep,
        jitter=lambda _low, _high: 0.0,
    )
