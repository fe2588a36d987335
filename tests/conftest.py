"""
Pytest fixtures for DeepShield tests. Settings never read the developer's .env.
"""

from __future__ import annotations

import pytest

from tests.fakes import RecordingSleep, make_settings


@pytest.fixture
def settings():
    """Deterministic settings: pro/flash tiers, budget 2, 1s backoff base."""
    return make_settings()


@pytest.fixture
def sleep():
    """Records backoff delays instead of waiting."""
    return RecordingSleep()


@pytest.fixture
def client(settings):
    """
    FastAPI TestClient over a fresh app with an instant classifier and fast
    live cadence. Entering the client runs the lifespan.
    """
    from fastapi.testclient import TestClient

    from deepshield.main import create_app
    from tests.fakes import ScriptedClassifier, verdict_json

    fast = settings.model_copy(
        update={
            "backoff_base_s": 0.0,
            "live_interval_s": 0.05,
            "alert_interval_s": 0.05,
            "not_ready_delay_s": 0.02,
        }
    )
    classifier = ScriptedClassifier(verdict_json("AUTHENTIC", 95))
    app = create_app(fast, classifier=classifier)
    with TestClient(app) as test_client:
        test_client.classifier = classifier
        yield test_client
