"""
Tests for the alerting rule and safe-state hysteresis (forensic.policy.decide).
"""

from __future__ import annotations

import pytest

from deepshield.ai.models import Classification
from deepshield.forensic.policy import PriorState, decide, is_alert
from tests.fakes import make_verdict

AUTHENTIC = Classification.AUTHENTIC
SUSPICIOUS = Classification.SUSPICIOUS
FAKE = Classification.FAKE


def test_fake_verdict_raises_alert():
    """FAKE at 12 → threat 88, alert, unsafe."""
    decision = decide(PriorState(), make_verdict(FAKE, 12))
    assert decision.threat_score == 88
    assert decision.alert is True
    assert decision.safe is False


def test_authentic_verdict_is_quiet():
    """AUTHENTIC at 95 → threat 5, no alert, safe."""
    decision = decide(PriorState(), make_verdict(AUTHENTIC, 95))
    assert decision.threat_score == 5
    assert decision.alert is False
    assert decision.safe is True


@pytest.mark.parametrize(
    "classification,score,expected",
    [
        (FAKE, 100, True),
        (FAKE, 0, True),
        (SUSPICIOUS, 59, True),
        (SUSPICIOUS, 60, False),
        (SUSPICIOUS, 95, False),
        (AUTHENTIC, 0, False),
        (AUTHENTIC, 59, False),
    ],
)
def test_alert_rule(classification, score, expected):
    assert is_alert(classification, score) is expected


def test_alert_rule_holds_for_every_score():
    """alert ⇔ FAKE or (SUSPICIOUS and score < 60), threat = 100 − score."""
    for classification in Classification:
        for score in range(0, 101):
            decision = decide(PriorState(), make_verdict(classification, score))
            expected = classification is FAKE or (classification is SUSPICIOUS and score < 60)
            assert decision.alert is expected
            assert decision.threat_score == 100 - score
            if decision.alert:
                assert decision.safe is False


def test_safe_recovers_only_above_72():
    """After an alert, 65 and 72 keep the session unsafe; 73 recovers it."""
    prior = decide(PriorState(), make_verdict(FAKE, 10)).as_prior()
    assert prior.safe is False

    still = decide(prior, make_verdict(AUTHENTIC, 65))
    assert still.alert is False
    assert still.safe is False

    boundary = decide(still.as_prior(), make_verdict(SUSPICIOUS, 72))
    assert boundary.safe is False

    recovered = decide(boundary.as_prior(), make_verdict(AUTHENTIC, 73))
    assert recovered.safe is True


def test_safe_state_carries_over_in_the_band():
    """A non-alerting score at or below 72 leaves a safe session safe."""
    decision = decide(PriorState(safe=True), make_verdict(SUSPICIOUS, 65))
    assert decision.alert is False
    assert decision.safe is True


def test_trend_uses_deadband():
    """Threat changes of one point are STABLE; larger moves are UP or DOWN."""
    assert decide(PriorState(threat_score=10), make_verdict(AUTHENTIC, 89)).trend == "STABLE"
    assert decide(PriorState(threat_score=10), make_verdict(AUTHENTIC, 91)).trend == "STABLE"
    assert decide(PriorState(threat_score=10), make_verdict(AUTHENTIC, 80)).trend == "UP"
    assert decide(PriorState(threat_score=30), make_verdict(AUTHENTIC, 95)).trend == "DOWN"
