"""
deepshield.forensic.policy – threat classification and alert decisions.

``decide`` is the single alerting rule shared by the live scheduler and the
batch processor.  It is pure: callers keep the returned Decision and pass
its ``safe`` / ``threat_score`` back in as the next call's prior state.

    threat_score = 100 - authenticity_score
    alert        = FAKE  or  (SUSPICIOUS and authenticity_score < 60)
    safe         = false on alert; true again only once a non-alerting
                   verdict scores above 72 (hysteresis); otherwise unchanged
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from deepshield.ai.models import AnalysisVerdict, Classification

SUSPICIOUS_ALERT_BELOW = 60
SAFE_RECOVERY_ABOVE = 72
TREND_DEADBAND = 1

Trend = Literal["UP", "DOWN", "STABLE"]


@dataclass(frozen=True)
class PriorState:
    safe: bool = True
    threat_score: int = 0


@dataclass(frozen=True)
class Decision:
    classification: Classification
    threat_score: int
    alert: bool
    safe: bool
    trend: Trend

    def as_prior(self) -> PriorState:
        return PriorState(safe=self.safe, threat_score=self.threat_score)


def is_alert(classification: Classification, authenticity_score: int) -> bool:
    if classification is Classification.FAKE:
        return True
    return (
        classification is Classification.SUSPICIOUS
        and authenticity_score < SUSPICIOUS_ALERT_BELOW
    )


def decide(previous: PriorState, verdict: AnalysisVerdict) -> Decision:
    """Turn one verdict plus the prior session state into a Decision."""
    score = verdict.authenticity_score
    threat = 100 - score
    alert = is_alert(verdict.classification, score)

    if alert:
        safe = False
    elif score > SAFE_RECOVERY_ABOVE:
        safe = True
    else:
        safe = previous.safe

    if threat > previous.threat_score + TREND_DEADBAND:
        trend: Trend = "UP"
    elif threat < previous.threat_score - TREND_DEADBAND:
        trend = "DOWN"
    else:
        trend = "STABLE"

    return Decision(
        classification=verdict.classification,
        threat_score=threat,
        alert=alert,
        safe=safe,
        trend=trend,
    )
