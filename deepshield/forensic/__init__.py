"""deepshield.forensic – threat classification policy."""
from .policy import Decision, PriorState, decide, is_alert

__all__ = ["Decision", "PriorState", "decide", "is_alert"]
