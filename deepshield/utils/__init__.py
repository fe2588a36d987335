"""deepshield.utils – timers and logging helpers."""
from .logging import configure_logging, log_context
from .scheduler import AsyncioTimer, Timer

__all__ = ["AsyncioTimer", "Timer", "configure_logging", "log_context"]
