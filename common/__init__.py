#Shared plumbing used by every package:
#publish/subscribe channel with guaranteed unsubscribe
#environment-driven settings (.env) and logging setup
#No business logic.

from .events import EventChannel, Subscription
from .settings import Settings, build_store, configure_logging

__all__ = [
    "EventChannel",
    "Subscription",
    "Settings",
    "build_store",
    "configure_logging",
]
