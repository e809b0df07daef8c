"""Application sessions and the registry that switches between them."""

from switchyard.sessions.models import ApplicationSession, ContextSwitchResult, SessionMetrics
from switchyard.sessions.playwright import PlaywrightActor, PlaywrightActorFactory
from switchyard.sessions.protocols import (
    Actor,
    ActorFactory,
    ClientChannel,
    ClientFactory,
    LocatorFactory,
    UILogin,
)
from switchyard.sessions.registry import SessionRegistry

__all__ = [
    "Actor",
    "ActorFactory",
    "ApplicationSession",
    "ClientChannel",
    "ClientFactory",
    "ContextSwitchResult",
    "LocatorFactory",
    "PlaywrightActor",
    "PlaywrightActorFactory",
    "SessionMetrics",
    "SessionRegistry",
    "UILogin",
]
