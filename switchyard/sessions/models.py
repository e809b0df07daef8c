"""Session data model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from switchyard.sessions.protocols import Actor, ClientChannel


@dataclass
class ApplicationSession:
    """Everything bound to one logical application.

    A session lives from its first use until the registry closes it.
    Only the registry mutates the authentication fields.
    """

    app_id: str
    actor: Actor
    client: ClientChannel | None = None
    locator: Any = None
    base_url: str | None = None
    authenticated: bool = False
    auth_token: str | None = None
    user: Any = None
    created_at: datetime = field(default_factory=datetime.now)

    def __repr__(self) -> str:
        return (
            f"ApplicationSession(app_id={self.app_id!r}, "
            f"authenticated={self.authenticated})"
        )


@dataclass(frozen=True)
class ContextSwitchResult:
    """Outcome of one attempt to make an application current."""

    previous_app: str | None
    current_app: str
    duration_ms: float
    success: bool
    error: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "previous_app": self.previous_app,
            "current_app": self.current_app,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class SessionMetrics:
    """Aggregate switching statistics for a registry.

    success_rate is 1.0 when no switch has happened yet.
    """

    total_switches: int
    average_switch_time_ms: float
    success_rate: float
    session_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_switches": self.total_switches,
            "average_switch_time_ms": self.average_switch_time_ms,
            "success_rate": self.success_rate,
            "session_count": self.session_count,
        }
