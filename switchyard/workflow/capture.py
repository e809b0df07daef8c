"""Best-effort screenshot capture.

Capture never fails a workflow: errors are logged and the call returns
None instead of a filename.
"""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path
from typing import TYPE_CHECKING

from switchyard.errors import CaptureError, ErrorContext

if TYPE_CHECKING:
    from switchyard.sessions import ApplicationSession, SessionRegistry

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


def _safe(part: str) -> str:
    return _UNSAFE_CHARS.sub("_", part).strip("_") or "unnamed"


class ScreenshotSink:
    """Writes screenshots under one directory.

    Filenames have the form ``{prefix}_{app_id}_{timestamp_ms}.png``.
    """

    def __init__(self, directory: str | Path = "screenshots") -> None:
        self.directory = Path(directory)

    def filename_for(self, prefix: str, app_id: str) -> str:
        return f"{_safe(prefix)}_{_safe(app_id)}_{int(time.time() * 1000)}.png"

    async def capture(
        self,
        session: ApplicationSession,
        prefix: str,
        app_id: str | None = None,
    ) -> str | None:
        """Screenshot one session's actor.

        Returns:
            The written file's path, or None if capture failed.
        """
        app = app_id or session.app_id
        path = self.directory / self.filename_for(prefix, app)
        try:
            if session.actor.is_closed():
                raise CaptureError(
                    "Actor is closed",
                    context=ErrorContext(app_id=app),
                )
            self.directory.mkdir(parents=True, exist_ok=True)
            await session.actor.screenshot(str(path))
        except Exception as e:
            logger.warning(f"Failed to capture screenshot for {app}: {e}")
            return None
        logger.debug(f"Screenshot saved: {path}")
        return str(path)

    async def capture_all(self, registry: SessionRegistry, prefix: str) -> dict[str, str]:
        """Screenshot every live session; failed captures are left out."""
        screenshots: dict[str, str] = {}
        for app_id, session in registry.sessions.items():
            filename = await self.capture(session, prefix, app_id)
            if filename is not None:
                screenshots[app_id] = filename
        return screenshots
