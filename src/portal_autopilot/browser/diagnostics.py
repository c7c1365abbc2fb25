"""Failure snapshots for post-mortem analysis."""

import itertools
import re
from datetime import datetime
from pathlib import Path
from typing import List, Union

from playwright.async_api import Page

from portal_autopilot.utils.logging import get_logger

logger = get_logger(__name__)


def sanitize_label(label: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]+", "_", label or "").strip("_")[:80] or "capture"


class DiagnosticCapture:
    """Persist rendered markup and a full-page screenshot of the current page."""

    def __init__(self, page: Page, artifacts_dir: Union[str, Path] = "artifacts"):
        self.page = page
        self.artifacts_dir = Path(artifacts_dir)
        self.captured: List[Path] = []
        self._sequence = itertools.count(1)
        self.logger = logger.bind(component="diagnostic_capture")

    async def capture(self, label: str) -> List[Path]:
        """
        Snapshot the page under ``<label>-<timestamp>``.

        Best-effort: a failure to write diagnostics is logged and never
        raised, so it cannot mask the error being diagnosed.

        Returns:
            Paths of the artifacts actually written
        """
        stamp = datetime.now().strftime("%Y%m%dT%H%M%S%f")
        prefix = f"{sanitize_label(label)}-{stamp}-{next(self._sequence):03d}"
        written: List[Path] = []

        try:
            self.artifacts_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self.logger.error("Cannot create artifacts directory", path=str(self.artifacts_dir), error=str(e))
            return written

        html_path = self.artifacts_dir / f"{prefix}.html"
        try:
            html_path.write_text(await self.page.content(), encoding="utf-8")
            written.append(html_path)
        except Exception as e:
            self.logger.warning("Markup capture failed", label=label, error=str(e))

        png_path = self.artifacts_dir / f"{prefix}.png"
        try:
            await self.page.screenshot(path=str(png_path), full_page=True)
            written.append(png_path)
        except Exception as e:
            self.logger.warning("Screenshot capture failed", label=label, error=str(e))

        self.captured.extend(written)
        self.logger.info(
            "Diagnostics captured",
            label=label,
            url=getattr(self.page, "url", None),
            artifacts=[str(path) for path in written]
        )
        return written
