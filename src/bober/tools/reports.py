"""Report persistence for incident workflows.

Each incident directory holds an append-only investigation log
(``analysis.md``), the final summary (``analysis-summary.md``) and, when the
resolution phase runs, ``resolution.md``.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)

ANALYSIS_FILENAME = "analysis.md"
SUMMARY_FILENAME = "analysis-summary.md"
RESOLUTION_FILENAME = "resolution.md"


class ReportSink(Protocol):
    """Destination for formatted workflow output."""

    async def append_iteration_record(self, incident_id: str, fragment: str) -> None: ...

    async def write_final_report(
        self,
        incident_id: str,
        document: str,
        document_name: str = SUMMARY_FILENAME,
    ) -> None: ...


class MarkdownReportSink:
    """Writes incident reports as markdown files under ``<base>/incidents/<id>``."""

    def __init__(self, base_directory: str | Path) -> None:
        self.incidents_root = Path(base_directory) / "incidents"

    def incident_directory(self, incident_id: str) -> Path:
        return self.incidents_root / incident_id

    async def append_iteration_record(self, incident_id: str, fragment: str) -> None:
        path = self.incident_directory(incident_id) / ANALYSIS_FILENAME
        await asyncio.to_thread(_append_text, path, fragment)
        logger.debug("report_fragment_appended", incident_id=incident_id, chars=len(fragment))

    async def write_final_report(
        self,
        incident_id: str,
        document: str,
        document_name: str = SUMMARY_FILENAME,
    ) -> None:
        path = self.incident_directory(incident_id) / document_name
        await asyncio.to_thread(_write_text, path, document)
        logger.info("final_report_written", incident_id=incident_id, path=str(path))

    async def read_analysis(self, incident_id: str) -> str:
        """Return the full investigation log, as exposed to the summarizer agent."""
        text = await self.read_document(incident_id, ANALYSIS_FILENAME)
        return text if text is not None else "No analysis file exists yet."

    async def read_document(self, incident_id: str, document_name: str) -> str | None:
        path = self.incident_directory(incident_id) / document_name
        return await asyncio.to_thread(_read_text, path)


def _append_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(text)


def _write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _read_text(path: Path) -> str | None:
    if not path.exists():
        return None
    return path.read_text(encoding="utf-8")
