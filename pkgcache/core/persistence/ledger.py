"""
Run ledger — append-only NDJSON history of package pipeline runs.

One line per package per run: which stages ran, how it ended and how
long it took. Lives next to the state file as .pkgcache/runs.ndjson.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

LEDGER_FILE = "runs.ndjson"


class LedgerEntry(BaseModel):
    """One package pipeline run."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    package: str = ""
    status: str = ""                 # installed, skipped, failed
    stages: list[str] = Field(default_factory=list)
    fetched: bool = False            # a transfer actually happened
    duration_ms: int = 0
    errors: list[str] = Field(default_factory=list)


class LedgerWriter:
    """Appends entries to, and reads them back from, an NDJSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def write(self, entry: LedgerEntry) -> None:
        """Append one entry. A ledger that cannot be written is logged, not fatal."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(entry.model_dump_json() + "\n")
        except OSError as e:
            logger.error("Failed to write ledger entry to %s: %s", self.path, e)

    def read_all(self) -> list[LedgerEntry]:
        """Every entry, oldest first. Corrupt lines are skipped."""
        if not self.path.is_file():
            return []

        entries = []
        with self.path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    entries.append(LedgerEntry.model_validate(json.loads(line)))
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.warning("Skipping corrupt ledger line %d: %s", line_num, e)
        return entries

    def read_recent(self, n: int = 20) -> list[LedgerEntry]:
        return self.read_all()[-n:]
