"""
ingest/extractor.py

Runs nfdump against one capture file and returns its text output.

nfdump exit-status conventions handled here:
  exit 0, any stdout          → the output lines (empty = no flows)
  exit != 0, non-empty stdout → ExtractionFailed with the tool's diagnostics
  exit != 0, empty stdout     → no flows; nfdump reports failure for files
                                that simply hold no records
  missing binary / timeout    → ExtractionFailed
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Protocol

from ..errors import ExtractionFailed

logger = logging.getLogger(__name__)

OUTPUT_FORMAT = "fmt:%ts,%sa,%da,%sp,%dp,%pr,%pkt,%byt"


class Extractor(Protocol):
    """Anything that turns a capture file into exporter text lines."""

    def extract(self, path: str | Path) -> list[str]: ...


class NfdumpExtractor:
    """
    Extractor backed by the nfdump command-line tool.

    Args:
        binary:          nfdump executable name or path.
        timeout_seconds: Hard limit for one invocation; a hung tool
                         surfaces as ExtractionFailed.
    """

    def __init__(self, binary: str = "nfdump", timeout_seconds: float = 120.0) -> None:
        self.binary = binary
        self.timeout_seconds = timeout_seconds

    def command(self, path: str | Path) -> list[str]:
        return [self.binary, "-r", str(path), "-o", OUTPUT_FORMAT]

    def extract(self, path: str | Path) -> list[str]:
        cmd = self.command(path)
        logger.debug("Running %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            raise ExtractionFailed(
                str(path), f"nfdump timed out after {self.timeout_seconds}s"
            ) from None
        except OSError as exc:
            raise ExtractionFailed(str(path), f"cannot run {self.binary!r}: {exc}") from exc

        stdout = result.stdout or ""
        if result.returncode == 0:
            return stdout.splitlines()

        if stdout.strip():
            diagnostic = (stdout + (result.stderr or "")).strip()
            raise ExtractionFailed(
                str(path),
                f"nfdump exited with status {result.returncode}: {diagnostic[:1000]}",
            )

        logger.debug(
            "nfdump exited with status %d and no output for %s — treating as empty",
            result.returncode, path,
        )
        return []
