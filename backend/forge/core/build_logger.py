"""
Build Logger - Plain-text record of one pipeline run

Kept separate from the `logging` output: one file per run that a user can
attach to a bug report.
"""
import logging
import re
import time
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from config import LOGS_DIR
from forge.schemas import FileSet

logger = logging.getLogger(__name__)

MAX_OUTPUT_CHARS = 2000


class BuildLogger:
    def __init__(self, app_name: str):
        self.app_name = app_name
        self.lines: List[str] = []
        self.started_at = datetime.now()
        self._start = time.monotonic()
        self.log(f"=== Build started: {app_name} ===")
        self.log(f"Time: {self.started_at.isoformat(timespec='seconds')}")

    def log(self, message: str) -> None:
        self.lines.append(f"[{time.monotonic() - self._start:.1f}s] {message}")

    def section(self, title: str) -> None:
        self.lines.append("")
        self.lines.append(f"--- {title} ---")

    def errors(self, source: str, errors: Iterable[str]) -> None:
        errors = list(errors)
        if not errors:
            self.log(f"{source}: No errors")
            return
        self.log(f"{source}: {len(errors)} error(s)")
        self.lines.extend(f"  ERROR: {error}" for error in errors)

    def files(self, files: FileSet) -> None:
        self.log(f"Files ({len(files)}):")
        self.lines.extend(f"  {path} ({len(content)} bytes)" for path, content in sorted(files.items()))

    def fixes(self, fixes: Iterable[str]) -> None:
        fixes = list(fixes)
        if not fixes:
            self.log("Auto-fixer: No fixes needed")
            return
        self.log(f"Auto-fixer: {len(fixes)} fix(es) applied")
        self.lines.extend(f"  FIX: {fix}" for fix in fixes)

    def outcome(self, outcome) -> None:
        """Record a ValidationSuccess / Failure / Skipped"""
        if outcome.status == "skipped":
            self.log(f"{outcome.validator}: SKIPPED ({outcome.reason})")
        elif outcome.status == "success":
            self.log(f"{outcome.validator}: PASSED")
            if outcome.details.strip():
                self.lines.append(f"  output: {outcome.details.strip()[:MAX_OUTPUT_CHARS]}")
        else:
            self.log(f"{outcome.validator}: FAILED")
            self.errors(outcome.validator, outcome.errors)

    def save(self, log_dir: Optional[Path] = None) -> Optional[Path]:
        """
        Write the log file

        Returns:
            Path of the written file, or None if it could not be written
        """
        self.lines.append("")
        self.log(f"=== Build finished ({time.monotonic() - self._start:.1f}s) ===")

        stamp = self.started_at.strftime("%Y-%m-%d_%H-%M-%S")
        safe_name = re.sub(r"[^a-zA-Z0-9_-]", "_", self.app_name)[:40]
        path = Path(log_dir or LOGS_DIR) / f"{stamp}_{safe_name}.txt"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("\n".join(self.lines), encoding="utf-8")
        except OSError as e:
            logger.warning(f"[BuildLogger] Could not write build log {path}: {e}")
            return None
        return path


__all__ = ["BuildLogger"]
