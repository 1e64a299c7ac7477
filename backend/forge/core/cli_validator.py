"""
CLI Validator - commcare-cli.jar against the built .ccz

Responsibilities:
- Detect whether Java and the CLI jar are present (cached per process)
- Run the jar with a bounded timeout and capture its output
- Turn error/exception lines into the error list

A missing toolchain is not an error: the outcome is Skipped and the rule
validator alone decides. Crashes and timeouts are failures, never success.
"""
import logging
import re
import shutil
import subprocess
import threading
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Protocol, Tuple

from config import CLI_JAR_PATH, CLI_TIMEOUT_SECONDS, JAVA_BIN, TOOLCHAIN_PROBE_TIMEOUT_SECONDS
from forge.schemas import (
    FileSet,
    PipelineState,
    ValidationFailure,
    ValidationSkipped,
    ValidationSuccess,
)

logger = logging.getLogger(__name__)

ERROR_LINE_RE = re.compile(r"\b(error|exception|fatal)\b", re.I)


class ToolchainStatus(NamedTuple):
    available: bool
    reason: str = ""


class ToolchainProbe(Protocol):
    """Capability check for the external toolchain"""

    def check(self) -> ToolchainStatus:
        ...

    def invalidate(self) -> None:
        ...


# Process-wide probe results, keyed by a cheap fingerprint of the toolchain
_probe_cache: Dict[Tuple, ToolchainStatus] = {}
_probe_lock = threading.Lock()


class JavaToolchainProbe:
    """
    Checks for the CLI jar and a working `java`

    The expensive `java -version` call runs once per fingerprint; a jar that
    appears, disappears or changes, or a different java binary, re-probes.
    """

    def __init__(self, jar_path: Optional[Path] = None, java_bin: Optional[str] = None):
        self.jar_path = Path(jar_path) if jar_path else CLI_JAR_PATH
        self.java_bin = java_bin or JAVA_BIN

    def _fingerprint(self) -> Tuple:
        try:
            jar_mtime = self.jar_path.stat().st_mtime
        except OSError:
            jar_mtime = None
        return (str(self.jar_path), jar_mtime, shutil.which(self.java_bin))

    def check(self) -> ToolchainStatus:
        fingerprint = self._fingerprint()
        with _probe_lock:
            cached = _probe_cache.get(fingerprint)
        if cached is not None:
            return cached

        status = self._probe(fingerprint)
        with _probe_lock:
            _probe_cache[fingerprint] = status
        logger.info(f"[CliValidator] Toolchain probe: {'available' if status.available else status.reason}")
        return status

    def _probe(self, fingerprint: Tuple) -> ToolchainStatus:
        _, jar_mtime, java_path = fingerprint
        if jar_mtime is None:
            return ToolchainStatus(False, f"{self.jar_path.name} not found")
        if not java_path:
            return ToolchainStatus(False, "Java not found")
        try:
            result = subprocess.run(
                [java_path, "-version"],
                capture_output=True,
                text=True,
                timeout=TOOLCHAIN_PROBE_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            return ToolchainStatus(False, f"Java not usable: {e}")
        if result.returncode != 0:
            return ToolchainStatus(False, f"Java not usable (exit code {result.returncode})")
        return ToolchainStatus(True)

    def invalidate(self) -> None:
        with _probe_lock:
            for key in [k for k in _probe_cache if k[0] == str(self.jar_path)]:
                del _probe_cache[key]


class StaticToolchainProbe:
    """Fixed answer, for forcing either branch"""

    def __init__(self, available: bool, reason: str = "toolchain disabled"):
        self.status = ToolchainStatus(available, "" if available else reason)

    def check(self) -> ToolchainStatus:
        return self.status

    def invalidate(self) -> None:
        pass


class CliValidator:
    """
    CliValidator - External toolchain check

    Runs `java -jar commcare-cli.jar play <ccz>`.
    """

    name = "CommCare CLI"
    stage = PipelineState.VALIDATING_EXTERNAL
    can_skip = True

    def __init__(
        self,
        jar_path: Optional[Path] = None,
        java_bin: Optional[str] = None,
        timeout: Optional[float] = None,
        probe: Optional[ToolchainProbe] = None,
    ):
        self.jar_path = Path(jar_path) if jar_path else CLI_JAR_PATH
        self.java_bin = java_bin or JAVA_BIN
        self.timeout = timeout if timeout is not None else CLI_TIMEOUT_SECONDS
        self.probe = probe or JavaToolchainProbe(self.jar_path, self.java_bin)

    def validate(self, artifact_path: Path, files: Optional[FileSet] = None):
        """
        Validate a built archive

        Args:
            artifact_path: The .ccz to check
            files: Unused; accepted so all validators share one signature

        Returns:
            ValidationSuccess, ValidationFailure or ValidationSkipped
        """
        status = self.probe.check()
        if not status.available:
            logger.info(f"[CliValidator] Skipped: {status.reason}")
            return ValidationSkipped(validator=self.name, reason=f"CLI validation skipped: {status.reason}")

        command = [self.java_bin, "-jar", str(self.jar_path), "play", str(artifact_path)]
        logger.info(f"[CliValidator] Running: {' '.join(command)}")

        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                stdin=subprocess.DEVNULL,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            # subprocess.run kills the child before re-raising
            logger.warning(f"[CliValidator] ✗ Timed out after {self.timeout}s")
            return ValidationFailure(
                validator=self.name,
                errors=[f"CLI validator timed out after {self.timeout} seconds"],
            )
        except OSError as e:
            self.probe.invalidate()
            logger.warning(f"[CliValidator] ✗ Could not run CLI: {e}")
            return ValidationFailure(validator=self.name, errors=[f"Failed to run CLI: {e}"])

        errors = self.parse_errors(result.stdout or "", result.stderr or "")
        if result.returncode == 0 and not errors:
            logger.info("[CliValidator] ✓ Passed")
            return ValidationSuccess(validator=self.name, details=result.stdout or "")

        if not errors:
            errors = [f"CLI exited with code {result.returncode}"]
        logger.info(f"[CliValidator] ✗ Failed: {len(errors)} error(s)")
        return ValidationFailure(validator=self.name, errors=errors)

    @staticmethod
    def parse_errors(stdout: str, stderr: str) -> List[str]:
        """Error/exception/fatal lines, without stack frames or numbered lines"""
        errors = []
        for line in f"{stdout}\n{stderr}".splitlines():
            trimmed = line.strip()
            if not trimmed:
                continue
            if ERROR_LINE_RE.search(trimmed) and not trimmed.startswith("at ") and not trimmed[0].isdigit():
                errors.append(trimmed)
        return errors


__all__ = [
    "CliValidator",
    "JavaToolchainProbe",
    "StaticToolchainProbe",
    "ToolchainProbe",
    "ToolchainStatus",
]
