"""
Forge Pipeline - Orchestrates validate / auto-repair / export

This module wires together the core components:
PackageParser → AutoFixer → PackageBuilder (only if fixed) → validators → Exporter

Two entry points:
- validate_package(): one pass over an uploaded .ccz
- generate(): bounded retry loop around a content generator, feeding each
  attempt's errors and files back to the next one

Usage:
    pipeline = ForgePipeline()
    result = pipeline.validate_package("/path/to/app.ccz")
"""
import logging
import re
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from config import EXPORTS_DIR, GEMINI_API_KEY, LOGS_DIR, MAX_VALIDATION_RETRIES
from forge.core import (
    AutoFixer,
    BuildError,
    BuildLogger,
    CliValidator,
    Exporter,
    ExportError,
    HqJsonConverter,
    HqValidator,
    PackageBuilder,
    PackageParser,
    ParseError,
)
from forge.generator import GenerationError
from forge.schemas import (
    ArtifactPaths,
    AttemptRecord,
    FileSet,
    PipelineResult,
    PipelineState,
    ProgressEvent,
    ProgressPhase,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]

# Environment problems, not content defects: retrying cannot help
FATAL_ERRORS = (ParseError, BuildError, ExportError)

STATE_PHASES = {
    PipelineState.GENERATING: ProgressPhase.GENERATING,
    PipelineState.PARSING: ProgressPhase.VALIDATING,
    PipelineState.FIXING: ProgressPhase.FIXING,
    PipelineState.BUILDING: ProgressPhase.FIXING,
    PipelineState.VALIDATING_EXTERNAL: ProgressPhase.VALIDATING,
    PipelineState.VALIDATING_RULES: ProgressPhase.VALIDATING,
    PipelineState.EXPORTING: ProgressPhase.VALIDATING,
}

SECRET_PATTERNS = [
    re.compile(r"sk-[A-Za-z0-9_\-]{8,}"),
    re.compile(r"AIza[0-9A-Za-z_\-]{20,}"),
    re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+"),
    re.compile(r"(api[_-]?key\s*[=:]\s*)[^\s&\"']+", re.I),
]


def redact_secrets(text: str) -> str:
    """Mask the configured API key and anything shaped like a credential"""
    if GEMINI_API_KEY:
        text = text.replace(GEMINI_API_KEY, "[REDACTED]")
    for pattern in SECRET_PATTERNS:
        if pattern.groups:
            text = pattern.sub(lambda m: m.group(1) + "[REDACTED]", text)
        else:
            text = pattern.sub("[REDACTED]", text)
    return text


class ContentGenerator(Protocol):
    """Produces a candidate FileSet; raises GenerationError on unusable output"""

    def generate(
        self,
        context: str,
        feedback: Optional[List[str]] = None,
        previous_files: Optional[FileSet] = None,
    ) -> FileSet:
        ...


class _PipelineRun:
    """
    State of one pipeline run

    Attempts live in an arena list indexed from 1; nothing here is shared
    between runs.
    """

    def __init__(self, max_attempts: int, callback: Optional[ProgressCallback], app_name: str):
        self.max_attempts = max_attempts
        self.callback = callback
        self.app_name = app_name
        self.summary: Optional[str] = None
        self.attempts: List[AttemptRecord] = []
        self.aborted = False
        self.notes: List[str] = []
        self.build_log = BuildLogger(app_name)
        # Builds and sources to remove once their attempt has been exported
        self.temporary: List[Tuple[AttemptRecord, Path]] = []
        self.latest_files: Optional[FileSet] = None

    @property
    def current(self) -> AttemptRecord:
        return self.attempts[-1]

    def begin_attempt(self) -> AttemptRecord:
        index = len(self.attempts) + 1
        if index > self.max_attempts:
            raise RuntimeError(f"Attempt {index} exceeds max_attempts={self.max_attempts}")
        record = AttemptRecord(index=index)
        self.attempts.append(record)
        self.notes = []
        self.build_log.section(f"Attempt {index}/{self.max_attempts}")
        return record

    def enter(self, state: PipelineState, message: str, phase: Optional[ProgressPhase] = None) -> None:
        self.current.state = state
        self.build_log.log(message)
        self.emit(phase or STATE_PHASES[state], message, state)

    def emit(self, phase: ProgressPhase, message: str, state: PipelineState) -> None:
        logger.info(f"[Pipeline] ({self.current.index}/{self.max_attempts}) {message}")
        if self.callback is None:
            return
        event = ProgressEvent(
            phase=phase,
            message=message,
            attempt=self.current.index,
            max_attempts=self.max_attempts,
            state=state,
        )
        try:
            self.callback(event)
        except Exception as e:
            # Listener failures never affect the run
            logger.warning(f"[Pipeline] Progress listener failed: {e}")

    def fail(self, error: Exception) -> None:
        """Abort on an environment error; the message is surfaced verbatim after redaction"""
        message = redact_secrets(str(error))
        logger.error(f"[Pipeline] ✗ {message}")
        self.build_log.log(f"FATAL: {message}")
        record = self.current
        record.errors = list(dict.fromkeys(record.errors + [message]))
        record.success = False
        self.aborted = True

    def finish(self, log_dir: Optional[Path]) -> PipelineResult:
        last = self.current
        success = last.success and not self.aborted

        # Best-available artifact: this attempt's, else the latest one exported
        reported = last
        if not last.export_path:
            for record in reversed(self.attempts):
                if record.export_path:
                    reported = record
                    break

        export_path = reported.export_path
        if success:
            message = f"{self.app_name} passed validation"
            if reported.fixes:
                message += f" after {len(reported.fixes)} auto-fix(es)"
            if export_path:
                message += f"; exported to {export_path}"
        elif self.aborted:
            message = last.errors[-1]
        else:
            message = (
                f"Validation failed after {len(self.attempts)} attempt(s) "
                f"with {len(last.errors)} error(s)"
            )
            if export_path:
                message += f"; best-available package exported to {export_path}"
        if self.notes:
            message += f" ({'; '.join(self.notes)})"

        last.state = PipelineState.DONE
        self.emit(
            ProgressPhase.SUCCESS if success else ProgressPhase.FAILED,
            message,
            PipelineState.DONE,
        )
        self.build_log.log(f"Result: {'SUCCESS' if success else 'FAILED'} - {message}")
        log_path = self.build_log.save(log_dir)

        return PipelineResult(
            success=success,
            artifact_paths=ArtifactPaths(
                package_path=reported.package_path,
                export_path=export_path,
                json_path=reported.json_path,
            ),
            errors=list(last.errors),
            fixes_applied=len(reported.fixes),
            app_name=self.app_name,
            message=message,
            attempts=len(self.attempts),
            summary=self.summary,
            log_path=str(log_path) if log_path else None,
        )


class ForgePipeline:
    """
    ForgePipeline - Drives one run from candidate package to exported artifact

    Validators are polymorphic: each declares `name`, `stage` and `can_skip`,
    and returns Success / Failure / Skipped from validate(artifact_path, files).
    A skippable validator that skips is left out of the decision; errors are
    concatenated in validator order.
    """

    def __init__(
        self,
        parser: Optional[PackageParser] = None,
        fixer: Optional[AutoFixer] = None,
        builder: Optional[PackageBuilder] = None,
        validators: Optional[Sequence] = None,
        exporter: Optional[Exporter] = None,
        max_attempts: int = MAX_VALIDATION_RETRIES,
        export_json: bool = True,
        log_dir: Optional[Path] = None,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

        self.parser = parser or PackageParser()
        self.fixer = fixer or AutoFixer()
        self.builder = builder or PackageBuilder()
        self.validators = list(validators) if validators is not None else [CliValidator(), HqValidator()]
        self.exporter = exporter or Exporter(EXPORTS_DIR)
        self.converter = HqJsonConverter()
        self.max_attempts = max_attempts
        self.export_json = export_json
        self.log_dir = log_dir or LOGS_DIR

    def validate_package(
        self,
        archive_path,
        progress_callback: Optional[ProgressCallback] = None,
        discard_source: bool = False,
    ) -> PipelineResult:
        """
        Validate (and auto-fix) an uploaded package

        Args:
            archive_path: Path to the .ccz
            progress_callback: Optional listener for ProgressEvents
            discard_source: Remove archive_path once it has been exported

        Returns:
            PipelineResult; parse/build/export problems are reported in it, not raised
        """
        path = Path(archive_path)
        run = _PipelineRun(1, progress_callback, path.stem)
        record = run.begin_attempt()
        if discard_source:
            run.temporary.append((record, path))
        try:
            self._run_candidate(run, path)
        except FATAL_ERRORS as e:
            run.fail(e)
        self._discard_exported(run)
        return run.finish(self.log_dir)

    def generate(
        self,
        generator: ContentGenerator,
        context: str,
        progress_callback: Optional[ProgressCallback] = None,
        app_name: str = "Generated App",
    ) -> PipelineResult:
        """
        Generate a package, retrying with feedback until it validates

        Args:
            generator: Content generator called once per attempt
            context: What the app should do
            progress_callback: Optional listener for ProgressEvents
            app_name: Name used until the generated profile provides one

        Returns:
            PipelineResult of the last attempt
        """
        run = _PipelineRun(self.max_attempts, progress_callback, app_name)
        feedback: Optional[List[str]] = None

        for _ in range(self.max_attempts):
            record = run.begin_attempt()
            run.enter(
                PipelineState.GENERATING,
                f"Generating app (attempt {record.index}/{self.max_attempts})...",
            )
            try:
                files = generator.generate(context, feedback, run.latest_files)
            except GenerationError as e:
                record.errors = [redact_secrets(str(e))]
                run.build_log.errors("Generator", record.errors)
                feedback = record.errors
                continue

            try:
                run.enter(PipelineState.BUILDING, "Packaging generated files...", ProgressPhase.GENERATING)
                candidate = self.builder.build(files, app_name)
                run.temporary.append((record, candidate))
                if self._run_candidate(run, candidate):
                    break
            except FATAL_ERRORS as e:
                run.fail(e)
                break
            feedback = record.errors

        self._discard_exported(run)
        return run.finish(self.log_dir)

    def _discard_exported(self, run: _PipelineRun) -> None:
        """Exported attempts live on in the export directory; drop their temporary archives"""
        for record, path in run.temporary:
            if not record.export_path:
                continue
            self.builder.discard(path)
            if record.package_path == str(path):
                record.package_path = record.export_path

    def _run_candidate(self, run: _PipelineRun, archive_path: Path) -> bool:
        """Parse → fix → (build) → validate → export one candidate; True if it passed"""
        record = run.current

        run.enter(PipelineState.PARSING, f"Reading {archive_path.name}...")
        parsed = self.parser.parse(archive_path)
        run.app_name = parsed.app_name
        run.summary = parsed.summary
        run.build_log.app_name = parsed.app_name
        run.build_log.files(parsed.files)

        run.enter(PipelineState.FIXING, "Checking for known structural problems...")
        files, fixes = self.fixer.fix(parsed.files)
        record.fixes = [fix.description for fix in fixes]
        run.build_log.fixes(record.fixes)
        run.latest_files = files

        package_path = archive_path
        if fixes:
            run.enter(PipelineState.BUILDING, f"Rebuilding package with {len(fixes)} fix(es)...")
            package_path = self.builder.build(files, parsed.app_name)
            run.temporary.append((record, package_path))
        record.package_path = str(package_path)

        errors: List[str] = []
        passed = True
        for validator in self.validators:
            run.enter(validator.stage, f"Running {validator.name} validation...")
            outcome = validator.validate(package_path, files)
            run.build_log.outcome(outcome)
            if outcome.status == "skipped":
                if validator.can_skip:
                    run.notes.append(outcome.reason)
                    continue
                passed = False
                errors.append(f"{validator.name} could not run: {outcome.reason}")
            elif outcome.status == "failure":
                passed = False
                errors.extend(outcome.errors or [f"{validator.name} rejected the package"])

        record.errors = [redact_secrets(e) for e in dict.fromkeys(errors)]
        record.success = passed

        run.enter(PipelineState.EXPORTING, "Exporting package...")
        record.export_path = str(self.exporter.export_package(package_path, parsed.app_name))
        if self.export_json:
            document = self.converter.convert(files, parsed.app_name)
            record.json_path = str(self.exporter.export_json(document, parsed.app_name))

        return passed


__all__ = ["ForgePipeline", "ContentGenerator", "redact_secrets"]
