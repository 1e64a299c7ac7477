"""
Tests for ForgePipeline

Validators are real where the toolchain is not involved; the CLI is either
forced unavailable or replaced by a stub with a fixed outcome.
"""
from pathlib import Path

import pytest

from forge import pipeline as pipeline_module
from forge.core import Exporter, HqValidator, PackageBuilder
from forge.core.cli_validator import CliValidator, StaticToolchainProbe
from forge.generator import GenerationError
from forge.pipeline import ForgePipeline, redact_secrets
from forge.schemas import (
    PipelineState,
    ProgressPhase,
    ValidationFailure,
    ValidationSkipped,
    ValidationSuccess,
)

DANGLING_COMMAND = '    <command id="m0-f0"/>\n    <command id="m0-f1"/>'
UNKNOWN_FORM_ERROR = (
    'Suite entry references form xmlns "http://openrosa.org/formdesigner/unknown" '
    'but no XForm file has this xmlns.'
)


class StubValidator:
    """Validator with a fixed outcome"""

    def __init__(self, outcome, stage=PipelineState.VALIDATING_EXTERNAL, can_skip=True):
        self.outcome = outcome
        self.name = outcome.validator
        self.stage = stage
        self.can_skip = can_skip
        self.calls = []

    def validate(self, artifact_path, files=None):
        self.calls.append(Path(artifact_path))
        return self.outcome


class ScriptedGenerator:
    """Returns (or raises) the scripted responses in order, repeating the last"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.feedback = []
        self.previous_files = []

    def generate(self, context, feedback=None, previous_files=None):
        self.feedback.append(feedback)
        self.previous_files.append(previous_files)
        response = self.responses[min(len(self.feedback), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return response


def unknown_form_files(valid_texts):
    texts = dict(valid_texts)
    texts["suite.xml"] = texts["suite.xml"].replace(
        "<form>http://openrosa.org/formdesigner/patient-registration</form>",
        "<form>http://openrosa.org/formdesigner/unknown</form>",
    )
    return {path: text.encode("utf-8") for path, text in texts.items()}


@pytest.fixture
def make_pipeline(temp_workspace):
    """Factory: pipeline writing only inside the temp workspace, CLI unavailable by default"""
    def make(cli=None, exporter=None, **kwargs):
        validators = [
            cli or CliValidator(probe=StaticToolchainProbe(False, "Java not found")),
            HqValidator(),
        ]
        return ForgePipeline(
            builder=PackageBuilder(temp_workspace / "build"),
            validators=validators,
            exporter=exporter or Exporter(temp_workspace / "exports"),
            log_dir=temp_workspace / "logs",
            **kwargs,
        )
    return make


@pytest.fixture
def events():
    return []


class TestValidatePackage:
    """One pass over an uploaded archive"""

    def test_valid_package(self, make_pipeline, write_archive, valid_files, events, temp_workspace):
        archive = write_archive(valid_files)

        result = make_pipeline().validate_package(archive, events.append)

        assert result.success is True
        assert result.fixes_applied == 0
        assert result.errors == []
        assert result.app_name == "Patient Tracker"
        assert result.artifact_paths.package_path == str(archive)
        assert result.artifact_paths.export_path == str(temp_workspace / "exports" / "Patient Tracker.ccz")
        assert Path(result.artifact_paths.json_path).exists()
        assert Path(result.log_path).exists()
        assert "CLI validation skipped: Java not found" in result.message
        assert [e.state for e in events] == [
            PipelineState.PARSING,
            PipelineState.FIXING,
            PipelineState.VALIDATING_EXTERNAL,
            PipelineState.VALIDATING_RULES,
            PipelineState.EXPORTING,
            PipelineState.DONE,
        ]
        assert events[-1].phase == ProgressPhase.SUCCESS

    def test_dangling_command_is_fixed_and_rebuilt(
        self, make_pipeline, write_archive, valid_texts, events, temp_workspace
    ):
        valid_texts["suite.xml"] = valid_texts["suite.xml"].replace('    <command id="m0-f0"/>', DANGLING_COMMAND)
        archive = write_archive(valid_texts)

        result = make_pipeline().validate_package(archive, events.append)

        assert result.success is True
        assert result.fixes_applied == 1
        assert PipelineState.BUILDING in [e.state for e in events]
        assert result.artifact_paths.package_path == result.artifact_paths.export_path
        assert Path(result.artifact_paths.export_path).exists()
        assert "after 1 auto-fix(es)" in result.message
        assert archive.exists()
        assert list((temp_workspace / "build").iterdir()) == []

    def test_not_an_archive(self, make_pipeline, temp_workspace, events):
        archive = temp_workspace / "broken.ccz"
        archive.write_bytes(b"definitely not a zip file")

        result = make_pipeline().validate_package(archive, events.append)

        assert result.success is False
        assert result.errors[0].startswith("Failed to parse broken.ccz")
        assert result.message == result.errors[-1]
        assert result.artifact_paths.export_path is None
        assert [e.state for e in events] == [PipelineState.PARSING, PipelineState.DONE]
        assert events[-1].phase == ProgressPhase.FAILED

    @pytest.mark.parametrize("kind", ["deflate", "encrypted", "method"])
    def test_unreadable_entry_fails_the_run(self, make_pipeline, damaged_archive, kind):
        result = make_pipeline().validate_package(damaged_archive(kind))

        assert result.success is False
        assert result.errors[0].startswith(f"Failed to parse {kind}.ccz")
        assert result.artifact_paths.export_path is None

    def test_rule_failure_still_exports(self, make_pipeline, write_archive, valid_texts):
        archive = write_archive(unknown_form_files(valid_texts))

        result = make_pipeline().validate_package(archive)

        assert result.success is False
        assert result.errors == [UNKNOWN_FORM_ERROR]
        assert Path(result.artifact_paths.export_path).exists()
        assert result.message.startswith("Validation failed after 1 attempt(s) with 1 error(s)")

    def test_skipped_cli_does_not_mask_rule_failure(self, make_pipeline, write_archive, valid_texts):
        archive = write_archive(unknown_form_files(valid_texts))
        cli = StubValidator(ValidationSkipped(validator="CommCare CLI", reason="Java not found"))

        result = make_pipeline(cli=cli).validate_package(archive)

        assert result.success is False
        assert result.errors == [UNKNOWN_FORM_ERROR]

    def test_cli_errors_come_first_and_are_deduplicated(self, make_pipeline, write_archive, valid_texts):
        archive = write_archive(unknown_form_files(valid_texts))
        cli = StubValidator(ValidationFailure(validator="CommCare CLI", errors=["cli boom", "cli boom"]))

        result = make_pipeline(cli=cli).validate_package(archive)

        assert result.errors == ["cli boom", UNKNOWN_FORM_ERROR]

    def test_cli_failure_fails_valid_package(self, make_pipeline, write_archive, valid_files):
        cli = StubValidator(ValidationFailure(validator="CommCare CLI", errors=["Error: broken"]))

        result = make_pipeline(cli=cli).validate_package(write_archive(valid_files))

        assert result.success is False
        assert result.errors == ["Error: broken"]

    def test_cli_runs_against_the_built_package(self, make_pipeline, write_archive, valid_texts, temp_workspace):
        valid_texts["suite.xml"] = valid_texts["suite.xml"].replace('    <command id="m0-f0"/>', DANGLING_COMMAND)
        archive = write_archive(valid_texts)
        cli = StubValidator(ValidationSuccess(validator="CommCare CLI"))

        result = make_pipeline(cli=cli).validate_package(archive)

        assert result.success is True
        assert len(cli.calls) == 1
        assert cli.calls[0] != archive
        assert cli.calls[0].parent.parent == temp_workspace / "build"
        assert not cli.calls[0].exists()

    def test_unskippable_validator_that_skips_fails(self, make_pipeline, write_archive, valid_files):
        cli = StubValidator(ValidationSkipped(validator="Strict", reason="offline"), can_skip=False)

        result = make_pipeline(cli=cli).validate_package(write_archive(valid_files))

        assert result.success is False
        assert result.errors == ["Strict could not run: offline"]

    def test_errors_are_redacted(self, make_pipeline, write_archive, valid_files):
        secret = "AIza" + "x" * 30
        cli = StubValidator(ValidationFailure(validator="CommCare CLI", errors=[f"Error: bad key {secret}"]))

        result = make_pipeline(cli=cli).validate_package(write_archive(valid_files))

        assert result.errors == ["Error: bad key [REDACTED]"]

    def test_export_failure_keeps_validation_errors(self, make_pipeline, write_archive, valid_texts, temp_workspace):
        blocker = temp_workspace / "blocker"
        blocker.write_text("file in the way")
        archive = write_archive(unknown_form_files(valid_texts))

        result = make_pipeline(exporter=Exporter(blocker)).validate_package(archive)

        assert result.success is False
        assert result.errors[0] == UNKNOWN_FORM_ERROR
        assert result.errors[1].startswith("Failed to export")
        assert result.message.startswith(result.errors[1])
        assert result.artifact_paths.export_path is None

    def test_export_failure_fails_valid_package(self, make_pipeline, write_archive, valid_files, temp_workspace):
        blocker = temp_workspace / "blocker"
        blocker.write_text("file in the way")

        result = make_pipeline(exporter=Exporter(blocker)).validate_package(write_archive(valid_files))

        assert result.success is False
        assert len(result.errors) == 1

    def test_discard_source_after_export(self, make_pipeline, write_archive, valid_files):
        archive = write_archive(valid_files)

        result = make_pipeline().validate_package(archive, discard_source=True)

        assert result.success is True
        assert not archive.exists()
        assert result.artifact_paths.package_path == result.artifact_paths.export_path

    def test_source_kept_when_export_fails(self, make_pipeline, write_archive, valid_files, temp_workspace):
        blocker = temp_workspace / "blocker"
        blocker.write_text("file in the way")
        archive = write_archive(valid_files)

        result = make_pipeline(exporter=Exporter(blocker)).validate_package(archive, discard_source=True)

        assert archive.exists()
        assert result.artifact_paths.package_path == str(archive)

    def test_json_export_can_be_disabled(self, make_pipeline, write_archive, valid_files):
        result = make_pipeline(export_json=False).validate_package(write_archive(valid_files))

        assert result.success is True
        assert result.artifact_paths.json_path is None

    def test_listener_failure_does_not_affect_run(self, make_pipeline, write_archive, valid_files):
        def listener(event):
            raise RuntimeError("ui went away")

        result = make_pipeline().validate_package(write_archive(valid_files), listener)

        assert result.success is True


class TestGenerate:
    """Bounded generate → validate → feedback loop"""

    def test_max_attempts_must_be_positive(self, make_pipeline):
        with pytest.raises(ValueError):
            make_pipeline(max_attempts=0)

    def test_first_attempt_passes(self, make_pipeline, valid_files, events):
        generator = ScriptedGenerator(valid_files)

        result = make_pipeline(max_attempts=3).generate(generator, "track patients", events.append, app_name="Clinic")

        assert result.success is True
        assert result.attempts == 1
        assert result.app_name == "Patient Tracker"
        assert generator.feedback == [None]
        assert [e.state for e in events][:3] == [
            PipelineState.GENERATING,
            PipelineState.BUILDING,
            PipelineState.PARSING,
        ]
        assert events[1].phase == ProgressPhase.GENERATING

    def test_errors_become_feedback(self, make_pipeline, valid_files, valid_texts):
        generator = ScriptedGenerator(unknown_form_files(valid_texts), valid_files)

        result = make_pipeline(max_attempts=3).generate(generator, "track patients")

        assert result.success is True
        assert result.attempts == 2
        assert generator.feedback == [None, [UNKNOWN_FORM_ERROR]]

    def test_previous_files_accompany_feedback(self, make_pipeline, valid_files, valid_texts):
        first = unknown_form_files(valid_texts)
        generator = ScriptedGenerator(first, GenerationError("empty answer"), valid_files)

        make_pipeline(max_attempts=3).generate(generator, "track patients")

        assert generator.previous_files == [None, first, first]

    def test_candidate_builds_are_removed(self, make_pipeline, valid_files, valid_texts, temp_workspace):
        generator = ScriptedGenerator(unknown_form_files(valid_texts), valid_files)

        result = make_pipeline(max_attempts=3).generate(generator, "track patients")

        assert result.success is True
        assert list((temp_workspace / "build").iterdir()) == []
        assert result.artifact_paths.package_path == result.artifact_paths.export_path

    def test_retries_are_bounded(self, make_pipeline, valid_texts, events):
        generator = ScriptedGenerator(unknown_form_files(valid_texts))

        result = make_pipeline(max_attempts=3).generate(generator, "track patients", events.append)

        assert result.success is False
        assert result.attempts == 3
        assert len(generator.feedback) == 3
        assert result.errors == [UNKNOWN_FORM_ERROR]
        assert Path(result.artifact_paths.export_path).exists()
        assert all(1 <= e.attempt <= 3 and e.max_attempts == 3 for e in events)
        assert [e.attempt for e in events] == sorted(e.attempt for e in events)
        assert [e.state for e in events].count(PipelineState.DONE) == 1

    def test_generation_error_consumes_attempt(self, make_pipeline, valid_files):
        generator = ScriptedGenerator(GenerationError("Failed to parse generated app files"), valid_files)

        result = make_pipeline(max_attempts=2).generate(generator, "track patients")

        assert result.success is True
        assert result.attempts == 2
        assert generator.feedback[1] == ["Failed to parse generated app files"]

    def test_generation_never_succeeds(self, make_pipeline):
        generator = ScriptedGenerator(GenerationError("Model request failed: quota"))

        result = make_pipeline(max_attempts=2).generate(generator, "track patients")

        assert result.success is False
        assert result.attempts == 2
        assert result.errors == ["Model request failed: quota"]
        assert result.artifact_paths.export_path is None

    def test_keeps_best_available_export(self, make_pipeline, valid_texts):
        generator = ScriptedGenerator(unknown_form_files(valid_texts), GenerationError("empty answer"))

        result = make_pipeline(max_attempts=2).generate(generator, "track patients")

        assert result.success is False
        assert result.errors == ["empty answer"]
        assert Path(result.artifact_paths.export_path).exists()

    def test_parse_error_stops_retrying(self, make_pipeline, valid_files):
        files = {path: content for path, content in valid_files.items() if path != "profile.ccpr"}
        generator = ScriptedGenerator(files)

        result = make_pipeline(max_attempts=3).generate(generator, "track patients")

        assert result.success is False
        assert result.attempts == 1
        assert len(generator.feedback) == 1


def test_redact_secrets(monkeypatch):
    monkeypatch.setattr(pipeline_module, "GEMINI_API_KEY", None)

    assert redact_secrets("token sk-abcdefghijkl here") == "token [REDACTED] here"
    assert redact_secrets("Authorization: Bearer abc.def-123") == "Authorization: Bearer [REDACTED]"
    assert redact_secrets("url?api_key=abc123&x=1") == "url?api_key=[REDACTED]&x=1"
    assert redact_secrets("nothing secret") == "nothing secret"


def test_configured_key_is_redacted(monkeypatch):
    monkeypatch.setattr(pipeline_module, "GEMINI_API_KEY", "my-own-key")

    assert redact_secrets("failed with my-own-key") == "failed with [REDACTED]"
