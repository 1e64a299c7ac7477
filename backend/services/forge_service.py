"""
Forge Service - Command surface of the app forge

Every command returns a PipelineResult (or ImportInstructions for the HQ
hand-off); errors are reported in the result, not raised to the caller.
"""
import logging
from pathlib import Path
from typing import Callable, Optional

from config import HQ_DOMAIN, HQ_SERVER
from forge.core import Exporter, ExportError
from forge.generator import AppGenerator
from forge.pipeline import ContentGenerator, ForgePipeline, redact_secrets
from forge.schemas import ArtifactPaths, PipelineResult, ProgressEvent
from models import ImportInstructions

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


def generate_package(
    context: str,
    progress_callback: Optional[ProgressCallback] = None,
    generator: Optional[ContentGenerator] = None,
    pipeline: Optional[ForgePipeline] = None,
    app_name: Optional[str] = None,
) -> PipelineResult:
    """Generate a new package from an app description"""
    if generator is None:
        try:
            generator = AppGenerator()
        except ValueError as e:
            logger.error(f"[ForgeService] Generator unavailable: {e}")
            return PipelineResult(success=False, errors=[str(e)], message=str(e))

    pipeline = pipeline or ForgePipeline()
    return pipeline.generate(
        generator,
        context,
        progress_callback=progress_callback,
        app_name=app_name or "Generated App",
    )


def validate_uploaded_package(
    archive_path,
    progress_callback: Optional[ProgressCallback] = None,
    pipeline: Optional[ForgePipeline] = None,
    discard_source: bool = False,
) -> PipelineResult:
    """Validate and auto-fix a user-supplied .ccz; discard_source removes it once exported"""
    pipeline = pipeline or ForgePipeline(max_attempts=1)
    return pipeline.validate_package(
        archive_path, progress_callback=progress_callback, discard_source=discard_source
    )


def export_artifact(
    package_path,
    app_name: str,
    exporter: Optional[Exporter] = None,
) -> PipelineResult:
    """Copy an existing package to the export directory"""
    exporter = exporter or Exporter()
    try:
        export_path = exporter.export_package(package_path, app_name)
    except ExportError as e:
        message = redact_secrets(str(e))
        return PipelineResult(success=False, errors=[message], message=message, app_name=app_name)

    return PipelineResult(
        success=True,
        artifact_paths=ArtifactPaths(package_path=str(package_path), export_path=str(export_path)),
        app_name=app_name,
        message=f"Exported to {export_path}",
    )


def initiate_import(
    json_path,
    server: Optional[str] = None,
    domain: Optional[str] = None,
) -> ImportInstructions:
    """
    Build the HQ import URL and the steps for the user

    Raises:
        ValueError: If no domain is configured or the JSON file is missing
    """
    server = server or HQ_SERVER
    domain = domain or HQ_DOMAIN
    if not domain:
        raise ValueError("No CommCare HQ project space (domain) configured")
    if not Path(json_path).is_file():
        raise ValueError(f"Exported file not found: {json_path}")

    import_url = f"https://{server}/a/{domain}/settings/project/import_app/"
    instructions = "\n".join([
        "Your app has been saved. To import it to CommCare HQ:",
        "",
        f"1. Open {import_url}",
        "2. Enter an application name",
        f"3. Click Choose File and select: {json_path}",
        "4. Click Import Application",
    ])
    return ImportInstructions(importUrl=import_url, filePath=str(json_path), instructions=instructions)
