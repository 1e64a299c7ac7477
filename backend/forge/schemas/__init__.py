"""
Schemas for the CommCare App Forge Pipeline

These schemas define the contracts between pipeline stages:
- Package: archive contents and fixes (what flows between stages)
- Result: validation outcomes, progress events and the final result
"""
from .package_schema import FileSet, Fix, ParsedPackage, GeneratedApp
from .result_schema import (
    ValidationSuccess,
    ValidationFailure,
    ValidationSkipped,
    ValidationOutcome,
    ProgressPhase,
    PipelineState,
    ProgressEvent,
    ArtifactPaths,
    AttemptRecord,
    PipelineResult,
)

__all__ = [
    # Package
    "FileSet",
    "Fix",
    "ParsedPackage",
    "GeneratedApp",
    # Results
    "ValidationSuccess",
    "ValidationFailure",
    "ValidationSkipped",
    "ValidationOutcome",
    "ProgressPhase",
    "PipelineState",
    "ProgressEvent",
    "ArtifactPaths",
    "AttemptRecord",
    "PipelineResult",
]
