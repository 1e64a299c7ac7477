"""
Result Schema - What the pipeline reports

- ValidationOutcome: Success | Failure | Skipped, tagged by `status`
- ProgressEvent: streamed to the caller on every state transition
- AttemptRecord: one pass of generate -> validate -> (fix) -> re-validate
- PipelineResult: terminal value of a run
"""
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


class ValidationSuccess(BaseModel):
    """Validator accepted the package"""
    model_config = ConfigDict(frozen=True)

    status: Literal["success"] = "success"
    validator: str
    details: str = ""


class ValidationFailure(BaseModel):
    """Validator rejected the package"""
    model_config = ConfigDict(frozen=True)

    status: Literal["failure"] = "failure"
    validator: str
    errors: List[str] = Field(default_factory=list)


class ValidationSkipped(BaseModel):
    """Validator could not run (toolchain missing); not an error"""
    model_config = ConfigDict(frozen=True)

    status: Literal["skipped"] = "skipped"
    validator: str
    reason: str


ValidationOutcome = Annotated[
    Union[ValidationSuccess, ValidationFailure, ValidationSkipped],
    Field(discriminator="status"),
]


class ProgressPhase(str, Enum):
    """Coarse phase shown to the user"""
    GENERATING = "generating"
    VALIDATING = "validating"
    FIXING = "fixing"
    SUCCESS = "success"
    FAILED = "failed"


class PipelineState(str, Enum):
    """Orchestrator states"""
    GENERATING = "generating"
    PARSING = "parsing"
    FIXING = "fixing"
    BUILDING = "building"
    VALIDATING_EXTERNAL = "validating_external"
    VALIDATING_RULES = "validating_rules"
    EXPORTING = "exporting"
    DONE = "done"


class ProgressEvent(BaseModel):
    """Emitted once per state transition"""
    model_config = ConfigDict(frozen=True)

    phase: ProgressPhase
    message: str
    attempt: int = Field(..., ge=1)
    max_attempts: int = Field(..., ge=1)
    state: PipelineState


class ArtifactPaths(BaseModel):
    """Where the run left its artifacts"""
    model_config = ConfigDict(frozen=True)

    package_path: Optional[str] = Field(
        None, description="The .ccz that was validated (the exported copy once temporary builds are removed)"
    )
    export_path: Optional[str] = Field(None, description="Stable copy in the export directory")
    json_path: Optional[str] = Field(None, description="HQ import JSON in the export directory")


class AttemptRecord(BaseModel):
    """Inspectable history of one attempt"""
    index: int = Field(..., ge=1)
    state: PipelineState = PipelineState.GENERATING
    errors: List[str] = Field(default_factory=list)
    fixes: List[str] = Field(default_factory=list)
    package_path: Optional[str] = None
    export_path: Optional[str] = None
    json_path: Optional[str] = None
    success: bool = False


class PipelineResult(BaseModel):
    """Terminal value of a pipeline run"""
    model_config = ConfigDict(frozen=True)

    success: bool
    artifact_paths: ArtifactPaths = Field(default_factory=ArtifactPaths)
    errors: List[str] = Field(default_factory=list, description="Full, deduplicated error list")
    fixes_applied: int = Field(0, ge=0)
    app_name: Optional[str] = None
    message: str = ""
    attempts: int = Field(0, ge=0)
    summary: Optional[str] = None
    log_path: Optional[str] = None

    def display_errors(self, limit: int = 10, width: int = 300) -> List[str]:
        """Errors shortened for display; `errors` keeps the complete list"""
        shown = [e if len(e) <= width else e[:width] + "..." for e in self.errors[:limit]]
        if len(self.errors) > limit:
            shown.append(f"... and {len(self.errors) - limit} more error(s)")
        return shown
