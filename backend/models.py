"""
Pydantic schemas shared by the FastAPI endpoints.
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from forge.schemas import PipelineResult


class GenerateRequest(BaseModel):
    """Incoming payload when asking for a new app to be generated."""

    context: str = Field(
        ...,
        min_length=3,
        description="Description of the app (typically the conversation summary).",
    )
    appName: Optional[str] = Field(
        default=None,
        description="Optional name used until the generated profile provides one.",
    )
    maxAttempts: Optional[int] = Field(
        default=None,
        ge=1,
        le=10,
        description="Override for the number of generate/validate attempts.",
    )


class ImportRequest(BaseModel):
    """Hand an exported HQ JSON over to CommCare HQ."""

    jsonPath: str = Field(..., description="Path of the exported .json file.")
    server: Optional[str] = Field(default=None, description="HQ host, e.g. www.commcarehq.org.")
    domain: Optional[str] = Field(default=None, description="HQ project space.")


class ImportInstructions(BaseModel):
    """What the user has to do on HQ to finish the import."""

    importUrl: str
    filePath: str
    instructions: str


class RunAccepted(BaseModel):
    runId: str
    status: str


class RunStatusResponse(BaseModel):
    runId: str
    kind: str
    status: str
    events: List[dict] = Field(default_factory=list)
    result: Optional[PipelineResult] = None
