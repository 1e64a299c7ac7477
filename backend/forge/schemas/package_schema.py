"""
Package Schema - Archive contents as seen by the pipeline

- FileSet: relative path -> raw bytes, exactly as stored in the .ccz
- Fix: one correction applied by the AutoFixer
- ParsedPackage: FileSet plus the metadata derived from it
- GeneratedApp: what the content generator is asked to return
"""
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


# Forward-slash relative path -> entry bytes
FileSet = Dict[str, bytes]


class Fix(BaseModel):
    """A single correction applied by one AutoFixer detector"""
    model_config = ConfigDict(frozen=True)

    description: str = Field(..., description="Human-readable description of the change")
    paths: List[str] = Field(default_factory=list, description="FileSet entries the fix touched")

    def __str__(self) -> str:
        return self.description


class ParsedPackage(BaseModel):
    """An unpacked archive with its derived metadata"""
    files: FileSet
    app_name: str = Field(..., description="Name taken from the profile manifest")
    summary: str = Field("", description="Markdown summary of modules, forms and case types")
    source_path: Optional[str] = Field(None, description="Archive the files were read from")


class GeneratedApp(BaseModel):
    """Structured output requested from the language model"""
    app_name: str = Field("Generated App", description="Display name of the application")
    files: Dict[str, str] = Field(
        ...,
        description="Every file of the .ccz archive: relative path -> full text content"
    )

    def to_file_set(self) -> FileSet:
        return {path.lstrip("/"): content.encode("utf-8") for path, content in self.files.items()}
