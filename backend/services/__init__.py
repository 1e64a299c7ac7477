"""
Services package
Command surface and background run bookkeeping
"""
from . import event_service
from .forge_service import (
    generate_package,
    validate_uploaded_package,
    export_artifact,
    initiate_import,
)

__all__ = [
    # Events
    "event_service",
    # Commands
    "generate_package",
    "validate_uploaded_package",
    "export_artifact",
    "initiate_import",
]
