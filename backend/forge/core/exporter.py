"""
Exporter - Stable copies of the final artifacts

Responsibilities:
- Copy the validated .ccz into the export directory as `<app name>.ccz`
- Write the HQ import JSON next to it as `<app name>.json`

Collision policy: overwrite by base name, so the export directory always
holds the latest build of each app. Writes go to a temporary file in the
export directory and are moved into place, so a reader never sees a
half-written artifact.
"""
import json
import logging
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from config import EXPORTS_DIR

logger = logging.getLogger(__name__)


class ExportError(Exception):
    """Raised when an artifact cannot be written to the export directory"""
    pass


def export_base_name(app_name: Optional[str]) -> str:
    """Keep letters, digits, dash, underscore and space"""
    return re.sub(r"[^a-zA-Z0-9\-_ ]", "", app_name or "").strip() or "app"


class Exporter:
    """
    Exporter - Writes artifacts to the export directory
    """

    def __init__(self, export_dir: Optional[Path] = None):
        self.export_dir = Path(export_dir) if export_dir else EXPORTS_DIR

    def export_package(self, package_path, app_name: Optional[str]) -> Path:
        """
        Copy a built archive to `<export_dir>/<app name>.ccz`

        Raises:
            ExportError: If the source is missing or the copy fails
        """
        source = Path(package_path)
        target = self.export_dir / f"{export_base_name(app_name)}.ccz"

        try:
            if source.resolve() == target.resolve():
                return target
        except OSError as e:
            raise ExportError(f"Failed to export {source.name}: {e}") from e

        def write(handle):
            with open(source, "rb") as src:
                shutil.copyfileobj(src, handle)

        self._atomic_write(target, write)
        logger.info(f"[Exporter] ✓ Package exported to {target}")
        return target

    def export_json(self, document: Dict[str, Any], app_name: Optional[str]) -> Path:
        """
        Write the HQ import document to `<export_dir>/<app name>.json`

        Raises:
            ExportError: If the document cannot be written
        """
        target = self.export_dir / f"{export_base_name(app_name)}.json"
        payload = json.dumps(document, indent=2).encode("utf-8")
        self._atomic_write(target, lambda handle: handle.write(payload))
        logger.info(f"[Exporter] ✓ HQ JSON exported to {target}")
        return target

    def _atomic_write(self, target: Path, write) -> None:
        tmp_name = None
        try:
            self.export_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.export_dir, prefix=".export-", suffix=target.suffix)
            with os.fdopen(fd, "wb") as handle:
                write(handle)
            os.replace(tmp_name, target)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise ExportError(f"Failed to export {target.name}: {e}") from e


__all__ = ["Exporter", "ExportError", "export_base_name"]
