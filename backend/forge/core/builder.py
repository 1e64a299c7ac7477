"""
Package Builder - FileSet → .ccz

Responsibilities:
- Serialize a FileSet into a fresh ZIP archive
- Deterministic output: entries sorted by path, fixed timestamps
- Every build gets its own directory so concurrent runs never collide
- Discard builds once they have been exported
"""
import logging
import re
import shutil
import uuid
import zipfile
from pathlib import Path, PurePosixPath
from typing import Optional

from config import BUILD_DIR
from forge.schemas import FileSet

logger = logging.getLogger(__name__)

# Fixed entry timestamp (earliest date ZIP supports)
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


class BuildError(Exception):
    """Raised when the archive cannot be written"""
    pass


class PackageBuilder:
    """
    PackageBuilder - Writes .ccz archives
    """

    def __init__(self, output_dir: Optional[Path] = None):
        self.output_dir = Path(output_dir) if output_dir else BUILD_DIR

    def build(self, files: FileSet, app_name: Optional[str] = None) -> Path:
        """
        Write files into a new archive

        Args:
            files: Package contents
            app_name: Base name for the archive file

        Returns:
            Path to the written .ccz

        Raises:
            BuildError: On invalid entry paths or I/O failure
        """
        for name in files:
            parts = PurePosixPath(name).parts
            if not name or name.startswith("/") or ".." in parts or "\\" in name:
                raise BuildError(f"Refusing to package entry outside the package root: {name!r}")

        ccz_path = self.output_dir / uuid.uuid4().hex / f"{safe_file_name(app_name)}.ccz"

        try:
            ccz_path.parent.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(ccz_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                for name in sorted(files):
                    info = zipfile.ZipInfo(name, date_time=ZIP_EPOCH)
                    info.compress_type = zipfile.ZIP_DEFLATED
                    info.external_attr = 0o644 << 16
                    archive.writestr(info, files[name])
        except OSError as e:
            raise BuildError(f"Failed to write package {ccz_path.name}: {e}") from e

        logger.info(f"[Builder] ✓ Wrote {len(files)} entries to {ccz_path}")
        return ccz_path

    def discard(self, ccz_path) -> None:
        """Remove a package; one built here takes its per-build directory with it"""
        ccz_path = Path(ccz_path)
        try:
            if ccz_path.parent.parent.resolve() == self.output_dir.resolve():
                shutil.rmtree(ccz_path.parent)
            else:
                ccz_path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            logger.warning(f"[Builder] Could not remove {ccz_path}: {e}")
            return
        logger.info(f"[Builder] Removed {ccz_path}")


def safe_file_name(app_name: Optional[str]) -> str:
    """Archive base name: anything but letters, digits, dash and underscore becomes '_'"""
    return re.sub(r"[^a-zA-Z0-9_-]", "_", app_name or "app") or "app"


__all__ = ["PackageBuilder", "BuildError", "safe_file_name"]
