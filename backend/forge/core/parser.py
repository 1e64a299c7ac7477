"""
Package Parser - .ccz → FileSet

Responsibilities:
- Unpack the archive into memory, entry bytes untouched
- Refuse entries that would land outside the package root
- Derive the application name from the profile manifest
- Build a markdown summary (modules, forms, fields, case types) for display

Fails loudly: a corrupt archive or a missing manifest raises ParseError
and no partial FileSet is returned.
"""
import logging
import re
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Tuple

from forge.schemas import FileSet, ParsedPackage
from forge.core import xform

logger = logging.getLogger(__name__)

MAX_FIELDS_PER_FORM = 10

QUESTION_LABEL_RE = re.compile(
    r"<(?:input|select1|select)\s[^>]*?(?<!/)>(.*?)</(?:input|select1|select)>", re.S
)


class ParseError(Exception):
    """Raised when an archive cannot be read as an application package"""
    pass


class PackageParser:
    """
    PackageParser - Reads .ccz archives

    Stateless; one instance can serve any number of runs.
    """

    def parse(self, archive_path) -> ParsedPackage:
        """
        Parse an archive into a ParsedPackage

        Args:
            archive_path: Path to the .ccz file

        Returns:
            ParsedPackage with files, app name and markdown summary

        Raises:
            ParseError: If the archive is corrupt, not a ZIP container,
                        or has no profile manifest
        """
        path = Path(archive_path)
        logger.info(f"[Parser] Reading {path.name}")

        files = self._read_entries(path)

        if not any(name in files for name in xform.PROFILE_PATHS):
            raise ParseError(
                f"Failed to parse {path.name}: missing required manifest "
                f"({' or '.join(xform.PROFILE_PATHS)})"
            )

        app_name = self.extract_app_name(files)
        summary = self.build_summary(app_name, files)
        logger.info(f"[Parser] ✓ {app_name}: {len(files)} entries")

        return ParsedPackage(
            files=files,
            app_name=app_name,
            summary=summary,
            source_path=str(path),
        )

    def _read_entries(self, path: Path) -> FileSet:
        files: FileSet = {}
        try:
            with zipfile.ZipFile(path) as archive:
                for info in archive.infolist():
                    if info.is_dir():
                        continue
                    name = info.filename
                    if not self._is_safe_entry(name):
                        logger.warning(f"[Parser] Skipping entry outside package root: {name}")
                        continue
                    if name in files:
                        raise ParseError(f"Failed to parse {path.name}: duplicate entry {name}")
                    files[name] = archive.read(info)
        except ParseError:
            raise
        except FileNotFoundError as e:
            raise ParseError(f"Failed to parse {path.name}: file not found") from e
        except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError, ValueError,
                zlib.error, RuntimeError, NotImplementedError) as e:
            raise ParseError(f"Failed to parse {path.name}: not a valid package archive ({e})") from e
        except OSError as e:
            raise ParseError(f"Failed to parse {path.name}: {e}") from e
        return files

    @staticmethod
    def _is_safe_entry(name: str) -> bool:
        if not name or name.startswith("/") or "\\" in name or re.match(r"^[A-Za-z]:", name):
            return False
        return ".." not in PurePosixPath(name).parts

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def extract_app_name(self, files: FileSet) -> str:
        for profile_path in xform.PROFILE_PATHS:
            profile = xform.decode_text(files.get(profile_path, b"")) or ""
            match = re.search(r"<profile\b[^>]*\sname=\"([^\"]+)\"", profile)
            if match:
                return match.group(1)
            match = re.search(r"key=\"CommCare App Name\"\s+value=\"([^\"]+)\"", profile)
            if match:
                return match.group(1)

        strings = xform.parse_app_strings(
            xform.decode_text(files.get(xform.APP_STRINGS_PATH, b"")) or ""
        )
        return strings.get("app.name") or "Uploaded App"

    def build_summary(self, app_name: str, files: FileSet) -> str:
        suite = xform.decode_text(files.get(xform.SUITE_PATH, b"")) or ""
        strings = xform.parse_app_strings(
            xform.decode_text(files.get(xform.APP_STRINGS_PATH, b"")) or ""
        )
        modules = self._extract_modules(suite, strings)
        case_types = sorted(set(re.findall(r"@case_type='([^']+)'", suite)))

        lines = [f"## {app_name}", ""]

        if modules:
            lines += ["### Modules", ""]
            for module_name, forms in modules:
                lines.append(f"#### {module_name}")
                if forms:
                    lines.append("**Forms:**")
                    for command_id, form_name in forms:
                        lines.append(f"- {form_name}")
                        fields = self._form_fields(files, command_id)
                        for field in fields[:MAX_FIELDS_PER_FORM]:
                            lines.append(f"  - {field}")
                        if len(fields) > MAX_FIELDS_PER_FORM:
                            lines.append(f"  - ... and {len(fields) - MAX_FIELDS_PER_FORM} more fields")
                lines.append("")

        if case_types:
            lines.append("### Case Types")
            lines += [f"- `{case_type}`" for case_type in case_types]
            lines.append("")

        lines.append("### Files")
        lines.append(f"Total files in archive: {len(files)}")
        return "\n".join(lines)

    def _extract_modules(
        self, suite: str, strings: Dict[str, str]
    ) -> List[Tuple[str, List[Tuple[str, str]]]]:
        modules = []
        for attrs, body in xform.MENU_BLOCK_RE.findall(suite):
            menu_id = xform.attributes(attrs).get("id", "")
            if menu_id == "root":
                continue

            locale = xform.LOCALE_ID_RE.search(body)
            module_name = (
                (strings.get(locale.group(1)) if locale else None)
                or strings.get(f"modules.{menu_id}")
                or menu_id
            )
            forms = []
            for command_id in xform.MENU_COMMAND_RE.findall(body):
                form_name = (
                    strings.get(f"forms.{command_id.replace('-', '')}")
                    or strings.get(f"forms.{command_id}")
                    or command_id
                )
                forms.append((command_id, form_name))
            modules.append((module_name, forms))
        return modules

    def _form_fields(self, files: FileSet, command_id: str) -> List[str]:
        form_path = self._command_to_form_path(command_id)
        content = xform.decode_text(files.get(form_path, b"")) if form_path else None
        if not content:
            return []

        itext = xform.itext_values(content)
        fields = []
        for inner in QUESTION_LABEL_RE.findall(content):
            inner = re.sub(r"<item>.*?</item>", "", inner, flags=re.S)
            inline = xform.INLINE_LABEL_RE.search(inner)
            if inline and inline.group(1).strip():
                fields.append(inline.group(1).strip())
                continue
            ref = xform.ITEXT_REF_RE.search(inner)
            if ref and itext.get(ref.group(1)):
                fields.append(itext[ref.group(1)])
        return fields

    @staticmethod
    def _command_to_form_path(command_id: str) -> Optional[str]:
        match = re.fullmatch(r"m(\d+)-f(\d+)", command_id)
        if match:
            return f"modules-{match.group(1)}/forms-{match.group(2)}.xml"
        return None


__all__ = ["PackageParser", "ParseError"]
