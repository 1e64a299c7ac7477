"""
HQ Validator - CommCare HQ / Formplayer rules the CLI does not check

Responsibilities:
- Per-form checks: itext localisation, case property and case type naming,
  create/update block completeness, bind-instance consistency
- Cross-file checks: xmlns uniqueness, suite entries vs forms, menu commands,
  locale ids vs app strings, detail references

Pure and deterministic: works on the FileSet only and never skips.
"""
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

from forge.core import xform
from forge.schemas import FileSet, PipelineState, ValidationFailure, ValidationSuccess

logger = logging.getLogger(__name__)

TRANSLATION_LANG_RE = re.compile(r"<translation\s+[^>]*lang=\"([^\"]+)\"")
DETAIL_REF_RE = re.compile(r"detail-(?:select|confirm)=\"([^\"]+)\"")
DETAIL_ID_RE = re.compile(r"<detail\s+id=\"([^\"]+)\"")

CREATE_BINDS = {
    "case_type": "'type_name'",
    "case_name": "...",
    "owner_id": xform.OWNER_ID_CALCULATE,
}


class HqValidator:
    """
    HqValidator - Semantic rules for HQ import

    Error messages name the file and say how to fix the problem, since they
    are fed back to the generator verbatim.
    """

    name = "HQ rules"
    stage = PipelineState.VALIDATING_RULES
    can_skip = False

    def validate(self, artifact_path: Optional[Path] = None, files: Optional[FileSet] = None):
        """
        Check a FileSet against the HQ rule set

        Args:
            artifact_path: Unused; accepted so all validators share one signature
            files: Package contents

        Returns:
            ValidationSuccess or ValidationFailure
        """
        errors = self.check(files or {})
        if errors:
            logger.info(f"[HqValidator] ✗ {len(errors)} error(s)")
            return ValidationFailure(validator=self.name, errors=errors)
        logger.info("[HqValidator] ✓ Passed")
        return ValidationSuccess(validator=self.name, details="All HQ rules passed")

    def check(self, files: FileSet) -> List[str]:
        errors: List[str] = []
        xmlns_owner: Dict[str, str] = {}

        for path in sorted(files):
            text = xform.decode_text(files[path])
            if text is None or not xform.is_xform(path, text):
                continue
            errors.extend(self.check_xform(path, text))

            xmlns = xform.extract_xmlns(text)
            if xmlns:
                if xmlns in xmlns_owner:
                    errors.append(
                        f"Duplicate xmlns \"{xmlns}\" in {path} and {xmlns_owner[xmlns]}. "
                        f"Each form must have a unique xmlns."
                    )
                else:
                    xmlns_owner[xmlns] = path

        errors.extend(self.check_cross_file(files, set(xmlns_owner)))
        return errors

    # ------------------------------------------------------------------
    # Per-form rules
    # ------------------------------------------------------------------

    def check_xform(self, path: str, xml: str) -> List[str]:
        errors = self._check_itext(path, xml)

        props = xform.update_properties(xml) + [
            p for p in xform.create_extra_properties(xml) if p not in xform.update_properties(xml)
        ]
        for prop in props:
            if prop.lower() in xform.RESERVED_CASE_PROPERTIES:
                errors.append(
                    f"Reserved case property \"{prop}\" in {path}. HQ will reject this. "
                    f"Rename to something like \"{prop}_value\" or \"{prop}_info\"."
                )
            if not xform.CASE_PROPERTY_RE.match(prop):
                errors.append(
                    f"Invalid case property name \"{prop}\" in {path}. Must start with a letter "
                    f"and contain only letters, digits, underscores, or hyphens."
                )

        for case_type in xform.case_types(xml):
            if not xform.CASE_TYPE_RE.match(case_type):
                errors.append(
                    f"Invalid case type \"{case_type}\" in {path}. Case types can only contain "
                    f"letters, digits, underscores, and hyphens."
                )

        errors.extend(self._check_create_blocks(path, xml))
        errors.extend(self._check_update_binds(path, xml))
        errors.extend(self._check_bind_targets(path, xml))
        return errors

    def _check_itext(self, path: str, xml: str) -> List[str]:
        if "<itext>" not in xml and "<itext " not in xml:
            return [
                f"XForm {path} is missing <itext> block. Formplayer (Web Apps) requires itext "
                f"localization. Add an <itext> block with <translation lang=\"en\" default=\"\"> "
                f"inside <model>, and convert all inline labels to jr:itext() references."
            ]

        errors = []
        if not TRANSLATION_LANG_RE.search(xml):
            errors.append(
                f"XForm {path} has <itext> but no <translation lang=\"...\"> element. "
                f"Add at least one translation (e.g. <translation lang=\"en\" default=\"\">)."
            )

        body = xform.BODY_RE.search(xml)
        inline = [
            f"<label>{text.strip()}</label>"
            for text in xform.INLINE_LABEL_RE.findall(body.group(2) if body else "")
            if text.strip()
        ]
        if inline:
            errors.append(
                f"XForm {path} has {len(inline)} inline label(s) ({', '.join(inline[:3])}). "
                f"All labels must use ref=\"jr:itext('...')\" instead of inline text."
            )

        defined = xform.itext_definitions(xml)
        for ref in xform.itext_references(xml):
            if ref not in defined:
                errors.append(
                    f"XForm {path} references jr:itext('{ref}') but no matching "
                    f"<text id=\"{ref}\"> found in <itext>."
                )
        return errors

    def _check_create_blocks(self, path: str, xml: str) -> List[str]:
        blocks = xform.CREATE_BLOCK_RE.findall(xml)
        if not blocks:
            return []

        errors = []
        for block in blocks:
            for element in CREATE_BINDS:
                if f"<{element}" not in block:
                    errors.append(f"Case <create> block in {path} is missing <{element}>.")

        for element, example in CREATE_BINDS.items():
            nodeset = f"/data/case/create/{element}"
            if not xform.has_calculate_bind(xml, nodeset):
                errors.append(
                    f"Case <create> in {path} has no calculate bind for <{element}>. "
                    f"Add: <bind nodeset=\"{nodeset}\" calculate=\"{example}\"/>"
                )
        return errors

    def _check_update_binds(self, path: str, xml: str) -> List[str]:
        errors = []
        for prop in xform.update_properties(xml):
            nodeset = f"/data/case/update/{prop}"
            if not xform.has_calculate_bind(xml, nodeset):
                errors.append(
                    f"Case update property \"{prop}\" in {path} has no calculate bind. "
                    f"Add: <bind nodeset=\"{nodeset}\" calculate=\"...\"/>"
                )

        # Updating an existing case needs to know which case
        if xform.UPDATE_BLOCK_RE.search(xml) and not xform.CREATE_BLOCK_RE.search(xml):
            if not xform.has_calculate_bind(xml, "/data/case/@case_id"):
                errors.append(
                    f"Case update in {path} has no calculate bind for /data/case/@case_id. "
                    f"Add: <bind nodeset=\"/data/case/@case_id\" "
                    f"calculate=\"instance('commcaresession')/session/data/case_id\"/>"
                )
        return errors

    def _check_bind_targets(self, path: str, xml: str) -> List[str]:
        instance = xform.instance_content(xml)
        if instance is None:
            return []

        errors = []
        for attrs in xform.bind_attributes(xml):
            nodeset = attrs.get("nodeset", "")
            if not nodeset.startswith("/data/"):
                continue
            leaf = nodeset.rsplit("/", 1)[-1]
            if leaf.startswith("@"):
                continue
            if not re.search(rf"<{re.escape(leaf)}[\s/>]", instance):
                errors.append(
                    f"Bind references \"{nodeset}\" but <{leaf}> not found in instance data in {path}."
                )
        return errors

    # ------------------------------------------------------------------
    # Cross-file rules
    # ------------------------------------------------------------------

    def check_cross_file(self, files: FileSet, form_xmlns: set) -> List[str]:
        suite = xform.decode_text(files.get(xform.SUITE_PATH, b""))
        if not suite:
            return []

        errors = []
        for form_uri in xform.entry_forms(suite):
            if form_uri not in form_xmlns:
                errors.append(f"Suite entry references form xmlns \"{form_uri}\" but no XForm file has this xmlns.")

        entries = xform.entry_commands(suite)
        menus = xform.menu_ids(suite)
        for command in xform.menu_commands(suite):
            if command not in entries and command not in menus:
                errors.append(f"Suite menu references command \"{command}\" but no <entry> defines this command.")

        strings = xform.parse_app_strings(
            xform.decode_text(files.get(xform.APP_STRINGS_PATH, b"")) or ""
        )
        for locale_id in xform.locale_ids(suite):
            if locale_id not in strings:
                errors.append(f"Suite references locale id \"{locale_id}\" but no matching key in app_strings.txt.")

        details = set(DETAIL_ID_RE.findall(suite))
        for detail_id in DETAIL_REF_RE.findall(suite):
            if detail_id not in details:
                errors.append(f"Entry datum references detail \"{detail_id}\" but no <detail id=\"{detail_id}\"> exists in suite.xml.")
        return errors


__all__ = ["HqValidator"]
