"""
AutoFixer - Deterministic repair of known structural defects

Responsibilities:
- Scan form definitions and the navigation/translation files for known
  defect patterns
- Apply a textual correction for each one and record a Fix
- Never touch anything outside the FileSet it was given

Key principle: defects trigger PATCHES, not regeneration.
Detectors run in a fixed order; each sees the corrections of the ones before
it. A detector only records a Fix when it actually changed the content, so
running the fixer on its own output applies nothing.
"""
import logging
import re
from typing import Callable, Dict, List, Optional, Tuple

from forge.schemas import FileSet, Fix
from forge.core import xform

logger = logging.getLogger(__name__)

QUESTION_BLOCK_RE = re.compile(
    r"<(input|select1|select|trigger|upload|range)\s+ref=\"/data/([^\"]+)\"([^>]*)(?<!/)>(.*?)</\1>",
    re.S,
)
GROUP_LABEL_RE = re.compile(
    r"(<group\b[^>]*\sref=\"/data/([^\"]+)\"[^>]*(?<!/)>\s*)<label>([^<]+)</label>"
)
ITEM_SPLIT_RE = re.compile(r"(<item>.*?</item>)", re.S)
ITEM_VALUE_RE = re.compile(r"<value>([^<]+)</value>")
INLINE_HINT_RE = re.compile(r"<hint>([^<]+)</hint>")

# (path, text) -> (new text, description) or None
XFormDetector = Callable[[str, str], Optional[Tuple[str, str]]]


class AutoFixer:
    """
    AutoFixer - Pure function over a FileSet

    fix() returns a new FileSet and the ordered list of fixes; the input
    mapping is never modified.
    """

    def __init__(self):
        self.xform_detectors: List[XFormDetector] = [
            self._fix_itext,
            self._fix_reserved_properties,
            self._fix_missing_create_binds,
            self._fix_missing_update_binds,
        ]

    def fix(self, files: FileSet) -> Tuple[FileSet, List[Fix]]:
        """
        Apply every detector

        Args:
            files: Package contents

        Returns:
            (corrected FileSet, fixes applied in order)
        """
        result: FileSet = dict(files)
        fixes: List[Fix] = []

        for path in sorted(result):
            text = xform.decode_text(result[path])
            if text is None or not xform.is_xform(path, text):
                continue
            for detector in self.xform_detectors:
                outcome = detector(path, text)
                if outcome is None:
                    continue
                new_text, description = outcome
                if new_text != text:
                    text = new_text
                    result[path] = new_text.encode("utf-8")
                    fixes.append(Fix(description=description, paths=[path]))

        for detector in (self._fix_dangling_menu_commands, self._fix_app_strings):
            fix = detector(result)
            if fix is not None:
                fixes.append(fix)

        if fixes:
            logger.info(f"[AutoFixer] Applied {len(fixes)} fix(es)")
            for fix in fixes:
                logger.info(f"[AutoFixer]   - {fix.description}")
        else:
            logger.info("[AutoFixer] No fixes needed")

        return result, fixes

    # ------------------------------------------------------------------
    # 1. itext: inline labels → jr:itext() references
    # ------------------------------------------------------------------

    def _fix_itext(self, path: str, xml: str) -> Optional[Tuple[str, str]]:
        texts: Dict[str, str] = {}
        converted = 0

        body_match = xform.BODY_RE.search(xml)
        if body_match:
            body, converted = self._convert_inline_labels(body_match.group(2), texts)
            if converted:
                xml = xml[:body_match.start(2)] + body + xml[body_match.end(2):]

        defined = xform.itext_definitions(xml)
        new_definitions: Dict[str, str] = {
            text_id: text for text_id, text in texts.items() if text_id not in defined
        }
        for ref in xform.itext_references(xml):
            if ref not in defined and ref not in new_definitions:
                new_definitions[ref] = xform.id_to_label(ref)

        added = len(new_definitions) - len([i for i in texts if i not in defined])
        if new_definitions:
            xml = self._add_itext_definitions(xml, new_definitions)

        messages = []
        if converted:
            messages.append(f"converted {converted} inline label(s) to itext references")
        if added > 0:
            messages.append(f"added {added} missing itext definition(s)")
        if not messages:
            return None
        return xml, f"{path}: " + "; ".join(messages).capitalize()

    def _convert_inline_labels(self, body: str, texts: Dict[str, str]) -> Tuple[str, int]:
        count = 0

        def group_label(match: re.Match) -> str:
            nonlocal count
            question_id, text = match.group(2), match.group(3).strip()
            if not text:
                return match.group(0)
            text_id = f"{question_id}-label"
            texts.setdefault(text_id, text)
            count += 1
            return f"{match.group(1)}<label ref=\"jr:itext('{text_id}')\"/>"

        def question_block(match: re.Match) -> str:
            nonlocal count
            question_id, inner = match.group(2), match.group(4)
            parts = ITEM_SPLIT_RE.split(inner)
            label_done = hint_done = False

            for i, part in enumerate(parts):
                if i % 2 == 1:
                    new_part = self._convert_item_label(question_id, part, texts)
                    if new_part != part:
                        parts[i] = new_part
                        count += 1
                    continue

                if not label_done:
                    label = xform.INLINE_LABEL_RE.search(part)
                    if label and label.group(1).strip():
                        text_id = f"{question_id}-label"
                        texts.setdefault(text_id, label.group(1).strip())
                        part = part[:label.start()] + f"<label ref=\"jr:itext('{text_id}')\"/>" + part[label.end():]
                        label_done = True
                        count += 1
                if not hint_done:
                    hint = INLINE_HINT_RE.search(part)
                    if hint and hint.group(1).strip():
                        text_id = f"{question_id}-hint"
                        texts.setdefault(text_id, hint.group(1).strip())
                        part = part[:hint.start()] + f"<hint ref=\"jr:itext('{text_id}')\"/>" + part[hint.end():]
                        hint_done = True
                        count += 1
                parts[i] = part

            new_inner = "".join(parts)
            if new_inner == inner:
                return match.group(0)
            opening = match.group(0)[:match.start(4) - match.start(0)]
            return f"{opening}{new_inner}</{match.group(1)}>"

        body = GROUP_LABEL_RE.sub(group_label, body)
        body = QUESTION_BLOCK_RE.sub(question_block, body)
        return body, count

    @staticmethod
    def _convert_item_label(question_id: str, item: str, texts: Dict[str, str]) -> str:
        label = xform.INLINE_LABEL_RE.search(item)
        value = ITEM_VALUE_RE.search(item)
        if not label or not value or not label.group(1).strip():
            return item
        item_value = re.sub(r"\s+", "_", value.group(1).strip())
        if "'" in item_value or '"' in item_value:
            return item
        text_id = f"{question_id}-{item_value}-label"
        texts.setdefault(text_id, label.group(1).strip())
        return item[:label.start()] + f"<label ref=\"jr:itext('{text_id}')\"/>" + item[label.end():]

    @staticmethod
    def _add_itext_definitions(xml: str, definitions: Dict[str, str]) -> str:
        elements = "\n".join(
            f"          <text id=\"{text_id}\">\n            <value>{text}</value>\n          </text>"
            for text_id, text in definitions.items()
        )
        itext = xform.ITEXT_BLOCK_RE.search(xml)
        if itext and "</translation>" in itext.group(1):
            block = itext.group(0).replace("</translation>", f"{elements}\n        </translation>")
            return xml[:itext.start()] + block + xml[itext.end():]
        translation = (
            f"        <translation lang=\"en\" default=\"\">\n{elements}\n        </translation>\n"
        )
        if itext:
            return xml[:itext.end() - len("</itext>")] + translation + "      </itext>" + xml[itext.end():]
        return xml.replace("</model>", f"  <itext>\n{translation}      </itext>\n    </model>", 1)

    # ------------------------------------------------------------------
    # 2. Reserved case property names
    # ------------------------------------------------------------------

    def _fix_reserved_properties(self, path: str, xml: str) -> Optional[Tuple[str, str]]:
        renames = {}
        for prop in xform.update_properties(xml):
            if prop.lower() in xform.RESERVED_CASE_PROPERTIES:
                renames[prop] = xform.RESERVED_RENAME_MAP.get(prop.lower(), f"{prop}_value")
        if not renames:
            return None

        def rename_in_block(match: re.Match) -> str:
            block = match.group(0)
            for old, new in renames.items():
                block = re.sub(rf"<{re.escape(old)}(\s*/?>)", rf"<{new}\1", block)
                block = block.replace(f"</{old}>", f"</{new}>")
            return block

        xml = xform.UPDATE_BLOCK_RE.sub(rename_in_block, xml)
        for old, new in renames.items():
            xml = xml.replace(f'nodeset="/data/case/update/{old}"', f'nodeset="/data/case/update/{new}"')

        described = ", ".join(f'"{old}" to "{new}"' for old, new in renames.items())
        return xml, f"{path}: Renamed reserved case propert{'y' if len(renames) == 1 else 'ies'} {described}"

    # ------------------------------------------------------------------
    # 3. Missing case create binds
    # ------------------------------------------------------------------

    def _fix_missing_create_binds(self, path: str, xml: str) -> Optional[Tuple[str, str]]:
        if not xform.CREATE_BLOCK_RE.search(xml):
            return None

        added = []
        if not xform.has_calculate_bind(xml, "/data/case/create/case_type"):
            case_type = xform.infer_case_type(xml) or "case"
            xml = xform.insert_bind(
                xml, f"<bind nodeset=\"/data/case/create/case_type\" calculate=\"'{case_type}'\"/>"
            )
            added.append("case_type")

        if not xform.has_calculate_bind(xml, "/data/case/create/case_name"):
            first_question = xform.find_first_question(xml)
            if first_question:
                xml = xform.insert_bind(
                    xml, f"<bind nodeset=\"/data/case/create/case_name\" calculate=\"/data/{first_question}\"/>"
                )
                added.append(f"case_name (using /data/{first_question})")

        if not xform.has_calculate_bind(xml, "/data/case/create/owner_id"):
            xml = xform.insert_bind(
                xml, f"<bind nodeset=\"/data/case/create/owner_id\" calculate=\"{xform.OWNER_ID_CALCULATE}\"/>"
            )
            added.append("owner_id")

        if not added:
            return None
        return xml, f"{path}: Added missing case create calculate bind(s): {', '.join(added)}"

    # ------------------------------------------------------------------
    # 4. Missing case update binds
    # ------------------------------------------------------------------

    def _fix_missing_update_binds(self, path: str, xml: str) -> Optional[Tuple[str, str]]:
        added = []
        questions = xform.instance_without_case(xml)
        for prop in xform.update_properties(xml):
            nodeset = f"/data/case/update/{prop}"
            if xform.has_calculate_bind(xml, nodeset):
                continue
            has_question = re.search(rf"<{re.escape(prop)}[\s/>]", questions) is not None
            calculate = f"/data/{prop}" if has_question else "''"
            xml = xform.insert_bind(xml, f"<bind nodeset=\"{nodeset}\" calculate=\"{calculate}\"/>")
            added.append(prop)

        if not added:
            return None
        names = ", ".join(f'"{p}"' for p in added)
        return xml, f"{path}: Added missing calculate bind for case update propert{'y' if len(added) == 1 else 'ies'} {names}"

    # ------------------------------------------------------------------
    # 5. Dangling menu commands in suite.xml
    # ------------------------------------------------------------------

    def _fix_dangling_menu_commands(self, files: FileSet) -> Optional[Fix]:
        suite = xform.decode_text(files.get(xform.SUITE_PATH, b""))
        if not suite:
            return None

        known = xform.entry_commands(suite) | xform.menu_ids(suite)
        removed: List[str] = []

        def clean_menu(match: re.Match) -> str:
            def drop(command: re.Match) -> str:
                if command.group(2) in known:
                    return command.group(0)
                removed.append(command.group(2))
                return ""
            body = re.sub(r"(\s*<command\s+id=\"([^\"]+)\"\s*/>)", drop, match.group(2))
            if body == match.group(2):
                return match.group(0)
            opening = match.group(0)[:match.start(2) - match.start(0)]
            return f"{opening}{body}</menu>"

        new_suite = xform.MENU_BLOCK_RE.sub(clean_menu, suite)
        if not removed or new_suite == suite:
            return None

        files[xform.SUITE_PATH] = new_suite.encode("utf-8")
        return Fix(
            description=f"{xform.SUITE_PATH}: Removed dangling menu command reference(s) with no matching entry: {', '.join(removed)}",
            paths=[xform.SUITE_PATH],
        )

    # ------------------------------------------------------------------
    # 6. app_strings.txt keys for suite locale ids
    # ------------------------------------------------------------------

    def _fix_app_strings(self, files: FileSet) -> Optional[Fix]:
        suite = xform.decode_text(files.get(xform.SUITE_PATH, b""))
        if not suite:
            return None

        raw = files.get(xform.APP_STRINGS_PATH)
        app_strings = xform.decode_text(raw) if raw is not None else ""
        if app_strings is None:
            return None

        existing = xform.parse_app_strings(app_strings)
        missing = [i for i in xform.locale_ids(suite) if i not in existing]
        if not missing:
            return None

        lines = [app_strings.rstrip("\n")] if app_strings.strip() else []
        lines += [f"{locale_id}={xform.id_to_label(locale_id)}" for locale_id in missing]
        files[xform.APP_STRINGS_PATH] = ("\n".join(lines) + "\n").encode("utf-8")

        return Fix(
            description=f"Added {len(missing)} missing key(s) to {xform.APP_STRINGS_PATH}: {', '.join(missing)}",
            paths=[xform.APP_STRINGS_PATH],
        )


__all__ = ["AutoFixer"]
