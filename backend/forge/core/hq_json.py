"""
HQ JSON Converter - FileSet → CommCare HQ app source document

Builds the JSON that HQ's "import app" page accepts, straight from the
suite, app strings and XForms. No model call is involved.
"""
import re
import uuid
from typing import Any, Dict, List, Optional

from forge.core import xform
from forge.schemas import FileSet

LOCALE_TEXT_RE = re.compile(r"<text>\s*<locale\s+id=\"([^\"]*)\"\s*/>")
QUESTION_REF_RE = re.compile(r"<(?:input|select1?)\s+ref=\"(/data/[^\"]*)\"")
CASE_BIND_RE = re.compile(r"\s*<bind\s+[^>]*nodeset=\"/data/case/[^\"]*\"[^>]*/>")

NEVER = {"type": "never", "question": None, "answer": None, "operator": None, "doc_type": "FormActionCondition"}
ALWAYS = {"type": "always", "question": None, "answer": None, "operator": None, "doc_type": "FormActionCondition"}


def _unique_id() -> str:
    return uuid.uuid4().hex


class HqJsonConverter:
    """
    HqJsonConverter - Suite menus become modules, entries become forms

    Each form's XForm goes into `_attachments` under `<form unique_id>.xml`
    with its case block and case binds removed; HQ regenerates them from
    the form actions.
    """

    def convert(self, files: FileSet, app_name: str) -> Dict[str, Any]:
        texts = {path: xform.decode_text(content) for path, content in files.items()}
        texts = {path: text for path, text in texts.items() if text is not None}
        suite = texts.get(xform.SUITE_PATH, "")
        strings = xform.parse_app_strings(texts.get(xform.APP_STRINGS_PATH, ""))

        forms_by_xmlns = {}
        for path in sorted(texts):
            if xform.is_xform(path, texts[path]):
                xmlns = xform.extract_xmlns(texts[path])
                if xmlns:
                    forms_by_xmlns.setdefault(xmlns, texts[path])

        entries = {}
        for entry in xform.ENTRY_BLOCK_RE.findall(suite):
            command = xform.ENTRY_COMMAND_RE.search(entry)
            if command:
                entries[command.group(1)] = entry

        attachments: Dict[str, str] = {}
        modules = []
        for m_idx, (attrs, body) in enumerate(xform.MENU_BLOCK_RE.findall(suite)):
            locale = LOCALE_TEXT_RE.search(body)
            module_name = strings.get(locale.group(1), locale.group(1)) if locale else f"Module {m_idx}"

            forms = []
            case_type = ""
            for f_idx, command in enumerate(xform.MENU_COMMAND_RE.findall(body)):
                entry = entries.get(command)
                if entry is None:
                    continue
                form_match = xform.ENTRY_FORM_RE.search(entry)
                xmlns = form_match.group(1).strip() if form_match else ""
                form_xml = forms_by_xmlns.get(xmlns, "")

                locale = LOCALE_TEXT_RE.search(entry)
                form_name = strings.get(locale.group(1), locale.group(1)) if locale else f"Form {f_idx}"

                case_info = self.parse_case_info(form_xml)
                if case_info["case_type"]:
                    case_type = case_info["case_type"]

                unique_id = _unique_id()
                forms.append(self.build_form(unique_id, form_name, xmlns, case_info))
                if form_xml:
                    attachments[f"{unique_id}.xml"] = self.strip_case_blocks(form_xml)

            modules.append(self.build_module(module_name, case_type, forms, texts))

        return {
            "doc_type": "Application",
            "application_version": "2.0",
            "name": app_name,
            "langs": ["en"],
            "build_spec": {"doc_type": "BuildSpec", "version": "2.53.0", "build_number": None},
            "profile": {"doc_type": "Profile", "features": {}, "properties": {}},
            "vellum_case_management": True,
            "cloudcare_enabled": False,
            "case_sharing": False,
            "secure_submissions": False,
            "multimedia_map": {},
            "translations": {},
            "modules": modules,
            "_attachments": attachments,
        }

    @staticmethod
    def strip_case_blocks(xml: str) -> str:
        cleaned = re.sub(r"\s*<case[\s>].*?</case>", "", xml, flags=re.S)
        return CASE_BIND_RE.sub("", cleaned)

    def parse_case_info(self, xml: str) -> Dict[str, Any]:
        info = {
            "case_type": xform.infer_case_type(xml) if xform.CREATE_BLOCK_RE.search(xml) else "",
            "has_create": bool(xform.CREATE_BLOCK_RE.search(xml)),
            "has_update": bool(xform.UPDATE_BLOCK_RE.search(xml)),
            "case_name_path": "",
            "update_props": {},
        }
        if info["has_create"]:
            info["case_name_path"] = xform.bind_calculate(xml, "/data/case/create/case_name") or ""
            if not info["case_name_path"]:
                first = QUESTION_REF_RE.search(xml)
                info["case_name_path"] = first.group(1) if first else ""
        if info["has_update"]:
            for attrs in xform.bind_attributes(xml):
                nodeset = attrs.get("nodeset", "")
                if nodeset.startswith("/data/case/update/") and "calculate" in attrs:
                    info["update_props"][nodeset.rsplit("/", 1)[-1]] = attrs["calculate"]
        return info

    def build_form(self, unique_id: str, name: str, xmlns: str, case_info: Dict[str, Any]) -> Dict[str, Any]:
        never_preload = {"doc_type": "PreloadAction", "preload": {}, "condition": NEVER}
        registration = case_info["has_create"]

        update = {
            prop: {"question_path": path, "update_mode": "always"}
            for prop, path in case_info["update_props"].items()
            if not (case_info["case_name_path"] and path == case_info["case_name_path"])
        }
        preload = {}
        if not registration and case_info["has_update"]:
            preload = {path: prop for prop, path in case_info["update_props"].items()}

        return {
            "doc_type": "Form",
            "form_type": "module_form",
            "unique_id": unique_id,
            "name": {"en": name},
            "xmlns": xmlns,
            "requires": "none" if registration else "case",
            "version": None,
            "actions": {
                "doc_type": "FormActions",
                "open_case": {
                    "doc_type": "OpenCaseAction",
                    "name_update": {"question_path": case_info["case_name_path"] if registration else ""},
                    "external_id": None,
                    "condition": ALWAYS if registration else NEVER,
                },
                "update_case": {
                    "doc_type": "UpdateCaseAction",
                    "update": update,
                    "condition": ALWAYS if (registration and update) or case_info["has_update"] else NEVER,
                },
                "close_case": {"doc_type": "FormAction", "condition": NEVER},
                "case_preload": {
                    "doc_type": "PreloadAction",
                    "preload": preload,
                    "condition": ALWAYS if preload else NEVER,
                },
                "subcases": [],
                "usercase_preload": never_preload,
                "usercase_update": {"doc_type": "UpdateCaseAction", "update": {}, "condition": NEVER},
                "load_from_form": never_preload,
            },
            "case_references_data": {"load": {}, "save": {}, "doc_type": "CaseReferences"},
            "form_filter": None,
            "post_form_workflow": "default",
            "no_vellum": False,
            "media_image": {},
            "media_audio": {},
            "custom_icons": [],
            "custom_assertions": [],
            "custom_instances": [],
            "form_links": [],
            "comment": "",
        }

    def build_module(self, name: str, case_type: str, forms: List[Dict[str, Any]], texts: Dict[str, str]) -> Dict[str, Any]:
        detail_base = {
            "sort_elements": [],
            "tabs": [],
            "filter": None,
            "lookup_enabled": False,
            "persist_case_context": None,
            "persistent_case_context_xml": "case_name",
            "custom_xml": None,
            "custom_variables": None,
        }
        return {
            "doc_type": "Module",
            "module_type": "basic",
            "unique_id": _unique_id(),
            "name": {"en": name},
            "case_type": case_type or "",
            "put_in_root": False,
            "root_module_id": None,
            "forms": forms,
            "case_details": {
                "doc_type": "DetailPair",
                "short": {"doc_type": "Detail", "display": "short", "columns": self.case_columns(texts), **detail_base},
                "long": {"doc_type": "Detail", "display": "long", "columns": [], **detail_base},
            },
            "case_list": {"doc_type": "CaseList", "show": False, "label": {}},
            "case_list_form": {"doc_type": "CaseListForm", "form_id": None, "label": {}},
            "search_config": {"doc_type": "CaseSearch", "properties": [], "default_properties": [], "include_closed": False},
            "display_style": "list",
            "media_image": {},
            "media_audio": {},
            "custom_icons": [],
            "is_training_module": False,
            "module_filter": None,
            "auto_select_case": False,
            "parent_select": {"active": False, "module_id": None},
            "comment": "",
        }

    def case_columns(self, texts: Dict[str, str]) -> List[Dict[str, Any]]:
        """One short-detail column per case update property, across all forms"""
        props: List[str] = []
        for path in sorted(texts):
            if not path.endswith(".xml"):
                continue
            for attrs in xform.bind_attributes(texts[path]):
                nodeset = attrs.get("nodeset", "")
                if nodeset.startswith("/data/case/update/"):
                    prop = nodeset.rsplit("/", 1)[-1]
                    if prop not in ("name", "case_name") and prop not in props:
                        props.append(prop)

        return [
            {
                "doc_type": "DetailColumn",
                "header": {"en": humanize(field)},
                "field": field,
                "model": "case",
                "format": "plain",
                "calc_xpath": ".",
                "filter_xpath": "",
                "advanced": "",
                "late_flag": 30,
                "time_ago_interval": 365.25,
                "enum": [],
                "graph_configuration": None,
                "relevant": "",
                "nodeset": "",
            }
            for field in props
        ]


def humanize(field: str) -> str:
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), re.sub(r"[_-]", " ", field))


__all__ = ["HqJsonConverter"]
