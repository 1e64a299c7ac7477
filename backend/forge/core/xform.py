"""
XForm / Suite text helpers

Shared, side-effect-free inspection of the XML documents inside a .ccz.
Everything here works on text with regular expressions so that edits made
by the AutoFixer leave the rest of a document byte-for-byte intact.
"""
import re
from typing import Dict, List, Optional, Set

SUITE_PATH = "suite.xml"
MEDIA_SUITE_PATH = "media_suite.xml"
APP_STRINGS_PATH = "default/app_strings.txt"
PROFILE_PATHS = ("profile.ccpr", "profile.xml")

# Reserved case property names from CommCare HQ
# (corehq/apps/app_manager/static/app_manager/json/case-reserved-words.json)
RESERVED_CASE_PROPERTIES = frozenset([
    "actions", "case_id", "case_name", "case_type", "case_type_id",
    "create", "closed", "closed_by", "closed_on", "commtrack",
    "computed_", "computed_modified_on_", "date", "date_modified",
    "date-opened", "date_opened", "doc_type", "domain",
    "external-id", "index", "indices", "initial_processing_complete",
    "last_modified", "modified_on", "modified_by", "opened_by", "opened_on",
    "parent", "referrals", "server_modified_on", "server_opened_on",
    "status", "type", "user_id", "userid", "version", "xform_id", "xform_ids",
])

RESERVED_RENAME_MAP = {
    "date": "visit_date",
    "status": "case_status",
    "type": "case_category",
    "parent": "parent_case",
    "index": "case_index",
    "version": "form_version",
    "domain": "case_domain",
    "closed": "is_closed",
    "actions": "case_actions",
    "create": "create_info",
}

CASE_PROPERTY_RE = re.compile(r"^[a-zA-Z][\w-]*$")
CASE_TYPE_RE = re.compile(r"^[\w-]+$")
STANDARD_CREATE_PROPS = frozenset(["case_type", "case_name", "owner_id"])

OWNER_ID_CALCULATE = "instance('commcaresession')/session/context/userid"

BIND_TAG_RE = re.compile(r"<bind\b[^>]*>")
ATTRIBUTE_RE = re.compile(r'([\w:.-]+)\s*=\s*"([^"]*)"')
UPDATE_BLOCK_RE = re.compile(r"<update>(.*?)</update>", re.S)
CREATE_BLOCK_RE = re.compile(r"<create>(.*?)</create>", re.S)
CHILD_TAG_RE = re.compile(r"<([A-Za-z_][\w.-]*)\s*/?>")
INSTANCE_RE = re.compile(r"<instance>\s*<data[^>]*>(.*?)</data>\s*</instance>", re.S)
BODY_RE = re.compile(r"(<h:body\b[^>]*>)(.*)(</h:body>)", re.S)
ITEXT_BLOCK_RE = re.compile(r"<itext>(.*?)</itext>", re.S)
ITEXT_REF_RE = re.compile(r"jr:itext\('([^']+)'\)")
TEXT_ID_RE = re.compile(r"<text\s+id=\"([^\"]+)\"")
INLINE_LABEL_RE = re.compile(r"<label>([^<]+)</label>")
XMLNS_RE = re.compile(r"<data[^>]*\sxmlns=\"([^\"]+)\"")
CASE_BLOCK_RE = re.compile(r"<case[\s>].*?</case>", re.S)
LOCALE_ID_RE = re.compile(r"<locale\s+id=\"([^\"]+)\"")
MENU_BLOCK_RE = re.compile(r"<menu\s+([^>]*?)(?<!/)>(.*?)</menu>", re.S)
MENU_ID_RE = re.compile(r"<menu\s+id=\"([^\"]+)\"")
MENU_COMMAND_RE = re.compile(r"<command\s+id=\"([^\"]+)\"\s*/>")
ENTRY_BLOCK_RE = re.compile(r"<entry>(.*?)</entry>", re.S)
ENTRY_COMMAND_RE = re.compile(r"<command\s+id=\"([^\"]+)\"")
ENTRY_FORM_RE = re.compile(r"<form>([^<]+)</form>")


def decode_text(content: bytes) -> Optional[str]:
    """UTF-8 text of an entry, or None for binary content"""
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        return None


def is_xform(path: str, text: str) -> bool:
    """Form definitions are the .xml entries, other than the suites, that declare a <model>"""
    if not path.endswith(".xml") or path in (SUITE_PATH, MEDIA_SUITE_PATH):
        return False
    return "<model>" in text or "<model " in text


def attributes(tag: str) -> Dict[str, str]:
    return dict(ATTRIBUTE_RE.findall(tag))


def bind_attributes(xml: str) -> List[Dict[str, str]]:
    """Attributes of every <bind> element"""
    return [attributes(tag) for tag in BIND_TAG_RE.findall(xml)]


def has_calculate_bind(xml: str, nodeset: str) -> bool:
    return any(
        attrs.get("nodeset") == nodeset and "calculate" in attrs
        for attrs in bind_attributes(xml)
    )


def bind_calculate(xml: str, nodeset: str) -> Optional[str]:
    for attrs in bind_attributes(xml):
        if attrs.get("nodeset") == nodeset and "calculate" in attrs:
            return attrs["calculate"]
    return None


def block_children(block: str) -> List[str]:
    """Names of the child elements opened inside a <create>/<update> block, in order"""
    names = []
    for name in CHILD_TAG_RE.findall(block):
        if name not in names:
            names.append(name)
    return names


def update_properties(xml: str) -> List[str]:
    props = []
    for block in UPDATE_BLOCK_RE.findall(xml):
        props.extend(p for p in block_children(block) if p not in props)
    return props


def create_extra_properties(xml: str) -> List[str]:
    """Case properties set in <create> blocks beyond type, name and owner"""
    props = []
    for block in CREATE_BLOCK_RE.findall(xml):
        props.extend(
            p for p in block_children(block)
            if p not in STANDARD_CREATE_PROPS and p not in props
        )
    return props


def instance_content(xml: str) -> Optional[str]:
    match = INSTANCE_RE.search(xml)
    return match.group(1) if match else None


def instance_without_case(xml: str) -> str:
    """Main instance data with the case block removed"""
    content = instance_content(xml) or ""
    return CASE_BLOCK_RE.sub("", content)


def find_first_question(xml: str) -> Optional[str]:
    """First self-closing element of the instance data that sits before the case block"""
    content = instance_content(xml)
    if content is None:
        return None
    before_case = re.split(r"<case[\s>]", content, maxsplit=1)[0]
    match = re.search(r"<([A-Za-z_][\w.-]*)\s*/>", before_case)
    return match.group(1) if match else None


def infer_case_type(xml: str) -> Optional[str]:
    calculate = bind_calculate(xml, "/data/case/create/case_type")
    if calculate:
        literal = re.fullmatch(r"'([^']+)'", calculate.strip())
        if literal:
            return literal.group(1)
    match = re.search(r"<case_type>([^<]+)</case_type>", xml)
    if match:
        return match.group(1).strip()
    return None


def case_types(xml: str) -> List[str]:
    """Case types set by calculate binds or literal <case_type> values"""
    types = []
    for attrs in bind_attributes(xml):
        if attrs.get("nodeset") == "/data/case/create/case_type":
            literal = re.fullmatch(r"'([^']*)'", attrs.get("calculate", "").strip())
            if literal:
                types.append(literal.group(1))
    types.extend(m.strip() for m in re.findall(r"<case_type>([^<]+)</case_type>", xml))
    return types


def extract_xmlns(xml: str) -> Optional[str]:
    match = XMLNS_RE.search(xml)
    return match.group(1) if match else None


def itext_definitions(xml: str) -> Set[str]:
    ids: Set[str] = set()
    for block in ITEXT_BLOCK_RE.findall(xml):
        ids.update(TEXT_ID_RE.findall(block))
    return ids


def itext_references(xml: str) -> List[str]:
    refs = []
    for ref in ITEXT_REF_RE.findall(xml):
        if ref not in refs:
            refs.append(ref)
    return refs


def itext_values(xml: str) -> Dict[str, str]:
    """itext id -> first <value> text, for display"""
    values: Dict[str, str] = {}
    for block in ITEXT_BLOCK_RE.findall(xml):
        for text_id, value in re.findall(
            r"<text\s+id=\"([^\"]+)\"[^>]*>\s*<value[^>]*>([^<]*)</value>", block
        ):
            values.setdefault(text_id, value.strip())
    return values


def insert_bind(xml: str, bind: str) -> str:
    """Insert a bind element before <itext>, or before </model> when there is none"""
    if "<itext>" in xml:
        return xml.replace("<itext>", f"{bind.strip()}\n      <itext>", 1)
    return xml.replace("</model>", f"{bind.strip()}\n    </model>", 1)


def parse_app_strings(content: str) -> Dict[str, str]:
    result: Dict[str, str] = {}
    for line in content.splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip():
            result[key.strip()] = value.strip()
    return result


def locale_ids(suite_xml: str) -> List[str]:
    ids = []
    for locale_id in LOCALE_ID_RE.findall(suite_xml):
        if locale_id not in ids:
            ids.append(locale_id)
    return ids


def menu_ids(suite_xml: str) -> Set[str]:
    return set(MENU_ID_RE.findall(suite_xml))


def menu_commands(suite_xml: str) -> List[str]:
    commands = []
    for _, body in MENU_BLOCK_RE.findall(suite_xml):
        commands.extend(MENU_COMMAND_RE.findall(body))
    return commands


def entry_commands(suite_xml: str) -> Set[str]:
    commands = set()
    for entry in ENTRY_BLOCK_RE.findall(suite_xml):
        match = ENTRY_COMMAND_RE.search(entry)
        if match:
            commands.add(match.group(1))
    return commands


def entry_forms(suite_xml: str) -> List[str]:
    forms = []
    for entry in ENTRY_BLOCK_RE.findall(suite_xml):
        match = ENTRY_FORM_RE.search(entry)
        if match:
            forms.append(match.group(1).strip())
    return forms


def id_to_label(text_id: str) -> str:
    """Readable placeholder for a locale/itext id, e.g. "patient_name-label" -> "Patient Name" """
    label = re.sub(r"-(label|hint)$", "", text_id)
    label = re.sub(r"^forms\.m(\d+)f(\d+)$", r"Form \2", label)
    label = re.sub(r"^modules\.m(\d+)$", r"Module \1", label)
    label = {"app.name": "App", "case_list_title": "Cases", "case_name_header": "Name"}.get(label, label)
    label = re.sub(r"[._/-]", " ", label)
    label = re.sub(r"\b\w", lambda m: m.group(0).upper(), label)
    return re.sub(r"\s+", " ", label).strip()


__all__ = [
    "SUITE_PATH",
    "MEDIA_SUITE_PATH",
    "APP_STRINGS_PATH",
    "PROFILE_PATHS",
    "RESERVED_CASE_PROPERTIES",
    "RESERVED_RENAME_MAP",
    "decode_text",
    "is_xform",
    "has_calculate_bind",
    "update_properties",
    "parse_app_strings",
    "id_to_label",
]
