"""
App Generator - Conversation summary → candidate FileSet

Responsibilities:
- Ask the model for every file of a .ccz as one JSON object
- Include the previous attempt's files and validation errors as feedback
- Parse the answer into a GeneratedApp, tolerating fenced or chatty output

This component is the ONLY place where the pipeline talks to an LLM.
"""
import json
import logging
import re
from typing import List, Optional

from langchain_core.exceptions import OutputParserException
from langchain_core.output_parsers import PydanticOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_google_genai import ChatGoogleGenerativeAI
from pydantic import ValidationError

from config import GEMINI_API_KEY, AI_MODEL, AI_TEMPERATURE, AI_REQUEST_TIMEOUT, AI_MAX_RETRIES
from forge.core.xform import decode_text
from forge.schemas import FileSet, GeneratedApp

logger = logging.getLogger(__name__)

FENCED_JSON_RE = re.compile(r"```(?:json)?\s*\n(.*?)\n```", re.S)

SYSTEM_PROMPT = """You are an expert CommCare application builder. Produce the complete contents of a
CommCare .ccz package for the app the user describes.

Required files:
- profile.ccpr: <profile> manifest whose name attribute is the app name
- suite.xml: one <menu> per module, one <entry> per form, <locale id> text everywhere
- default/app_strings.txt: key=value for every locale id used in suite.xml
- modules-N/forms-M.xml: one XForm per form, with a unique xmlns on <data>

Rules CommCare HQ enforces:
- Every label and hint uses jr:itext('...') with a <text id> in <itext><translation lang="en" default="">
- Case <create> blocks contain <case_type/>, <case_name/> and <owner_id/>, each with a calculate bind
- Every <update> property has a calculate bind on /data/case/update/<property>
- Never use reserved case property names (date, status, type, parent, index, ...)

{format_instructions}"""

FEEDBACK_PROMPT = """The previous attempt failed validation with these errors.
Regenerate ALL files with every error fixed:

{errors}"""

PREVIOUS_FILES_PROMPT = """These are the files of the previous attempt, after automatic fixes.
Keep what already works:

{previous_files}"""


class GenerationError(Exception):
    """Raised when the model's answer cannot be turned into a FileSet"""
    pass


class AppGenerator:
    """
    AppGenerator - LLM-backed content generator

    generate() is called once per pipeline attempt.
    """

    def __init__(self, llm=None, api_key: Optional[str] = None):
        if llm is None:
            api_key = api_key or GEMINI_API_KEY
            if not api_key:
                raise ValueError("GEMINI_API_KEY is not set; app generation needs a model API key")
            llm = ChatGoogleGenerativeAI(
                google_api_key=api_key,
                model=AI_MODEL,
                temperature=AI_TEMPERATURE,
                max_retries=AI_MAX_RETRIES,
                request_timeout=AI_REQUEST_TIMEOUT,
                transport="rest",
            )
        self.llm = llm
        self.parser = PydanticOutputParser(pydantic_object=GeneratedApp)

    def generate(
        self,
        context: str,
        feedback: Optional[List[str]] = None,
        previous_files: Optional[FileSet] = None,
    ) -> FileSet:
        """
        Generate a candidate package

        Args:
            context: Description of the app (conversation summary)
            feedback: Errors from the previous attempt, if any
            previous_files: The previous attempt's files; only sent along with feedback

        Returns:
            FileSet for the PackageBuilder

        Raises:
            GenerationError: If the model fails or its answer is unusable
        """
        messages = [("system", SYSTEM_PROMPT), ("user", "{context}")]
        variables = {
            "context": context,
            "format_instructions": self.parser.get_format_instructions(),
        }
        if feedback:
            if previous_files:
                messages.append(("user", PREVIOUS_FILES_PROMPT))
                variables["previous_files"] = render_files(previous_files)
            messages.append(("user", FEEDBACK_PROMPT))
            variables["errors"] = "\n".join(f"- {error}" for error in feedback)

        chain = ChatPromptTemplate.from_messages(messages) | self.llm

        logger.info(f"[AppGenerator] Requesting files{' with ' + str(len(feedback)) + ' feedback error(s)' if feedback else ''}")
        try:
            response = chain.invoke(variables)
        except Exception as e:
            raise GenerationError(f"Model request failed: {e}") from e

        app = self.parse_response(response.content if hasattr(response, "content") else str(response))
        logger.info(f"[AppGenerator] ✓ {app.app_name}: {len(app.files)} files")
        return app.to_file_set()

    def parse_response(self, text) -> GeneratedApp:
        """Structured parse first, then the first fenced JSON block, then the outermost braces"""
        if isinstance(text, list):
            text = "".join(part if isinstance(part, str) else part.get("text", "") for part in text)

        try:
            app = self.parser.parse(text)
        except OutputParserException:
            app = self._fallback_parse(text)

        if not app.files:
            raise GenerationError("Failed to parse generated app files: the response contained no files")
        return app

    @staticmethod
    def _fallback_parse(text: str) -> GeneratedApp:
        candidates = [m.group(1) for m in FENCED_JSON_RE.finditer(text)]
        start, end = text.find("{"), text.rfind("}")
        if start != -1 and end > start:
            candidates.append(text[start:end + 1])

        for candidate in candidates:
            try:
                data = json.loads(candidate)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict) and "files" not in data:
                # Bare {path: content} mapping
                data = {"files": data}
            try:
                return GeneratedApp.model_validate(data)
            except ValidationError:
                continue

        raise GenerationError("Failed to parse generated app files from model response")


def render_files(files: FileSet) -> str:
    """Text entries as '=== path ===' sections; binary entries are listed by name only"""
    sections = []
    for path in sorted(files):
        text = decode_text(files[path])
        if text is None:
            sections.append(f"=== {path} === (binary, {len(files[path])} bytes)")
        else:
            sections.append(f"=== {path} ===\n{text.rstrip()}")
    return "\n\n".join(sections)


__all__ = ["AppGenerator", "GenerationError", "render_files"]
