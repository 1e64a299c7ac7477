"""
Tests for AppGenerator

The model is replaced with langchain-core's fake chat model or a
RunnableLambda that records the rendered prompt.
"""
import json

import pytest
from langchain_core.language_models import FakeListChatModel
from langchain_core.messages import AIMessage
from langchain_core.runnables import RunnableLambda

from forge import generator as generator_module
from forge.generator import AppGenerator, GenerationError, render_files

APP = {
    "app_name": "Clinic",
    "files": {
        "profile.ccpr": '<profile name="Clinic"/>',
        "/suite.xml": "<suite/>",
    },
}


def fake_llm(*responses):
    return FakeListChatModel(responses=list(responses))


class TestAppGenerator:
    """Test suite for AppGenerator"""

    def test_requires_api_key_without_model(self, monkeypatch):
        monkeypatch.setattr(generator_module, "GEMINI_API_KEY", None)

        with pytest.raises(ValueError):
            AppGenerator()

    def test_plain_json(self):
        generator = AppGenerator(llm=fake_llm(json.dumps(APP)))

        files = generator.generate("A clinic app")

        assert files == {"profile.ccpr": b'<profile name="Clinic"/>', "suite.xml": b"<suite/>"}

    def test_fenced_json_with_chatter(self):
        response = f"Here is your app:\n```json\n{json.dumps(APP)}\n```\nLet me know!"
        generator = AppGenerator(llm=fake_llm(response))

        files = generator.generate("A clinic app")

        assert set(files) == {"profile.ccpr", "suite.xml"}

    def test_bare_file_mapping(self):
        generator = AppGenerator(llm=fake_llm(json.dumps(APP["files"])))

        files = generator.generate("A clinic app")

        assert set(files) == {"profile.ccpr", "suite.xml"}
        assert generator.parse_response(json.dumps(APP["files"])).app_name == "Generated App"

    def test_unparseable_response(self):
        generator = AppGenerator(llm=fake_llm("Sorry, I cannot help with that."))

        with pytest.raises(GenerationError):
            generator.generate("A clinic app")

    def test_empty_file_set(self):
        generator = AppGenerator(llm=fake_llm(json.dumps({"app_name": "Clinic", "files": {}})))

        with pytest.raises(GenerationError) as exc:
            generator.generate("A clinic app")

        assert "no files" in str(exc.value)

    def test_model_failure(self):
        def broken(prompt):
            raise RuntimeError("quota exceeded")

        generator = AppGenerator(llm=RunnableLambda(broken))

        with pytest.raises(GenerationError) as exc:
            generator.generate("A clinic app")

        assert str(exc.value) == "Model request failed: quota exceeded"

    def test_feedback_is_sent_to_model(self):
        prompts = []

        def record(prompt):
            prompts.append(prompt.to_string())
            return AIMessage(content=json.dumps(APP))

        generator = AppGenerator(llm=RunnableLambda(record))
        generator.generate("A clinic app")
        generator.generate("A clinic app", ["Reserved case property \"status\" in modules-0/forms-0.xml."])

        assert "A clinic app" in prompts[0]
        assert "previous attempt failed validation" not in prompts[0]
        assert "previous attempt failed validation" in prompts[1]
        assert "- Reserved case property \"status\" in modules-0/forms-0.xml." in prompts[1]

    def test_previous_files_are_sent_with_feedback(self):
        prompts = []

        def record(prompt):
            prompts.append(prompt.to_string())
            return AIMessage(content=json.dumps(APP))

        previous = {"suite.xml": b'<suite><menu id="m0"/></suite>', "media/logo.png": b"\x89PNG\xff"}
        generator = AppGenerator(llm=RunnableLambda(record))
        generator.generate("A clinic app", previous_files=previous)
        generator.generate("A clinic app", ["Menu m0 has no commands."], previous)

        assert "=== suite.xml ===" not in prompts[0]
        assert '=== suite.xml ===\n<suite><menu id="m0"/></suite>' in prompts[1]
        assert "=== media/logo.png === (binary, 5 bytes)" in prompts[1]
        assert prompts[1].index("=== suite.xml ===") < prompts[1].index("- Menu m0 has no commands.")


def test_render_files_sorts_by_path():
    rendered = render_files({"suite.xml": b"<suite/>\n", "profile.ccpr": b"<profile/>"})

    assert rendered == "=== profile.ccpr ===\n<profile/>\n\n=== suite.xml ===\n<suite/>"
