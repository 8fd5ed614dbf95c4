import json

import pytest

from heritage_rag.generation.prompt_builder import PromptBuilder, build_context


def test_default_templates_are_registered():
    assert PromptBuilder().list_prompts() == ["answer", "fallback", "general"]
    assert PromptBuilder(include_defaults=False).list_prompts() == []


def test_answer_prompt_renders_context_question_and_language():
    builder = PromptBuilder(language="Vietnamese")
    context = build_context(["First chunk.", "Second chunk."])

    prompt = builder.build("answer", question="Who built it?", context=context)

    assert "Respond in Vietnamese." in prompt.system
    assert "[Document 1]\nFirst chunk.\n\n[Document 2]\nSecond chunk." in prompt.user
    assert "User question: Who built it?" in prompt.user


def test_fallback_prompt_user_message_is_the_question():
    prompt = PromptBuilder().build("fallback", question="Where is the pagoda?", language="French")
    assert prompt.user == "Where is the pagoda?"
    assert "Respond in French." in prompt.system


def test_unknown_template_raises_key_error():
    with pytest.raises(KeyError):
        PromptBuilder().build("missing", question="q")


def test_register_from_dict_validates_definition():
    builder = PromptBuilder(include_defaults=False)
    with pytest.raises(KeyError):
        builder.register_from_dict({"name": "x"})
    with pytest.raises(ValueError):
        builder.register_from_dict({"name": " ", "system": "s"})
    with pytest.raises(TypeError):
        builder.register_from_dict({"name": "x", "system": 3})


def test_register_from_dict_overwrite_warns():
    builder = PromptBuilder()
    with pytest.warns(UserWarning):
        builder.register_from_dict({"name": "answer", "system": "Short."})
    assert builder.build("answer", question="q").system == "Short."


def test_register_from_file_resolves_relative_paths(tmp_path):
    path = tmp_path / "prompts.json"
    path.write_text(
        json.dumps([
            {"name": "summary", "system": "Summarise in {{ language }}.", "user": "{{ text }}"},
            {"name": "tour", "system": "Plan a tour."},
        ]),
        encoding="utf-8",
    )
    builder = PromptBuilder(include_defaults=False)

    assert builder.register_from_file("prompts.json", base_dir=tmp_path) == ["summary", "tour"]
    prompt = builder.build("summary", text="Long text")
    assert prompt.system == "Summarise in English."
    assert prompt.user == "Long text"


def test_register_from_file_errors(tmp_path):
    builder = PromptBuilder()
    with pytest.raises(FileNotFoundError):
        builder.register_from_file(tmp_path / "missing.json")

    yaml_file = tmp_path / "prompts.yaml"
    yaml_file.write_text("name: x", encoding="utf-8")
    with pytest.raises(ValueError):
        builder.register_from_file(yaml_file)


def test_build_context_numbers_from_one():
    assert build_context([]) == ""
    assert build_context(["only"]) == "[Document 1]\nonly"
