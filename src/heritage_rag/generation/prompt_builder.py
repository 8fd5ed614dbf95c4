"""heritage_rag.generation.prompt_builder

Prompt templates for the answer generator.

A chat prompt is a pair of a system message and a user message, each a
Jinja2 template. The builder ships three defaults: ``answer`` (grounded on
retrieved context), ``fallback`` (heritage question with no relevant
context) and ``general`` (question outside the heritage domain). Additional
templates can be registered from mappings or JSON files.

Classes
-------
ChatPrompt
    A rendered system/user message pair.
PromptTemplate
    A named pair of Jinja2 templates.
PromptBuilder
    Registry and renderer of prompt templates.

Functions
---------
build_context
    Number and join candidate contents into the context block.
"""

from __future__ import annotations

import json
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from jinja2 import Template

ANSWER_SYSTEM = """\
You are an AI assistant specializing in Vietnamese cultural heritage.
You will receive some background reference information, but you must NOT mention or refer to it directly.

STRICT RULES:
1. Do NOT say phrases such as "Based on the information provided", "According to the documents", \
"From the context", "Document 1" or any similar meta statements.
2. Do NOT mention or imply that you were given documents, sources, or context.
3. Answer naturally as if you already know the information.
4. If the reference information is incomplete, simply state that the available historical information is limited.
5. Do NOT invent dates, numbers, or historical facts.
6. Keep your answer clear, accurate, and friendly.
7. Respond in {{ language }}."""

ANSWER_USER = """\
Here is some reference information that may help:

{{ context }}

User question: {{ question }}

Please answer naturally using the information above, without mentioning that it came from references or documents.
If the information is incomplete, politely say that detailed information is limited."""

FALLBACK_SYSTEM = """\
You are an AI assistant specialized in Vietnamese historical heritage sites.

The user's question is related to a heritage site, but the database does not have specific information about it yet.

Your rules:
1. Do NOT invent or guess any historical facts, names, dynasties, dates, or numbers about the site.
2. If exact data is unavailable, simply acknowledge that the specific information is not available.
3. Provide only general context about the era or region, without referencing specific dynasties or historical figures.
4. Politely mention that detailed information on this site is not available yet.
5. Offer to help with a different heritage site or with general background.
6. Keep the answer polite, concise, and educational.
7. Respond in {{ language }}."""

GENERAL_SYSTEM = """\
You are an AI assistant specialized in Vietnamese historical heritage.

The user's question is outside your area of expertise and does not relate to heritage sites.

Your rules:
1. Politely acknowledge that the question is outside your main area of expertise.
2. Provide a helpful answer using general, widely-known knowledge.
3. Keep the tone friendly, concise, and educational.
4. Do NOT invent historical facts or fabricate information about heritage sites.
5. Respond in {{ language }}."""

QUESTION_ONLY_USER = "{{ question }}"

DEFAULT_TEMPLATES: tuple[dict[str, str], ...] = (
    {"name": "answer", "system": ANSWER_SYSTEM, "user": ANSWER_USER},
    {"name": "fallback", "system": FALLBACK_SYSTEM, "user": QUESTION_ONLY_USER},
    {"name": "general", "system": GENERAL_SYSTEM, "user": QUESTION_ONLY_USER},
)


@dataclass(frozen=True)
class ChatPrompt:
    """Rendered system and user messages."""
    system: str
    user: str


@dataclass(frozen=True)
class PromptTemplate:
    """Named system and user message templates, in Jinja2 syntax."""
    name: str
    system: str
    user: str = QUESTION_ONLY_USER

    def render(self, **variables: Any) -> ChatPrompt:
        return ChatPrompt(
            system=Template(self.system).render(**variables).strip(),
            user=Template(self.user).render(**variables).strip(),
        )


def _template_from_mapping(data: Dict[str, Any]) -> PromptTemplate:
    missing = [key for key in ("name", "system") if key not in data]
    if missing:
        raise KeyError(f"Prompt definition lacks {', '.join(missing)}")

    name = data["name"]
    if not isinstance(name, str):
        raise TypeError(f"Prompt name must be a string, not {type(name).__name__}")
    if not name.strip():
        raise ValueError("Prompt name is blank")

    user = data.get("user") or QUESTION_ONLY_USER
    if not isinstance(data["system"], str) or not isinstance(user, str):
        raise TypeError(f"Prompt {name!r}: 'system' and 'user' must be strings")
    return PromptTemplate(name=name, system=data["system"], user=user)


class PromptBuilder:
    """Registry and renderer of prompt templates.

    Parameters
    ----------
    language : str, optional
        Answer language substituted for ``{{ language }}`` unless a call
        supplies its own. Defaults to ``"English"``.
    include_defaults : bool, optional
        Start with the ``answer``, ``fallback`` and ``general`` templates.
    """

    def __init__(self, language: str = "English", include_defaults: bool = True):
        self.language = language
        self.templates: Dict[str, PromptTemplate] = {}
        for data in DEFAULT_TEMPLATES if include_defaults else ():
            self.register_from_dict(data)

    def register_from_dict(self, data: Dict[str, Any]) -> str:
        """Add the template described by ``data`` and return its name.

        ``data`` needs ``name`` and ``system``; ``user`` defaults to the bare
        question. A template replacing an existing name triggers a
        ``UserWarning``.

        Raises
        ------
        KeyError
            A required field is missing.
        TypeError
            A field has the wrong type.
        ValueError
            The name is blank.
        """
        template = _template_from_mapping(data)
        if template.name in self.templates:
            warnings.warn(f"Prompt template {template.name!r} replaced", UserWarning)
        self.templates[template.name] = template
        return template.name

    def register_from_file(self, path: Union[Path, str], base_dir: Optional[Path] = None) -> List[str]:
        """Add every template defined in the JSON file at ``path``.

        The file holds one definition object or an array of them. A relative
        ``path`` is taken from ``base_dir`` when one is given.

        Returns
        -------
        list[str]
            Names registered, in file order.

        Raises
        ------
        FileNotFoundError
            The file does not exist.
        ValueError
            The file is not ``.json``.
        """
        source = Path(path)
        if base_dir is not None and not source.is_absolute():
            source = base_dir / source
        source = source.resolve()
        if not source.is_file():
            raise FileNotFoundError(f"No prompt file at {source}")
        if source.suffix.lower() != ".json":
            raise ValueError(f"Prompt files must be JSON, got {source.name}")

        with source.open("r", encoding="utf-8") as fh:
            document = json.load(fh)

        definitions = [document] if isinstance(document, dict) else document
        if not isinstance(definitions, list) or not all(isinstance(d, dict) for d in definitions):
            raise TypeError(f"{source.name} must hold an object or an array of objects")
        return [self.register_from_dict(definition) for definition in definitions]

    def list_prompts(self) -> List[str]:
        return sorted(self.templates)

    def get_template(self, name: str) -> PromptTemplate:
        try:
            return self.templates[name]
        except KeyError:
            raise KeyError(
                f"Unknown prompt template {name!r}; registered: {self.list_prompts()}"
            ) from None

    def build(self, name: str, **variables: Any) -> ChatPrompt:
        """Render the template ``name``; ``language`` defaults to the builder's."""
        variables.setdefault("language", self.language)
        return self.get_template(name).render(**variables)


def build_context(contents: Iterable[str]) -> str:
    """Return ``[Document i]`` sections (1-based) separated by blank lines."""
    return "\n\n".join(
        f"[Document {index}]\n{content}" for index, content in enumerate(contents, start=1)
    )


__all__ = [
    "ChatPrompt",
    "PromptTemplate",
    "PromptBuilder",
    "build_context",
]
