"""heritage_rag.common.kinds

Discriminator handling for configuration-driven factories.

Every backend section of the configuration (``embedder``, ``generator_llm``,
``vector_store``) names its implementation with one discriminator field.
The helpers here read that field and fold the many spellings found in real
configuration files (``OpenAILike``, ``openai-like``, ``CLOVA Studio``...)
into one registry key.

Functions
---------
get_kind
    Return the discriminator value of a configuration section.
normalise_kind
    Fold a discriminator value into a snake_case registry key.
"""

from __future__ import annotations

import re
from typing import Any, Mapping

DISCRIMINATOR_KEYS = ("kind", "type", "provider", "backend", "impl")

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_SEPARATORS = re.compile(r"[\s\-_]+")


def get_kind(config: Mapping[str, Any]) -> str:
    """Return the first non-empty discriminator of ``config``, or ``""``."""
    for key in DISCRIMINATOR_KEYS:
        value = config.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def normalise_kind(kind: str, aliases: Mapping[str, str] | None = None) -> str:
    """Return the registry key for ``kind``.

    CamelCase boundaries, whitespace and hyphens become single underscores
    and the result is lowercased; ``aliases`` then maps alternative names
    onto canonical keys.

    Examples
    --------
    >>> normalise_kind("CLOVA Studio", {"clova_studio": "clova"})
    'clova'
    >>> normalise_kind("OpenAILike")
    'open_ailike'
    """
    key = _CAMEL_BOUNDARY.sub("_", kind.strip())
    key = _SEPARATORS.sub("_", key).strip("_").lower()
    if aliases:
        key = aliases.get(key, key)
    return key


__all__ = ["DISCRIMINATOR_KEYS", "get_kind", "normalise_kind"]
