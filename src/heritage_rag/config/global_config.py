"""heritage_rag.config.global_config

Access to the YAML configuration file.

:class:`GlobalConfig` keeps the parsed document as-is and hands out its
top-level sections as plain dictionaries. Backend sections (``embedder``,
``generator_llm``, ``vector_store``) must be present; tuning sections fall
back to an empty mapping so that the settings layer applies its defaults.

``${VAR}`` and ``$VAR`` references are substituted from the process
environment once, when the file is read; unset variables are left verbatim.
"""

import os
from functools import cached_property
from pathlib import Path
from typing import Any

import yaml


def _substitute_env(value: Any) -> Any:
    """Return ``value`` with environment references replaced in every string it contains."""
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, dict):
        return {key: _substitute_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_substitute_env(item) for item in value]
    return value


def _required(name: str) -> cached_property:
    def section(self: "GlobalConfig") -> dict:
        if name not in self.raw:
            raise KeyError(f"Configuration has no '{name}' section.")
        return self._section(name)

    section.__doc__ = f"The ``{name}`` section. Raises ``KeyError`` when absent."
    return cached_property(section)


def _optional(name: str, *aliases: str) -> cached_property:
    def section(self: "GlobalConfig") -> dict:
        return self._section(name, *aliases)

    section.__doc__ = f"The ``{name}`` section, or ``{{}}`` when absent."
    return cached_property(section)


class GlobalConfig:
    """Parsed configuration document.

    Parameters
    ----------
    raw : dict or None
        Top-level mapping of the document. ``None`` (an empty YAML file) is
        treated as ``{}``.
    config_path : Path, optional
        Resolved location of the file. Relative paths found in the
        configuration (prompt files, for instance) are resolved against its
        directory.
    """

    def __init__(self, raw: dict | None, config_path: Path | None = None):
        self.raw = raw or {}
        self.config_path = config_path

    @classmethod
    def load(cls, path: str | Path) -> "GlobalConfig":
        """Read and parse the YAML file at ``path``."""
        resolved = Path(path).expanduser().resolve()
        with resolved.open("r", encoding="utf-8") as fh:
            document = yaml.safe_load(fh)
        return cls(_substitute_env(document), config_path=resolved)

    def _section(self, name: str, *aliases: str) -> dict:
        for key in (name, *aliases):
            value = self.raw.get(key)
            if value is None:
                continue
            if not isinstance(value, dict):
                raise TypeError(f"'{key}' must be a mapping, got {type(value).__name__}.")
            return value
        return {}

    embedder = _required("embedder")
    generator_llm = _required("generator_llm")
    vector_store = _required("vector_store")

    reranking = _optional("reranking")
    bm25 = _optional("bm25")
    rate_limit = _optional("rate_limit", "rateLimit")
    chunking = _optional("chunking")
    pipeline = _optional("pipeline")
