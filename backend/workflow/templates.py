"""Template resolution against the DataStore.

Templates reference DataStore values with ``{{dot.path}}`` placeholders:

- ``"{{article}}"`` — a template that is exactly one placeholder returns the
  raw value (dict, number, list ...) so structured data flows between tasks.
- ``"Summary of {{userInput.text}}"`` — placeholders embedded in text are
  substituted as strings; dicts/lists are rendered as pretty-printed JSON.

Missing keys never raise: the placeholder is left as-is and a warning is logged.
"""

import json
import re
from collections.abc import Mapping
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([\w\.]+)\s*\}\}")
_SINGLE_PLACEHOLDER = re.compile(r"^\{\{\s*([\w\.]+)\s*\}\}$")


class _Missing:
    """Sentinel for a path that resolves to nothing."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


class TemplateEngine:
    """Resolves ``{{dot.path}}`` placeholders against a DataStore."""

    @staticmethod
    def get_path(data: Any, path: str) -> Any:
        """Walk ``path`` through nested mappings and lists.

        Returns MISSING at the first segment that cannot be resolved.
        """
        current = data
        for part in path.split("."):
            if isinstance(current, Mapping):
                if part not in current:
                    return MISSING
                current = current[part]
            elif isinstance(current, (list, tuple)):
                if not part.isdigit() or int(part) >= len(current):
                    return MISSING
                current = current[int(part)]
            else:
                return MISSING
        return current

    @staticmethod
    def render(template: str, data_store: Mapping[str, Any]) -> Any:
        """Resolve every placeholder in ``template``."""
        single = _SINGLE_PLACEHOLDER.match(template.strip())
        if single:
            value = TemplateEngine.get_path(data_store, single.group(1))
            return template if value is MISSING else value

        def _substitute(match: re.Match) -> str:
            key = match.group(1)
            value = TemplateEngine.get_path(data_store, key)
            if value is MISSING or value is None:
                logger.warning("Template key not found in data store", key=key)
                return match.group(0)
            return TemplateEngine.format_value(value)

        return PLACEHOLDER_PATTERN.sub(_substitute, template)

    @staticmethod
    def format_value(value: Any) -> str:
        """Render a DataStore value for inclusion in text."""
        if isinstance(value, str):
            return value
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        if isinstance(value, (Mapping, list, tuple)):
            return json.dumps(value, indent=2, ensure_ascii=False, default=str)
        return str(value)

    @staticmethod
    def placeholders(template: str) -> list[str]:
        """List the dot-paths referenced by ``template`` in order of appearance."""
        return PLACEHOLDER_PATTERN.findall(template)


def render_template(template: str, data_store: Mapping[str, Any]) -> Any:
    """Shortcut for :meth:`TemplateEngine.render`."""
    return TemplateEngine.render(template, data_store)
