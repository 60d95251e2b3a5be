"""Output-format templates.

A template is plain text with `%variable%` placeholders. A placeholder may
list fallbacks, `%alt|description|title|filename%`, and renders the first
non-empty one. Unknown variables render as empty strings.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_FORMAT = "url"

DEFAULT_TEMPLATES: dict[str, str] = {
    "markdown": "![%alt|description|title|filename%](%image_url%)",
    "html": '<img src="%image_url%" alt="%alt|description|title|filename%">',
    "url": "%url%",
    "json": '{"photo_id":"%photo_id%","url":"%url%","image_url":"%image_url%"}',
    "org": "[[%image_url%][%alt|description|title|filename%]]",
}

_PLACEHOLDER = re.compile(r"%([^%]+)%")


@dataclass
class TemplateVariables:
    """Values available to templates."""

    photo_id: str = ""
    url: str = ""
    image_url: str = ""
    edit_url: str = ""
    filename: str = ""
    title: str = ""
    description: str = ""
    alt: str = ""
    tags: list[str] = field(default_factory=list)

    def lookup(self, name: str) -> str:
        """Value of one variable, empty if unknown."""
        if name == "tags":
            return ", ".join(self.tags)
        if name in _VARIABLE_NAMES:
            return getattr(self, name)
        return ""


_VARIABLE_NAMES = frozenset(
    {"photo_id", "url", "image_url", "edit_url", "filename", "title", "description", "alt"}
)


def render_template(template: str, variables: TemplateVariables) -> str:
    """Render `template` with `variables`."""

    def replace(match: re.Match[str]) -> str:
        for name in match.group(1).split("|"):
            value = variables.lookup(name.strip())
            if value:
                return value
        return ""

    return _PLACEHOLDER.sub(replace, template)


def merge_templates(overrides: Mapping[str, str] | None = None) -> dict[str, str]:
    """Default templates, extended and overridden by user templates."""
    templates = dict(DEFAULT_TEMPLATES)
    if overrides:
        templates.update(overrides)
    return templates


def select_template(templates: Mapping[str, str], format_name: str) -> str:
    """Template for `format_name`, falling back to the URL format."""
    template = templates.get(format_name)
    if template is None:
        logger.debug(f"Unknown format {format_name!r}, using {DEFAULT_FORMAT!r}")
        template = templates.get(DEFAULT_FORMAT, DEFAULT_TEMPLATES[DEFAULT_FORMAT])
    return template
