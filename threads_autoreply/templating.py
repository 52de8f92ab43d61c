"""Jinja2 rendering for account-defined reply templates."""

import re
from dataclasses import asdict, dataclass

from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from .errors import TemplateRenderError

# Matches {{ name }} and {{name}} placeholders
VARIABLE_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


@dataclass
class TemplateVariables:
    """Values available to a reply template."""

    username: str
    display_name: str
    content: str
    mention_type: str
    sentiment: str


def _create_jinja_env() -> SandboxedEnvironment:
    """Create the sandboxed Jinja2 environment used for user templates.

    Returns:
        Configured SandboxedEnvironment
    """
    return SandboxedEnvironment(
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=False,
    )


_env = _create_jinja_env()


def extract_variables(content: str) -> list[str]:
    """Return placeholder names in first-seen order, without duplicates."""
    seen: list[str] = []
    for name in VARIABLE_PATTERN.findall(content or ""):
        if name not in seen:
            seen.append(name)
    return seen


def render_template(content: str, variables: TemplateVariables) -> str:
    """Render template content with the given variables.

    Raises:
        TemplateRenderError: On syntax errors or references to unknown variables.
    """
    try:
        template = _env.from_string(content)
        return template.render(**asdict(variables)).strip()
    except TemplateError as e:
        raise TemplateRenderError(f"Failed to render template: {e}") from e
