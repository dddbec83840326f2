"""Jinja2 templates shipped with the package."""

from pathlib import Path

from jinja2 import StrictUndefined, Template

TEMPLATES_DIR = Path(__file__).parent.parent / "templates"


def load_template(name: str) -> Template:
    """
    Load a template file from the package templates directory.

    Raises:
        FileNotFoundError: If the template doesn't exist
    """
    template_file = TEMPLATES_DIR / name
    if not template_file.exists():
        raise FileNotFoundError(f"Template not found: {template_file}")

    return Template(
        template_file.read_text(encoding="utf-8"),
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )


def render_template(name: str, **context) -> str:
    return load_template(name).render(**context)
