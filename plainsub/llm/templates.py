"""
plainsub.llm.templates - Prompt template loading and rendering.

Uses Jinja2 to load and render the prompt templates bundled with the
package, or a user-supplied directory that overrides them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, Template

PROMPTS_DIR = Path(__file__).parent.parent / "prompts"


class PromptTemplateManager:
    """Manages loading and rendering of prompt templates."""

    def __init__(self, prompts_dir: Path = PROMPTS_DIR) -> None:
        self.prompts_dir = prompts_dir
        search_path = [str(prompts_dir)]
        if prompts_dir != PROMPTS_DIR:
            search_path.append(str(PROMPTS_DIR))
        self.env = Environment(
            loader=FileSystemLoader(search_path),
            autoescape=False,
            keep_trailing_newline=True,
        )
        self._cache: dict[str, Template] = {}

    def get_template(self, name: str) -> Template:
        """Load a template by name.

        Args:
            name: Template filename (e.g., "refine.txt")

        Returns:
            Jinja2 Template object

        Raises:
            FileNotFoundError: If template doesn't exist
        """
        if name not in self._cache:
            if name not in self.list_templates():
                raise FileNotFoundError(f"Template not found: {name}")
            self._cache[name] = self.env.get_template(name)
        return self._cache[name]

    def render(self, template_name: str, variables: dict[str, Any]) -> str:
        """Render a template with variables."""
        template = self.get_template(template_name)
        return template.render(**variables)

    def list_templates(self) -> list[str]:
        """List available templates."""
        return sorted(self.env.list_templates(filter_func=lambda n: n.endswith(".txt")))
