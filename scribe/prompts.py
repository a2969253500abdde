"""Prompt templates loaded from a TOML file."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from .config import config
from .exceptions import TemplateError
from .models import PromptTemplate

logger = config.get_logger(__name__)

BLOG_GENERATION = "blog_generation"


class PromptTemplateStore:
    """Looks up prompt templates by category.

    The file is parsed on first use and cached for the lifetime of the store.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = Path(path) if path is not None else config.PROMPT_TEMPLATES_PATH
        self._templates: dict[str, Any] | None = None

    def load_templates(self) -> dict[str, Any]:
        """Parse the template file.

        Returns:
            Mapping of category name to its TOML table.

        Raises:
            TemplateError: If the file is missing or is not valid TOML.
        """
        if self._templates is not None:
            return self._templates

        try:
            with self.path.open("rb") as file:
                self._templates = tomllib.load(file)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            logger.exception("Error loading prompt templates from %s", self.path)
            msg = f"Failed to load prompt templates: {exc}"
            raise TemplateError(msg) from exc
        return self._templates

    def get_template(self, category: str) -> PromptTemplate | None:
        """Return the template for a category, or None if it has none.

        Raises:
            TemplateError: If the template file cannot be loaded.
        """  # noqa: DOC201
        entry = self.load_templates().get(category)
        if not isinstance(entry, dict) or not entry.get("user_template"):
            return None
        return PromptTemplate(
            user_template=entry["user_template"],
            system=entry.get("system") or None,
        )
