"""
Utility for loading and rendering prompt templates.

Templates live in sqlbot/prompts/templates.yaml; each entry has a
"system" and a "user" part with string.Template placeholders.
"""

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from string import Template
from typing import Dict, Tuple

import yaml

from ..domain.errors import ConfigurationError
from ..utils.logging import get_module_logger


logger = get_module_logger()

TEMPLATES_PATH = Path(__file__).resolve().parent.parent / "prompts" / "templates.yaml"

REQUIRED_PROMPTS = ("sql_generate", "sql_permission", "data_analysis", "suggest_questions")


@dataclass(frozen=True)
class PromptTemplate:
    """A system/user prompt pair."""

    name: str
    system: str
    user: str

    def render(self, **values: object) -> Tuple[str, str]:
        """
        Fill both parts.

        Returns:
            Tuple of (system_prompt, user_prompt)

        Raises:
            ConfigurationError: If a placeholder has no value
        """
        text_values = {key: str(value) for key, value in values.items()}
        try:
            return (
                Template(self.system).substitute(text_values).strip(),
                Template(self.user).substitute(text_values).strip(),
            )
        except KeyError as e:
            raise ConfigurationError(
                f"Prompt '{self.name}' is missing a value for placeholder {e}"
            ) from e


def parse_templates(content: object) -> Dict[str, PromptTemplate]:
    """
    Validate parsed YAML and build PromptTemplate objects.

    Raises:
        ConfigurationError: If a required prompt or part is missing
    """
    if not isinstance(content, dict):
        raise ConfigurationError("Prompt file must contain a mapping of prompt names")

    templates: Dict[str, PromptTemplate] = {}
    for name in REQUIRED_PROMPTS:
        entry = content.get(name)
        if not isinstance(entry, dict) or not entry.get("system") or not entry.get("user"):
            raise ConfigurationError(f"Prompt '{name}' must define 'system' and 'user' text")
        templates[name] = PromptTemplate(name=name, system=entry["system"], user=entry["user"])
    return templates


@lru_cache
def load_prompts(path: Path = TEMPLATES_PATH) -> Dict[str, PromptTemplate]:
    """
    Load and cache the prompt templates.

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    try:
        content = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load prompt templates from {path}: {e}") from e

    templates = parse_templates(content)
    logger.info("Prompt templates loaded", path=str(path), prompt_count=len(templates))
    return templates


def get_prompt(name: str) -> PromptTemplate:
    """Get one prompt template by name."""
    prompts = load_prompts()
    if name not in prompts:
        raise ConfigurationError(f"Unknown prompt template: {name}")
    return prompts[name]
