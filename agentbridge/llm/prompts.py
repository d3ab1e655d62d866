"""Prompt templater.

Templates live in ``agentbridge/prompts`` as ``<name>.system.md`` and
``<name>.user.md``. They are plain ``str.format`` templates: ``{context}`` is
the request Context and every prompt parameter is available by its own name.
"""

import logging
import re
import string
from pathlib import Path
from typing import Any, Optional

from ..errors import PromptNotFoundError, PromptRenderError
from .context import Context

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).parent.parent / "prompts"
PROMPT_EXTENSION = ".md"
SYSTEM_SUFFIX = ".system"
USER_SUFFIX = ".user"

PROMPT_DIRECT_MESSAGE_QUESTION = "direct_message_question"
PROMPT_SUMMARIZE_THREAD = "summarize_thread"
PROMPT_FIND_ACTION_ITEMS = "find_action_items"
PROMPT_FIND_OPEN_QUESTIONS = "find_open_questions"
PROMPT_SUMMARIZE_CHANNEL_SINCE = "summarize_channel_since"
PROMPT_SUMMARIZE_CHANNEL_RANGE = "summarize_channel_range"
PROMPT_THREAD_USER = "thread_user"

_FIELD_PARTS = re.compile(r"[.\[]")


class PublicFieldFormatter(string.Formatter):
    """str.format that refuses private and dunder lookups such as {context.__class__}."""

    def get_field(self, field_name: str, args, kwargs):
        if any(part.startswith("_") for part in _FIELD_PARTS.split(field_name)):
            raise ValueError(f"private field {field_name!r} is not allowed in prompts")
        return super().get_field(field_name, args, kwargs)


class Prompts:
    """Read-only set of templates loaded once at startup."""

    def __init__(self, prompts_dir: Optional[Path] = None):
        self.prompts_dir = Path(prompts_dir or PROMPTS_DIR)
        self._templates: dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        if not self.prompts_dir.exists():
            logger.warning(f"Prompts directory not found at {self.prompts_dir}")
            return
        for path in sorted(self.prompts_dir.glob(f"*{PROMPT_EXTENSION}")):
            self._templates[path.stem] = path.read_text(encoding="utf-8").strip()
        logger.info(f"Loaded {len(self._templates)} prompt templates from {self.prompts_dir}")

    def list_prompts(self) -> list[str]:
        names = {name.rsplit(".", 1)[0] for name in self._templates}
        return sorted(names)

    def format(self, name: str, context: Context) -> tuple[str, str]:
        """Render the system and user parts of a template.

        Args:
            name: Template name without suffix
            context: Request context

        Returns:
            (system, user); a missing part renders as an empty string

        Raises:
            PromptNotFoundError: If neither part exists
        """
        system_template = self._templates.get(name + SYSTEM_SUFFIX)
        user_template = self._templates.get(name + USER_SUFFIX)
        if system_template is None and user_template is None:
            raise PromptNotFoundError(name)

        system = self._render(name + SYSTEM_SUFFIX, system_template, context) if system_template else ""
        user = self._render(name + USER_SUFFIX, user_template, context) if user_template else ""
        return system, user

    def format_system(self, name: str, context: Context) -> str:
        system, _ = self.format(name, context)
        return system

    def format_string(self, template: str, context: Context) -> str:
        """Render template text supplied at runtime (inter-plugin requests)."""
        return self._render("<inline>", template, context)

    def _render(self, name: str, template: str, context: Context) -> str:
        values: dict[str, Any] = dict(context.parameters)
        values["context"] = context
        try:
            return PublicFieldFormatter().vformat(template, (), values)
        except (KeyError, AttributeError, IndexError, ValueError) as e:
            raise PromptRenderError(f"failed to render prompt {name}: {e!r}") from e
