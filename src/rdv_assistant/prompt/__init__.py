"""User-facing text.

Provides ``PromptSelector`` (non-repeating clarification questions drawn
from ``catalog.yaml``) and ``MessageRenderer`` (Jinja2 templates for the
fixed messages).
"""

from rdv_assistant.prompt.manager import MessageRenderer
from rdv_assistant.prompt.selector import PromptSelector

__all__ = ["MessageRenderer", "PromptSelector"]
