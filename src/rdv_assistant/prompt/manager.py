"""MessageRenderer — Jinja2 renderer for the assistant's fixed messages.

Clarification questions come from :class:`~rdv_assistant.prompt.selector.PromptSelector`;
every other user-facing sentence (welcome, handoff, sign-in, sign-up, slot
search, confirmation, email summary, errors) is a template in
``template/``.  Callers pass the template stem, e.g. ``render("handoff",
category=...)``.
"""

from __future__ import annotations

from pathlib import Path

import jinja2


class MessageRenderer:
    """Jinja2-based renderer for fixed messages.

    Args:
        template_dir: optional override for the template directory.
            Defaults to ``template/`` sibling of this module.
    """

    def __init__(self, template_dir: Path | None = None) -> None:
        if template_dir is None:
            template_dir = Path(__file__).parent / "template"
        self._env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(template_dir)),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render(self, template_name: str, **context) -> str:
        """Render ``template/<template_name>.jinja2``; blank lines are dropped."""
        template = self._env.get_template(f"{template_name}.jinja2")
        text = template.render(**context)
        return "\n".join(line.strip() for line in text.splitlines() if line.strip())
