"""PromptSelector — non-repeating clarification messages.

Pools come from ``catalog.yaml``.  The pool is chosen from the current
condition:

  1. a validation error on a field that is still missing selects that
     field's ``retry`` pool (first such field in name/phone/email order);
  2. otherwise the pool keyed by the exact missing set, e.g.
     ``name+phone``.

Within a pool a sentence is drawn at random among those not yet used in
the session.  When every sentence has been used, the generic fallback
phrase is emitted once; the next request for that pool clears its used
entries and draws again, never returning the sentence emitted last.
"""

from __future__ import annotations

import logging
import random
from pathlib import Path
from typing import Iterable

import yaml

from rdv_assistant.constants import DEFAULT_REQUIRED_FIELDS
from rdv_assistant.models.session import SessionState

logger = logging.getLogger(__name__)

_DEFAULT_CATALOG = Path(__file__).parent / "catalog.yaml"
# Canonical ordering used to build pool keys.
FIELD_ORDER: tuple[str, ...] = DEFAULT_REQUIRED_FIELDS
_FALLBACK_MARKER = "__fallback__:"


def pool_key(fields: Iterable[str]) -> str:
    """``{"email", "name"}`` -> ``"name+email"``."""
    wanted = set(fields)
    return "+".join(f for f in FIELD_ORDER if f in wanted)


class PromptSelector:
    """Chooses clarification sentences for a session.

    Args:
        catalog_path: YAML catalog; defaults to the bundled ``catalog.yaml``
        rng: randomness source, injectable for deterministic tests
    """

    def __init__(
        self,
        catalog_path: Path | str | None = None,
        rng: random.Random | None = None,
    ) -> None:
        with Path(catalog_path or _DEFAULT_CATALOG).open(encoding="utf-8") as f:
            raw = yaml.safe_load(f)
        self.fallback: str = raw["fallback"]
        self._pools: dict[str, list[str]] = {k: list(v) for k, v in raw["pools"].items()}
        self._retry: dict[str, list[str]] = {k: list(v) for k, v in raw.get("retry", {}).items()}
        self._rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Pool lookup
    # ------------------------------------------------------------------

    def pool_for(self, missing: Iterable[str], invalid: Iterable[str] = ()) -> tuple[str, list[str]]:
        """Return ``(pool_id, sentences)`` for the given condition."""
        missing = set(missing)
        invalid = set(invalid)
        for field in FIELD_ORDER:
            if field in missing and field in invalid and field in self._retry:
                return f"retry:{field}", self._retry[field]

        key = pool_key(missing)
        if key in self._pools:
            return key, self._pools[key]
        # Unknown combination: ask for the first missing field on its own
        for field in FIELD_ORDER:
            if field in missing:
                logger.debug("No pool for %r, falling back to %r", key, field)
                return field, self._pools[field]
        raise ValueError(f"No clarification pool for missing fields {sorted(missing)}")

    def pools(self) -> dict[str, list[str]]:
        """Every pool keyed by pool id (retry pools prefixed ``retry:``)."""
        merged = dict(self._pools)
        merged.update({f"retry:{k}": v for k, v in self._retry.items()})
        return merged

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(
        self,
        state: SessionState,
        missing: Iterable[str],
        invalid: Iterable[str] = (),
    ) -> str:
        """Pick the next clarification and record it on *state*.

        Args:
            state: session whose ``used_prompts`` / ``last_prompt`` are updated
            missing: short keys of the fields still missing
            invalid: short keys of fields whose last candidate failed validation

        Returns:
            The sentence to send.
        """
        pool_id, pool = self.pool_for(missing, invalid)
        used = state.used_prompts
        unused = [s for s in pool if s not in used]

        if not unused:
            marker = _FALLBACK_MARKER + pool_id
            if marker not in used and state.last_prompt != self.fallback:
                used.add(marker)
                state.last_prompt = self.fallback
                logger.debug("Pool %s exhausted for session %s", pool_id, state.session_id)
                return self.fallback
            # Second exhaustion: start the pool over
            used.difference_update(pool)
            used.discard(marker)
            unused = [s for s in pool if s != state.last_prompt] or list(pool)

        choice = self._rng.choice(unused)
        used.add(choice)
        state.last_prompt = choice
        return choice
