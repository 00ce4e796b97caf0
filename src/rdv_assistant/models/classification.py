"""Classifier output model."""

from pydantic import BaseModel, Field

from rdv_assistant.models.enums import OutOfScopeCategory


class ClassificationResult(BaseModel):
    """Outcome of the out-of-scope classifier for one message.

    ``patterns`` names the rules that fired and ``evidence`` holds the text
    they matched, so an auditor can see exactly why a message was routed
    away.
    """

    matched: bool = False
    category: OutOfScopeCategory | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    patterns: list[str] = Field(default_factory=list)
    evidence: list[str] = Field(default_factory=list)
    # Confidence of every category that matched, for logging and tests
    scores: dict[str, float] = Field(default_factory=dict)
