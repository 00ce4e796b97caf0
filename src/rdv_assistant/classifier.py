"""OutOfScopeClassifier — pattern-based detection of requests a bot must not handle.

Each category owns a list of named regular expressions written against
*folded* text (lower-cased, accents stripped, typographic apostrophes
normalised), so ``Médicament``, ``medicament`` and ``MÉDICAMENT`` all hit
the same rule.

E-mail-shaped tokens are masked before matching.

Scoring::

    confidence = base_weight(category) + 0.05 * (rules_matched - 1)   capped at 1.0

The dominant category is the one with the highest confidence; ties go to
the category declared first in :class:`OutOfScopeCategory`.

The classifier only reports.  Whether a match escalates to a human is
decided by :func:`should_escalate`, which the orchestrator applies with the
session's running out-of-scope count.
"""

from __future__ import annotations

import logging
import re
import unicodedata

from rdv_assistant.constants import HANDOFF_CONFIDENCE_THRESHOLD, MAX_OUT_OF_SCOPE_ATTEMPTS
from rdv_assistant.extractors import mask_email_like
from rdv_assistant.models.classification import ClassificationResult
from rdv_assistant.models.enums import OutOfScopeCategory

logger = logging.getLogger(__name__)

_Rule = tuple[str, re.Pattern[str]]


def _rules(*pairs: tuple[str, str]) -> list[_Rule]:
    return [(name, re.compile(pattern)) for name, pattern in pairs]


BASE_WEIGHTS: dict[OutOfScopeCategory, float] = {
    OutOfScopeCategory.JAILBREAK_OR_SECURITY: 0.95,
    OutOfScopeCategory.SENSITIVE_HEALTH: 0.9,
    OutOfScopeCategory.PERSONAL_DATA: 0.85,
    OutOfScopeCategory.POLICY_OR_LEGAL: 0.7,
    OutOfScopeCategory.PRICING_UNCERTAIN: 0.65,
}
EXTRA_MATCH_BONUS = 0.05

# Categories that always escalate, whatever the confidence.
ALWAYS_ESCALATE: frozenset[OutOfScopeCategory] = frozenset({
    OutOfScopeCategory.JAILBREAK_OR_SECURITY,
    OutOfScopeCategory.SENSITIVE_HEALTH,
})

CATEGORY_REASONS: dict[OutOfScopeCategory, str] = {
    OutOfScopeCategory.JAILBREAK_OR_SECURITY: "tentative de contournement des règles de l'assistant",
    OutOfScopeCategory.SENSITIVE_HEALTH: "question médicale nécessitant un professionnel de santé",
    OutOfScopeCategory.PERSONAL_DATA: "demande portant sur des données personnelles sensibles",
    OutOfScopeCategory.POLICY_OR_LEGAL: "question juridique ou administrative",
    OutOfScopeCategory.PRICING_UNCERTAIN: "question de tarification ou de remboursement",
    OutOfScopeCategory.OUT_OF_SCOPE: "demande hors du périmètre de l'assistant",
}

# ---------------------------------------------------------------------
# Pattern sets (folded text)
# ---------------------------------------------------------------------

PATTERNS: dict[OutOfScopeCategory, list[_Rule]] = {
    OutOfScopeCategory.JAILBREAK_OR_SECURITY: _rules(
        ("ignore_instructions",
         r"\bignore[rsz]?\s+(?:toutes?\s+)?(?:tes|les|vos|ses|mes)\s+(?:instructions|regles|consignes)"),
        ("forget_rules", r"\boublie[rsz]?\s+(?:toutes?\s+)?(?:tes|les|vos)\s+(?:regles|instructions|consignes)"),
        ("ignore_previous_en",
         r"\b(?:ignore|disregard|forget)\s+(?:all\s+)?(?:the\s+|your\s+)?(?:previous|prior|above)?\s*instructions"),
        ("developer_mode", r"\b(?:mode\s+developpeur|developer\s+mode|debug\s+mode|mode\s+debug)\b"),
        ("admin_access", r"\b(?:admin|administrateur|root|sudo)\b"),
        ("prompt_injection", r"\b(?:prompt\s+injection|system\s+override|system\s+prompt|jailbreak)\b"),
        ("bypass", r"\b(?:hack\w*|exploit\w*|bypass\w*|contourne\w*|pirat\w*)\b"),
        ("reveal_internals",
         r"\b(?:revele|montre|affiche|donne)[rsz]?\s*(?:-moi\s+)?(?:ton|tes|votre|vos)\s+(?:code|instructions|prompt|regles)\b"),
        ("role_play", r"\b(?:fais\s+semblant|pretend\s+(?:to\s+be|you\s+are)|tu\s+es\s+maintenant)\b"),
    ),
    OutOfScopeCategory.SENSITIVE_HEALTH: _rules(
        ("serious_disease", r"\b(?:cancer\w*|tumeur\w*|maladie\s+grave|metastase\w*|leucemie)\b"),
        ("acute_symptom", r"\b(?:douleur\s+(?:intense|insupportable)|urgence\s+medicale|hemorragie)\b"),
        ("bleeding_or_fever", r"\b(?:saigne\w*|infection\s+grave|fievre\s+elevee|abces)\b"),
        ("medical_advice", r"\b(?:conseil\s+medical|diagnostic|diagnostiquer|traitement\s+medical)\b"),
        ("medication", r"\b(?:prescription|ordonnance|medicament\w*|antibiotique\w*|posologie)\b"),
        ("self_harm", r"\b(?:suicid\w*|me\s+faire\s+du\s+mal|overdose)\b"),
    ),
    OutOfScopeCategory.PERSONAL_DATA: _rules(
        ("national_id", r"\b(?:numero\s+de\s+securite\s+sociale|carte\s+d'identite|passeport)\b"),
        ("banking", r"\b(?:carte\s+bancaire|compte\s+en\s+banque|rib|iban)\b"),
        ("secrets", r"\b(?:mot\s+de\s+passe|code\s+secret|code\s+pin|password)\b"),
        ("privacy", r"\b(?:donnees\s+personnelles|dossier\s+medical\s+d'un\s+autre|confidentialite)\b"),
        ("other_patient", r"\b(?:adresse|telephone|numero)\s+d'un\s+(?:autre\s+)?patient\b"),
    ),
    OutOfScopeCategory.POLICY_OR_LEGAL: _rules(
        ("terms", r"\b(?:conditions\s+generales|politique\s+de\s+confidentialite|cgu)\b"),
        ("patient_rights", r"\b(?:droits\s+du\s+patient|reclamation|plainte)\b"),
        ("liability", r"\b(?:responsabilite|garantie|faute\s+medicale)\b"),
        ("litigation", r"\b(?:procedure\s+legale|contentieux|avocat|tribunal|poursuite\w*)\b"),
    ),
    OutOfScopeCategory.PRICING_UNCERTAIN: _rules(
        ("exact_price", r"\b(?:combien\s+(?:ca|cela)\s+coute|prix\s+exact|tarif\s+precis|combien\s+coute)\b"),
        ("reimbursement", r"\b(?:rembours\w*|mutuelle|assurance\s+maladie|cnas|casnos)\b"),
        ("quote", r"\b(?:devis|facture|cout\s+total)\b"),
        ("fees", r"\b(?:prix\s+des\s+soins|tarification|tarifs?|honoraires)\b"),
    ),
}


def fold(text: str) -> str:
    """Lower-case *text*, strip accents and normalise apostrophes."""
    decomposed = unicodedata.normalize("NFKD", text or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.replace("’", "'").replace("`", "'").lower()


class OutOfScopeClassifier:
    """Classifies a message against the category pattern sets.

    Pattern sets and weights can be injected for tests; the defaults are
    the module-level :data:`PATTERNS` and :data:`BASE_WEIGHTS`.
    """

    def __init__(
        self,
        patterns: dict[OutOfScopeCategory, list[_Rule]] | None = None,
        weights: dict[OutOfScopeCategory, float] | None = None,
    ) -> None:
        self._patterns = patterns if patterns is not None else PATTERNS
        self._weights = weights if weights is not None else BASE_WEIGHTS

    def classify(self, text: str) -> ClassificationResult:
        folded = fold(mask_email_like(text))
        if not folded.strip():
            return ClassificationResult()

        order = list(OutOfScopeCategory)
        best: tuple[float, int] | None = None
        best_category: OutOfScopeCategory | None = None
        hits: dict[OutOfScopeCategory, list[tuple[str, str]]] = {}
        scores: dict[str, float] = {}

        for category, rules in self._patterns.items():
            matched = []
            for name, pattern in rules:
                m = pattern.search(folded)
                if m:
                    matched.append((name, m.group(0)))
            if not matched:
                continue
            confidence = min(
                1.0, self._weights.get(category, 0.5) + EXTRA_MATCH_BONUS * (len(matched) - 1)
            )
            confidence = round(confidence, 4)
            hits[category] = matched
            scores[category.value] = confidence
            # Higher confidence wins; on a tie the earlier-declared category
            key = (confidence, -order.index(category))
            if best is None or key > best:
                best = key
                best_category = category

        if best_category is None:
            return ClassificationResult()

        matched = hits[best_category]
        return ClassificationResult(
            matched=True,
            category=best_category,
            confidence=scores[best_category.value],
            patterns=[name for name, _ in matched],
            evidence=[fragment for _, fragment in matched],
            scores=scores,
        )


def should_escalate(
    result: ClassificationResult,
    prior_attempts: int,
    threshold: float = HANDOFF_CONFIDENCE_THRESHOLD,
) -> bool:
    """Escalation policy applied by the orchestrator.

    Args:
        result: classifier output for the current message
        prior_attempts: out-of-scope messages already seen in this session
            (not counting the current one)
        threshold: confidence at or above which any category escalates

    Returns:
        True when the message must be handed to a human.
    """
    if not result.matched or result.category is None:
        return False
    if result.category in ALWAYS_ESCALATE:
        return True
    if result.confidence >= threshold:
        return True
    return prior_attempts >= MAX_OUT_OF_SCOPE_ATTEMPTS
