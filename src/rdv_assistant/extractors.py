"""Entity extractors — pure ``text -> candidates`` functions.

Each entity type is extracted by a fixed, ordered set of named strategies.
Strategies are applied in declaration order and their results deduplicated
while preserving the first occurrence, so the output order encodes
priority: the first candidate of the highest-ranked strategy comes first.

Nothing here touches session state.  The orchestrator decides which
candidate becomes "confirmed".

Name strategies (rank in parentheses):
    labeled     ``nom: Silas Benali``                       (3)
    formal      ``je m'appelle Silas`` / ``je suis Silas``  (3)
    quoted      ``"Silas Benali"`` / ``« Silas »``           (2)
    standalone  a message made only of capitalised words   (1)

Email strategies: labeled (3), quoted (2), standard (1).
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Callable

from rdv_assistant.models.enums import EmailRejection


@dataclass(frozen=True)
class Candidate:
    """A syntactically plausible value and the rank of the strategy that found it."""

    value: str
    strategy: str
    rank: int


# =====================================================================
# Names
# =====================================================================

_NAME_CHARS = r"A-Za-zÀ-ÖØ-öø-ÿ"
_APOSTROPHE = r"['’]"

# Words that end a name captured by the formal/labeled patterns.
_NAME_TERMINATORS = (
    r"et|de|du|des|le|la|les|mon|ma|mes|votre|pour|avec|numéro|numero|"
    r"téléphone|telephone|tel|tél|rdv|rendez-vous|appointment|email|mail|e-mail|"
    r"j|je|mais|car|svp|merci"
)
_NAME_END = (
    rf"(?=\s+(?:{_NAME_TERMINATORS})\b|\s*{_APOSTROPHE}|\s*[.,!?;:]|\s*[+\d@]|\s*$)"
)
_NAME_BODY = rf"([{_NAME_CHARS}][{_NAME_CHARS}\s\-]{{1,49}}?)"

_FORMAL_RE = re.compile(
    rf"(?:je\s+m{_APOSTROPHE}\s*appel+e?|je\s+suis|mon\s+nom\s+(?:est|c{_APOSTROPHE}est)|"
    rf"moi\s+c{_APOSTROPHE}est|my\s+name\s+is)\s+{_NAME_BODY}{_NAME_END}",
    re.IGNORECASE,
)
_LABELED_NAME_RE = re.compile(
    rf"\b(?:nom(?:\s+complet)?|name|prénom|prenom)\s*[:=]\s*{_NAME_BODY}{_NAME_END}",
    re.IGNORECASE,
)
_QUOTED_NAME_RE = re.compile(rf"[\"“«]\s*([{_NAME_CHARS}][{_NAME_CHARS}\s\-]{{1,49}})\s*[\"”»]")
_CAPITALISED_WORD_RE = re.compile(r"[A-ZÀ-ÖØ-Þ][a-zß-öø-ÿ]+(?:-[A-ZÀ-ÖØ-Þ][a-zß-öø-ÿ]+)*")

# Greetings, clinic jargon and function words that are never names.
NAME_STOP_WORDS: frozenset[str] = frozenset({
    "bonjour", "bonsoir", "salut", "salam", "hello", "merci", "oui", "non", "ok",
    "rendez-vous", "rdv", "consultation", "docteur", "dr", "cabinet", "clinique",
    "urgence", "téléphone", "telephone", "numéro", "numero", "aujourd", "demain",
    "après", "apres", "avant", "heure", "heures", "minute", "minutes", "algeria",
    "algérie", "algerie", "alger", "nova", "assistant", "chatbot", "aide", "prendre",
    "voir", "calendrier", "informations", "information", "contact", "email", "mail",
    "je", "j", "moi", "mon", "ma", "mes", "vous", "nous", "il", "elle", "le", "la",
    "les", "un", "une", "des", "et", "ou", "de", "du", "voici", "voila", "voilà",
    "malade", "disponible", "intéressé", "interesse", "intéressée", "nouveau",
    "nouvelle", "patient", "patiente", "désolé", "desole", "là", "ici", "pas",
    "dentiste", "dentaire", "lundi", "mardi", "mercredi", "jeudi", "vendredi",
    "samedi", "dimanche", "matin", "soir", "midi", "svp", "stp", "code",
})

_VOWELS = re.compile(r"[aeiouyàáâãäåæèéêëìíîïòóôõöøùúûüý]", re.IGNORECASE)
_CONSONANTS = re.compile(r"[bcdfghjklmnpqrstvwxzç]", re.IGNORECASE)


def is_plausible_name(name: str) -> bool:
    """Type heuristics shared by all name strategies."""
    normalized = " ".join(name.lower().split())
    if len(normalized) < 2 or len(normalized) > 50:
        return False
    if normalized in NAME_STOP_WORDS:
        return False
    words = normalized.split()
    if words[0] in NAME_STOP_WORDS or all(w in NAME_STOP_WORDS for w in words):
        return False
    if re.search(r"\d", normalized):
        return False
    return bool(_VOWELS.search(normalized)) and bool(_CONSONANTS.search(normalized))


def normalize_name(name: str) -> str:
    """Title-case each word and each hyphenated part: ``jean-paul dupont`` -> ``Jean-Paul Dupont``."""
    words = []
    for word in name.split():
        parts = [p[:1].upper() + p[1:].lower() for p in word.split("-")]
        words.append("-".join(parts))
    return " ".join(words)


def _labeled_names(text: str) -> list[str]:
    return [m.group(1) for m in _LABELED_NAME_RE.finditer(text)]


def _formal_names(text: str) -> list[str]:
    return [m.group(1) for m in _FORMAL_RE.finditer(text)]


def _quoted_names(text: str) -> list[str]:
    return [m.group(1) for m in _QUOTED_NAME_RE.finditer(text)]


def _standalone_names(text: str) -> list[str]:
    # Only a message that is nothing but 1-4 capitalised words counts,
    # once contact details and punctuation are removed.
    remainder = _EMAIL_STANDARD_RE.sub(" ", text)
    remainder = _PHONE_CANDIDATE_RE.sub(" ", remainder)
    remainder = re.sub(r"[.,!?;:]", " ", remainder)
    words = remainder.split()
    if not 1 <= len(words) <= 4:
        return []
    if not all(_CAPITALISED_WORD_RE.fullmatch(w) for w in words):
        return []
    return [" ".join(words)]


class NameStrategy(enum.Enum):
    """Enumerated name-extraction strategies, in priority order.

    Each member holds ``(rank, function)``.
    """

    LABELED = (3, _labeled_names)
    FORMAL = (3, _formal_names)
    QUOTED = (2, _quoted_names)
    STANDALONE = (1, _standalone_names)

    @property
    def rank(self) -> int:
        return self.value[0]

    @property
    def extract(self) -> Callable[[str], list[str]]:
        return self.value[1]


def extract_name_candidates(text: str) -> list[Candidate]:
    """Apply every name strategy in order; deduplicate on the normalised value."""
    found: list[Candidate] = []
    seen: set[str] = set()
    for strategy in NameStrategy:
        for raw in strategy.extract(text or ""):
            raw = raw.strip(" -")
            if not is_plausible_name(raw):
                continue
            value = normalize_name(raw)
            if value in seen:
                continue
            seen.add(value)
            found.append(Candidate(value=value, strategy=strategy.name.lower(), rank=strategy.rank))
    return found


def extract_names(text: str) -> list[str]:
    return [c.value for c in extract_name_candidates(text)]


# =====================================================================
# Emails
# =====================================================================

_EMAIL_ADDR = r"[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}"
_EMAIL_STANDARD_RE = re.compile(rf"(?<![\w.%+\-]){_EMAIL_ADDR}\b")
_EMAIL_QUOTED_RE = re.compile(rf"[\"'“«(<]\s*({_EMAIL_ADDR})\s*[\"'”»)>]")
_EMAIL_LABELED_RE = re.compile(
    rf"\b(?:e-?mail|mail|courriel|adresse\s+(?:e-?mail|mail))\s*[:=]\s*({_EMAIL_ADDR})",
    re.IGNORECASE,
)
# Anything shaped like "x@y", used to report malformed addresses.
_EMAIL_LIKE_RE = re.compile(r"[^\s\"'“”«»()<>,;]+@[^\s\"'“”«»()<>,;]*")

_DOMAIN_LABEL_RE = re.compile(r"[a-z0-9](?:[a-z0-9\-]{0,61}[a-z0-9])?")
_LOCAL_PART_RE = re.compile(r"[a-z0-9._%+\-]+")

# Disposable mailbox providers.
TEMP_EMAIL_DOMAINS: frozenset[str] = frozenset({
    "10minutemail.com", "guerrillamail.com", "mailinator.com",
    "yopmail.com", "tempmail.org", "throwaway.email",
})


def normalize_email(email: str) -> str:
    return email.strip().lower()


def check_email(email: str) -> EmailRejection | None:
    """Return why *email* is unacceptable, or ``None`` if it passes."""
    email = normalize_email(email).rstrip(".")
    if len(email) > 254:
        return EmailRejection.TOO_LONG
    if email.count("@") != 1:
        return EmailRejection.INVALID_FORMAT
    local, domain = email.split("@")
    if not local or len(local) > 64:
        return EmailRejection.TOO_LONG if local else EmailRejection.INVALID_FORMAT
    if not _LOCAL_PART_RE.fullmatch(local):
        return EmailRejection.INVALID_FORMAT
    if local.startswith(".") or local.endswith(".") or ".." in local:
        return EmailRejection.INVALID_FORMAT
    labels = domain.split(".")
    if len(labels) < 2 or not all(_DOMAIN_LABEL_RE.fullmatch(label) for label in labels):
        return EmailRejection.INVALID_FORMAT
    tld = labels[-1]
    if len(tld) < 2 or not tld.isalpha():
        return EmailRejection.INVALID_FORMAT
    if domain in TEMP_EMAIL_DOMAINS:
        return EmailRejection.BLOCKED_DOMAIN
    return None


def _labeled_emails(text: str) -> list[str]:
    return [m.group(1) for m in _EMAIL_LABELED_RE.finditer(text)]


def _quoted_emails(text: str) -> list[str]:
    return [m.group(1) for m in _EMAIL_QUOTED_RE.finditer(text)]


def _standard_emails(text: str) -> list[str]:
    return [m.group(0) for m in _EMAIL_STANDARD_RE.finditer(text)]


class EmailStrategy(enum.Enum):
    LABELED = (3, _labeled_emails)
    QUOTED = (2, _quoted_emails)
    STANDARD = (1, _standard_emails)

    @property
    def rank(self) -> int:
        return self.value[0]

    @property
    def extract(self) -> Callable[[str], list[str]]:
        return self.value[1]


def extract_email_candidates(text: str) -> list[Candidate]:
    """Valid, normalised email candidates in strategy order."""
    found: list[Candidate] = []
    seen: set[str] = set()
    for strategy in EmailStrategy:
        for raw in strategy.extract(text or ""):
            value = normalize_email(raw)
            if value in seen or check_email(value) is not None:
                continue
            seen.add(value)
            found.append(Candidate(value=value, strategy=strategy.name.lower(), rank=strategy.rank))
    return found


def extract_emails(text: str) -> list[str]:
    return [c.value for c in extract_email_candidates(text)]


def email_like_tokens(text: str) -> list[str]:
    """Every ``x@y``-shaped token, valid or not."""
    return [m.group(0).rstrip(".") for m in _EMAIL_LIKE_RE.finditer(text or "")]


def mask_email_like(text: str) -> str:
    """Replace every ``x@y``-shaped token with a space."""
    return _EMAIL_LIKE_RE.sub(" ", text or "")


# =====================================================================
# Phones
# =====================================================================

# 6-15 digits, single separators allowed between digits, optional "+".
_PHONE_CANDIDATE_RE = re.compile(r"(?<![\w+@])(\+?\d(?:[\s.\-]?\(?\d\)?){5,14})(?![\d@])")
# dd.mm.yyyy, dd/mm/yy, dd-mm-yyyy, not part of a longer digit group.
_DATE_RE = re.compile(
    r"(?<![\d.\-/])(?:0?[1-9]|[12]\d|3[01])([./\-])(?:0?[1-9]|1[0-2])\1(?:\d{4}|\d{2})(?!\d|[.\-/]\d)"
)


def extract_phone_candidates(text: str) -> list[str]:
    """Phone-like strings, with e-mail addresses and dates masked out first.

    Candidates are not validated here; see
    :func:`rdv_assistant.phone.normalize_mobile`.
    """
    masked = _DATE_RE.sub(" ", mask_email_like(text))
    found: list[str] = []
    for match in _PHONE_CANDIDATE_RE.finditer(masked):
        value = match.group(1).strip()
        if value not in found:
            found.append(value)
    return found
