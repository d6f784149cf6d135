"""
Department Portal
Content moderation filter for form submissions.

Heuristics run over each text answer:
    - slur / derogatory terms with an obfuscation-tolerant wildcard
      (``*`` in a term matches any run of letters, digits or symbols)
                                                               → critical, blocks
    - spam patterns (character runs, repeated phrases, caps, symbol runs,
      promotional phrasing)                                    → high, blocks
    - profanity count: >5 → medium warning, >10 → high, blocks
    - very long text, troll/placeholder patterns              → medium, informational

Severity only escalates: low < medium < high < critical.

Usage:
    from deptportal.services.moderation import analyze_text, get_moderator

    analysis = analyze_text("some answer")
    result = get_moderator().validate_form_content(answers, user_id, form_id, limiter)
"""

from __future__ import annotations

import enum
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from flask import Flask, current_app

logger = logging.getLogger(__name__)


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def escalate(self, other: "Severity") -> "Severity":
        return other if other.rank > self.rank else self


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


# ── Pattern lists ────────────────────────────────────────────────────────────

DEFAULT_SLUR_TERMS = (
    # racial
    "n*gger", "n*gga", "w*tback", "k*ke", "g*ok", "r*ghead",
    # homophobic / transphobic
    "f*ggot", "tr*nny",
    # ableist
    "ret*rd", "ret*rded", "sp*stic", "cr*pple",
)

# Each collides with everyday words ("chunk", "spec", "flag", "duke");
# enabled by MODERATION_STRICT_TERMS.
WORD_COLLIDING_TERMS = ("ch*nk", "sp*c", "f*g", "d*ke")

_OBFUSCATION_CLASS = "[a-z0-9*@#$%^&!]"
# terms with this few literal letters only match as whole words
SHORT_TERM_LETTERS = 3

SPAM_PATTERNS = (
    re.compile(r"(.)\1{20,}"),
    re.compile(r"^(.{1,10})\1{20,}$"),
    re.compile(r"[A-Z]{20,}"),
    re.compile(r"[!@#$%^&*()]{10,}"),
    re.compile(
        r"\b(buy|sell|cheap|free|click|visit|www\.|http|\.com|\.net|\.org)\b.*\b(now|today|here|link)\b",
        re.IGNORECASE,
    ),
)

PROFANITY_WORDS = ("fuck", "shit", "damn", "hell", "ass", "bitch", "bastard", "crap", "piss")
_PROFANITY_RE = re.compile(r"\b(?:" + "|".join(PROFANITY_WORDS) + r")\b", re.IGNORECASE)

TROLL_PATTERNS = (
    re.compile(r"lorem ipsum", re.IGNORECASE),
    re.compile(r"test{3,}", re.IGNORECASE),
    re.compile(r"a{20,}", re.IGNORECASE),
    re.compile(r"1{20,}"),
    re.compile(r"copy.*paste", re.IGNORECASE),
    re.compile(r"placeholder", re.IGNORECASE),
)

PROFANITY_WARN_THRESHOLD = 5
PROFANITY_BLOCK_THRESHOLD = 10
MAX_TEXT_LENGTH = 10_000


def compile_term(term: str) -> re.Pattern:
    """Compile a configured term.

    ``*`` matches any run of letters, digits or symbols, and the term may sit
    inside a longer word.  Short terms (``SHORT_TERM_LETTERS`` or fewer
    literal letters) must stand alone and their wildcard spans at most two
    characters, otherwise "g*ok" would flag "guestbook".
    """
    parts = [re.escape(part) for part in term.lower().split("*")]
    if len(term.replace("*", "")) > SHORT_TERM_LETTERS:
        return re.compile(f"{_OBFUSCATION_CLASS}*".join(parts), re.IGNORECASE)
    body = f"{_OBFUSCATION_CLASS}{{0,2}}".join(parts)
    return re.compile(rf"(?<![a-z0-9]){body}s?(?![a-z0-9])", re.IGNORECASE)


# ── Results ──────────────────────────────────────────────────────────────────


@dataclass
class ContentAnalysis:
    is_clean: bool = True
    issues: list[str] = field(default_factory=list)
    severity: Severity = Severity.LOW
    blocked_reasons: list[str] = field(default_factory=list)


@dataclass
class ContentValidation:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


# ── Moderator ────────────────────────────────────────────────────────────────


class ContentModerator:
    """Stateless analyser over a fixed set of compiled slur patterns."""

    def __init__(self, extra_terms: Iterable[str] = (), strict: bool = False) -> None:
        terms = list(DEFAULT_SLUR_TERMS)
        if strict:
            terms += WORD_COLLIDING_TERMS
        terms += [t.strip() for t in extra_terms if t and t.strip()]
        self.slur_patterns = [compile_term(t) for t in terms]

    def analyze_text(self, text) -> ContentAnalysis:
        if not text or not isinstance(text, str):
            return ContentAnalysis()

        analysis = ContentAnalysis()
        normalized = text.lower().strip()

        slur_hits = sum(1 for p in self.slur_patterns if p.search(normalized))
        if slur_hits:
            analysis.issues.append(f"Contains {slur_hits} potential slur(s) or derogatory term(s)")
            analysis.blocked_reasons.append("Contains offensive slurs or derogatory language")
            analysis.severity = Severity.CRITICAL

        # spam runs on the raw text so the capitals check still sees case
        if any(p.search(text) for p in SPAM_PATTERNS):
            analysis.issues.append("Contains spam-like patterns")
            analysis.blocked_reasons.append("Content appears to be spam")
            analysis.severity = analysis.severity.escalate(Severity.HIGH)

        profanity = len(_PROFANITY_RE.findall(text))
        if profanity > PROFANITY_BLOCK_THRESHOLD:
            analysis.issues.append(f"Extreme profanity detected ({profanity} instances)")
            analysis.blocked_reasons.append("Extreme excessive use of profanity")
            analysis.severity = analysis.severity.escalate(Severity.HIGH)
        elif profanity > PROFANITY_WARN_THRESHOLD:
            analysis.issues.append(f"Excessive profanity detected ({profanity} instances)")
            analysis.severity = analysis.severity.escalate(Severity.MEDIUM)

        if len(text) > MAX_TEXT_LENGTH:
            analysis.issues.append("Extremely long text content")
            analysis.severity = analysis.severity.escalate(Severity.MEDIUM)

        if any(p.search(text) for p in TROLL_PATTERNS):
            analysis.issues.append("Contains potential troll/test content")
            analysis.severity = analysis.severity.escalate(Severity.MEDIUM)

        analysis.is_clean = not analysis.blocked_reasons
        return analysis

    def validate_form_content(self, answers, user_id: str, form_id, limiter=None) -> ContentValidation:
        """Rate limit first, then analyse every text answer.

        ``answers`` is a list of ``{"question_id", "answer"}`` dicts.  Booleans
        and other non-text values are skipped; lists are joined with spaces.
        """
        errors: list[str] = []
        warnings: list[str] = []
        critical = 0

        if limiter is not None:
            allowed, reason = limiter.check(user_id, form_id)
            if not allowed:
                errors.append(reason or "Rate limit exceeded")

        for item in answers or []:
            value = item.get("answer")
            if isinstance(value, str):
                text = value
            elif isinstance(value, list):
                text = " ".join(str(v) for v in value if not isinstance(v, bool))
            else:
                continue

            analysis = self.analyze_text(text)
            if not analysis.issues:
                continue

            question_id = item.get("question_id")
            if analysis.severity is Severity.CRITICAL:
                critical += 1
                errors.append(f"Question {question_id}: {', '.join(analysis.blocked_reasons)}")
            elif analysis.severity is Severity.HIGH:
                errors.append(f"Question {question_id}: {', '.join(analysis.issues)}")
            else:
                warnings.append(f"Question {question_id}: {', '.join(analysis.issues)}")

        if critical:
            logger.warning(
                "Blocked submission with critical content",
                extra={"user_id": user_id, "form_id": form_id, "critical_answers": critical},
            )

        return ContentValidation(is_valid=not errors and critical == 0, errors=errors, warnings=warnings)


_default_moderator = ContentModerator()


def analyze_text(text) -> ContentAnalysis:
    """Analyse one text with the built-in term list."""
    return _default_moderator.analyze_text(text)


def init_moderation(app: Flask) -> ContentModerator:
    moderator = ContentModerator(
        app.config.get("MODERATION_EXTRA_TERMS") or (),
        strict=bool(app.config.get("MODERATION_STRICT_TERMS")),
    )
    app.extensions["moderator"] = moderator
    return moderator


def get_moderator() -> ContentModerator:
    return current_app.extensions.get("moderator", _default_moderator)
