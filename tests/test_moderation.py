"""
Content moderation filter tests.

Tests cover:
  - clean text
  - slurs: multi-character obfuscation, slurs inside other words, short
    terms matched as whole words, strict term set
  - spam heuristics and severity escalation
  - profanity thresholds (warn vs block)
  - long text and troll patterns (informational only)
  - validate_form_content: rate limiter first, answer shapes, errors vs warnings
"""

from datetime import datetime, timedelta, timezone

from deptportal.services.moderation import (
    WORD_COLLIDING_TERMS,
    ContentModerator,
    Severity,
    analyze_text,
    compile_term,
    init_moderation,
)
from deptportal.services.submission_limiter import SubmissionRateLimiter


# ═══════════════════════════════════════════════════════════════
# analyze_text
# ═══════════════════════════════════════════════════════════════

class TestAnalyzeText:

    def test_clean_text(self):
        result = analyze_text("I have three years of patrol experience.")
        assert result.is_clean is True
        assert result.issues == []
        assert result.severity is Severity.LOW

    def test_empty_and_non_text_are_clean(self):
        assert analyze_text("").is_clean is True
        assert analyze_text(None).is_clean is True

    def test_slur_is_critical(self):
        result = analyze_text("you are a faggot")
        assert result.is_clean is False
        assert result.severity is Severity.CRITICAL
        assert "Contains offensive slurs or derogatory language" in result.blocked_reasons

    def test_obfuscated_slur_is_caught(self):
        assert analyze_text("what a f@ggot").severity is Severity.CRITICAL
        assert analyze_text("RET4RD").severity is Severity.CRITICAL

    def test_multi_character_obfuscation_is_caught(self):
        assert analyze_text("you n!!gger").is_clean is False
        assert analyze_text("what a f@@ggot").severity is Severity.CRITICAL
        assert analyze_text("sp@$stic").is_clean is False

    def test_dropped_vowel_is_caught(self):
        assert analyze_text("ngga").severity is Severity.CRITICAL

    def test_slur_inside_another_word_is_caught(self):
        assert analyze_text("lolfaggotlol").is_clean is False
        assert analyze_text("xxretardxx").severity is Severity.CRITICAL

    def test_short_term_inside_longer_word_is_not_flagged(self):
        # "skiker" contains "kike" only as a substring
        assert analyze_text("the skiker went downhill").is_clean is True
        assert analyze_text("sign the guestbook").is_clean is True

    def test_character_run_is_spam(self):
        result = analyze_text("a" + "!" * 25)
        assert result.is_clean is False
        assert result.severity is Severity.HIGH
        assert "Content appears to be spam" in result.blocked_reasons

    def test_capitals_run_is_spam(self):
        result = analyze_text("PLEASEACCEPTMYAPPLICATIONNOW")
        assert result.severity is Severity.HIGH

    def test_promotional_phrase_is_spam(self):
        result = analyze_text("Buy cheap gold now at my shop")
        assert result.is_clean is False

    def test_spam_never_downgrades_critical(self):
        result = analyze_text("faggot " + "!" * 25)
        assert result.severity is Severity.CRITICAL
        assert len(result.blocked_reasons) == 2

    def test_profanity_warning(self):
        text = " ".join(["damn"] * 6)
        result = analyze_text(text)
        assert result.is_clean is True
        assert result.severity is Severity.MEDIUM
        assert result.issues

    def test_profanity_five_is_fine(self):
        result = analyze_text(" ".join(["damn"] * 5))
        assert result.issues == []

    def test_profanity_block(self):
        text = " ".join(["damn", "crap"] * 6)
        result = analyze_text(text)
        assert result.is_clean is False
        assert result.severity is Severity.HIGH
        assert "Extreme excessive use of profanity" in result.blocked_reasons

    def test_long_text_is_informational(self):
        text = " ".join(f"line{i}" for i in range(2000))
        assert len(text) > 10_000
        result = analyze_text(text)
        assert result.is_clean is True
        assert result.severity is Severity.MEDIUM
        assert "Extremely long text content" in result.issues

    def test_troll_pattern_is_informational(self):
        result = analyze_text("lorem ipsum dolor sit amet")
        assert result.is_clean is True
        assert result.severity is Severity.MEDIUM


class TestCompileTerm:

    def test_long_term_wildcard_matches_any_run(self):
        pattern = compile_term("w*tback")
        assert pattern.search("wtback")
        assert pattern.search("wetback")
        assert pattern.search("w3#!tback")
        assert pattern.search("thewetbacks")
        assert not pattern.search("w tback")

    def test_short_term_wildcard_is_bounded(self):
        pattern = compile_term("b*d")
        assert pattern.search("bd")
        assert pattern.search("b#d")
        assert pattern.search("baad")
        assert not pattern.search("baaad")
        assert not pattern.search("abad")

    def test_short_term_plural_allowed(self):
        assert compile_term("b*d").search("bads")

    def test_word_colliding_terms_need_strict(self):
        assert analyze_text("the duke saw a chunk of the spec on the flag").is_clean is True
        strict = ContentModerator(strict=True)
        assert strict.analyze_text("ch1nk").severity is Severity.CRITICAL
        assert all(strict.analyze_text(term.replace("*", "i")).is_clean is False
                   for term in WORD_COLLIDING_TERMS)

    def test_strict_terms_from_config(self, app, monkeypatch):
        monkeypatch.setitem(app.extensions, "moderator", app.extensions["moderator"])
        monkeypatch.setitem(app.config, "MODERATION_STRICT_TERMS", True)
        assert init_moderation(app).analyze_text("d1ke").is_clean is False

    def test_extra_terms_are_used(self):
        moderator = ContentModerator(extra_terms=["fr*gger"])
        assert moderator.analyze_text("such a frogger").severity is Severity.CRITICAL
        assert analyze_text("such a frogger").is_clean is True


# ═══════════════════════════════════════════════════════════════
# validate_form_content
# ═══════════════════════════════════════════════════════════════

class TestValidateFormContent:

    def test_clean_answers(self):
        answers = [
            {"question_id": "q1", "answer": "Because I enjoy helping people."},
            {"question_id": "q2", "answer": True},
            {"question_id": "q3", "answer": ["Patrol", "Traffic"]},
        ]
        result = ContentModerator().validate_form_content(answers, "u1", 1)
        assert result.is_valid is True
        assert result.errors == []
        assert result.warnings == []

    def test_critical_answer_names_question(self):
        answers = [{"question_id": "q7", "answer": "faggot"}]
        result = ContentModerator().validate_form_content(answers, "u1", 1)
        assert result.is_valid is False
        assert result.errors == ["Question q7: Contains offensive slurs or derogatory language"]

    def test_high_answer_is_error(self):
        answers = [{"question_id": "q1", "answer": "!" * 30}]
        result = ContentModerator().validate_form_content(answers, "u1", 1)
        assert result.is_valid is False
        assert result.errors[0].startswith("Question q1:")

    def test_medium_answer_is_warning_only(self):
        answers = [{"question_id": "q1", "answer": "placeholder"}]
        result = ContentModerator().validate_form_content(answers, "u1", 1)
        assert result.is_valid is True
        assert result.warnings == ["Question q1: Contains potential troll/test content"]

    def test_obfuscated_answer_blocks_submission(self):
        answers = [{"question_id": "q1", "answer": "what a f@@ggot"}]
        result = ContentModerator().validate_form_content(answers, "u", 1)
        assert result.is_valid is False
        assert result.errors == ["Question q1: Contains offensive slurs or derogatory language"]

    def test_list_answers_are_joined(self):
        answers = [{"question_id": "q1", "answer": ["fine", "faggot"]}]
        result = ContentModerator().validate_form_content(answers, "u1", 1)
        assert result.is_valid is False

    def test_rate_limit_error_comes_first(self):
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        limiter = SubmissionRateLimiter(clock=lambda: now)
        moderator = ContentModerator()
        assert moderator.validate_form_content([], "u1", 1, limiter=limiter).is_valid is True

        answers = [{"question_id": "q1", "answer": "faggot"}]
        result = moderator.validate_form_content(answers, "u1", 1, limiter=limiter)
        assert result.is_valid is False
        assert result.errors[0].startswith("Submissions too frequent")
        assert len(result.errors) == 2

    def test_limiter_is_per_form(self):
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        limiter = SubmissionRateLimiter(clock=lambda: now)
        moderator = ContentModerator()
        assert moderator.validate_form_content([], "u1", 1, limiter=limiter).is_valid
        assert moderator.validate_form_content([], "u1", 2, limiter=limiter).is_valid
        assert moderator.validate_form_content([], "u2", 1, limiter=limiter).is_valid
        limiter.clock = lambda: now + timedelta(seconds=5)
        assert not moderator.validate_form_content([], "u1", 1, limiter=limiter).is_valid
