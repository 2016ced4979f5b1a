"""Unit tests for KeywordMatcher."""

from unittest.mock import patch

import pytest

from prima.core.exceptions import KeywordConfigError
from prima.models import ConversationContext
from prima.services.keyword_matcher import MAX_TOKENS, Intent, KeywordMatcher, KeywordSet


class TestVerificationMatching:
    """Tests for verification replies."""

    @pytest.mark.parametrize("text", ["YA", "ya", "  Iya  ", "yes", "setuju", "boleh"])
    def test_accept_keywords(self, keyword_matcher, text):
        """Test single accept keywords match regardless of case and padding."""
        assert keyword_matcher.match_verification(text) == Intent.ACCEPT

    @pytest.mark.parametrize("text", ["tidak", "TIDAK", "no", "tolak", "gak", "engga"])
    def test_decline_keywords(self, keyword_matcher, text):
        """Test single decline keywords."""
        assert keyword_matcher.match_verification(text) == Intent.DECLINE

    def test_decline_variant_with_extra_token(self, keyword_matcher):
        """Test 'tidak mau' resolves to decline via the 'tidak' token."""
        assert keyword_matcher.match_verification("tidak mau") == Intent.DECLINE

    def test_substring_does_not_match(self, keyword_matcher):
        """Test a word merely containing a keyword is not a match."""
        assert keyword_matcher.match_verification("yayasan") == Intent.INVALID
        assert keyword_matcher.match_verification("nothing") == Intent.INVALID

    def test_too_many_tokens_is_invalid(self, keyword_matcher):
        """Test replies over the token limit are invalid even with a keyword."""
        assert keyword_matcher.match_verification("ya saya mau sekali") == Intent.INVALID
        assert keyword_matcher.match_verification("mungkin nanti ya deh") == Intent.INVALID

    def test_token_limit_boundary(self, keyword_matcher):
        """Test exactly MAX_TOKENS tokens is still matched."""
        text = " ".join(["ya"] + ["mau"] * (MAX_TOKENS - 1))
        assert keyword_matcher.match_verification(text) == Intent.ACCEPT

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    def test_empty_reply_is_invalid(self, keyword_matcher, text):
        """Test empty and whitespace-only replies."""
        assert keyword_matcher.match_verification(text) == Intent.INVALID

    def test_tie_break_first_set_wins(self, keyword_matcher):
        """Test a reply with accept and decline tokens resolves to accept."""
        assert keyword_matcher.match_verification("ya tidak") == Intent.ACCEPT
        assert keyword_matcher.match_verification("tidak ya") == Intent.ACCEPT


class TestConfirmationMatching:
    """Tests for reminder confirmation replies."""

    @pytest.mark.parametrize("text", ["sudah", "SELESAI", "done", "sudah minum"])
    def test_done_keywords(self, keyword_matcher, text):
        """Test done keywords."""
        assert keyword_matcher.match_confirmation(text) == Intent.DONE

    def test_not_yet_keyword(self, keyword_matcher):
        """Test not-yet keyword."""
        assert keyword_matcher.match_confirmation("belum") == Intent.NOT_YET
        assert keyword_matcher.match_confirmation("belum sempat") == Intent.NOT_YET

    def test_bloke_does_not_match_ok(self, keyword_matcher):
        """Test 'bloke' does not match the 'ok' keyword."""
        assert keyword_matcher.match_confirmation("bloke") == Intent.INVALID
        assert keyword_matcher.match_confirmation("ok") == Intent.DONE

    def test_tie_break_done_before_not_yet(self, keyword_matcher):
        """Test done is checked before not-yet."""
        assert keyword_matcher.match_confirmation("belum sudah") == Intent.DONE

    def test_verification_words_do_not_confirm(self, keyword_matcher):
        """Test confirmation uses its own vocabulary only."""
        assert keyword_matcher.match_confirmation("ya") == Intent.INVALID


class TestMatchDispatch:
    """Tests for context dispatch."""

    def test_match_by_context(self, keyword_matcher):
        """Test match() picks the vocabulary of the context."""
        assert keyword_matcher.match("ya", ConversationContext.VERIFICATION) == Intent.ACCEPT
        assert (
            keyword_matcher.match("sudah", ConversationContext.REMINDER_CONFIRMATION)
            == Intent.DONE
        )

    def test_match_without_context_is_invalid(self, keyword_matcher):
        """Test no vocabulary applies to the none context."""
        assert keyword_matcher.match("ya", ConversationContext.NONE) == Intent.INVALID


class TestKeywordSet:
    """Tests for keyword set validation."""

    def test_overlapping_sets_rejected(self):
        """Test a keyword in both sets raises KeywordConfigError."""
        with pytest.raises(KeywordConfigError, match="both"):
            KeywordSet.build(["ya", "ok"], ["tidak", "OK"], Intent.ACCEPT, Intent.DECLINE)

    def test_empty_set_rejected(self):
        """Test an empty set raises KeywordConfigError."""
        with pytest.raises(KeywordConfigError):
            KeywordSet.build([], ["belum"], Intent.DONE, Intent.NOT_YET)

    def test_multi_word_keyword_rejected(self):
        """Test keywords must be single tokens."""
        with pytest.raises(KeywordConfigError):
            KeywordSet.build(["sudah minum"], ["belum"], Intent.DONE, Intent.NOT_YET)

    def test_keywords_are_normalized(self):
        """Test keywords are lowercased and stripped."""
        keywords = KeywordSet.build([" YA "], ["Tidak"], Intent.ACCEPT, Intent.DECLINE)
        assert keywords.positive == frozenset({"ya"})
        assert keywords.negative == frozenset({"tidak"})

    def test_from_settings_fails_on_overlap(self):
        """Test misconfigured settings fail when the matcher is built."""
        with patch("prima.services.keyword_matcher.settings") as mock_settings:
            mock_settings.VERIFICATION_ACCEPT_KEYWORDS = ["ya"]
            mock_settings.VERIFICATION_DECLINE_KEYWORDS = ["ya", "tidak"]
            mock_settings.CONFIRMATION_DONE_KEYWORDS = ["sudah"]
            mock_settings.CONFIRMATION_NOT_YET_KEYWORDS = ["belum"]

            with pytest.raises(KeywordConfigError):
                KeywordMatcher.from_settings()

    def test_from_settings_defaults(self):
        """Test the default configuration builds a working matcher."""
        matcher = KeywordMatcher.from_settings()
        assert matcher.match_verification("iya") == Intent.ACCEPT
        assert matcher.match_confirmation("belum") == Intent.NOT_YET
