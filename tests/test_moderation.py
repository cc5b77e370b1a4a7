import pytest

from app.core.exceptions import ContentBlocked
from app.services.moderation import BLOCKED_REASON, ModerationFilter, default_filter, moderate


class TestModeration:
    """Moderation filter tests."""

    def test_clean_text_passes(self):
        """Test that ordinary text is accepted."""
        result = moderate("hello world")

        assert result.clean
        assert result.reason is None

    def test_empty_text_is_clean(self):
        assert moderate("").clean

    def test_denylisted_word_is_blocked(self):
        """Test that a denylisted word is rejected with the standard reason."""
        result = moderate("You are such an idiot")

        assert not result.clean
        assert result.reason == BLOCKED_REASON

    def test_matching_is_case_insensitive(self):
        assert not moderate("What an IDIOT").clean

    def test_punctuation_does_not_hide_words(self):
        """Test that punctuation around a word is treated as a separator."""
        assert not moderate("...moron!!!").clean
        assert not moderate("(stupid)").clean

    def test_multi_word_entry(self):
        assert not moderate("just kill yourself").clean

    def test_match_is_substring_based(self):
        """Test that entries match inside longer words too."""
        assert not moderate("that was crappy").clean

    @pytest.mark.parametrize("text", ["I f**k you", "f**k this", "what the f*ck", "sh!t happens", "b*tch"])
    def test_masked_spellings_are_blocked(self, text):
        """Test that masked variants of single-word entries are caught."""
        assert not moderate(text).clean

    def test_fully_masked_token_is_clean(self):
        """Test that a token made only of mask characters is not a match."""
        assert moderate("rated ****").clean

    def test_masked_token_with_wrong_letters_is_clean(self):
        assert moderate("f**m").clean

    def test_custom_denylist(self):
        """Test a filter built with its own denylist."""
        word_filter = ModerationFilter(["Banana", "  "])

        assert word_filter.denylist == ["banana"]
        assert not word_filter.moderate("I like BANANAS").clean
        assert word_filter.moderate("I like apples").clean

    def test_ensure_clean_raises(self):
        with pytest.raises(ContentBlocked) as exc_info:
            default_filter.ensure_clean("you moron")

        assert exc_info.value.reason == BLOCKED_REASON
        assert exc_info.value.status_code == 422

    def test_ensure_clean_accepts_clean_text(self):
        default_filter.ensure_clean("Nice to meet you")
