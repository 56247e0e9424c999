"""Unit tests for sentence extraction.

Covers boundary detection, the suppression heuristics (abbreviations,
decimals, URLs, file names), code fences, and the incremental buffer.
"""

from __future__ import annotations

from sled_runtime.acp.sentences import SentenceBuffer, extract_sentences

# =============================================================================
# extract_sentences Tests
# =============================================================================


class TestExtractSentences:
    """Tests for extract_sentences."""

    def test_abbreviation_and_decimal_not_split(self) -> None:
        """Neither "Dr." nor "5.5" ends a sentence."""
        result = extract_sentences("Dr. Smith went home. He left at 5.5 miles away.")

        assert result.sentences == ["Dr. Smith went home."]
        assert result.remainder == "He left at 5.5 miles away."

    def test_terminator_at_end_is_not_boundary(self) -> None:
        """Text ending right after a terminator stays in the remainder."""
        result = extract_sentences("All done.")

        assert result.sentences == []
        assert result.remainder == "All done."

    def test_lowercase_continuation_is_not_boundary(self) -> None:
        """A boundary needs a capital, quote or bracket next."""
        result = extract_sentences("Version one. then more text")

        assert result.sentences == []

    def test_multiple_terminators(self) -> None:
        """Question and exclamation marks split too."""
        result = extract_sentences("Ready? Yes! Go now. Then")

        assert result.sentences == ["Ready?", "Yes!", "Go now."]
        assert result.remainder == "Then"

    def test_quote_and_bracket_starts(self) -> None:
        """Quotes and brackets can start the next sentence."""
        result = extract_sentences('First. "Second." (Third.) Fourth')

        assert result.sentences == ["First.", '"Second."', "(Third.)"]
        assert result.remainder == "Fourth"

    def test_initials(self) -> None:
        """Single-letter initials are not boundaries."""
        result = extract_sentences("J. Smith arrived. Then left")

        assert result.sentences == ["J. Smith arrived."]

    def test_multi_dot_abbreviation(self) -> None:
        """U.S.-style abbreviations are not boundaries."""
        result = extract_sentences("The U.S. Army is here. Next")

        assert result.sentences == ["The U.S. Army is here."]

    def test_url_not_split(self) -> None:
        """Periods inside URLs are skipped."""
        result = extract_sentences("Visit www.example.com today. Then rest")

        assert result.sentences == ["Visit www.example.com today."]
        assert result.remainder == "Then rest"

    def test_http_url_not_split(self) -> None:
        """Periods inside http URLs are skipped."""
        result = extract_sentences("See https://docs.Example.org/Guide for help. Thanks")

        assert result.sentences == ["See https://docs.Example.org/Guide for help."]

    def test_file_name_not_split(self) -> None:
        """File names followed by punctuation are not boundaries."""
        result = extract_sentences("Open config.yaml: Then edit it. Done")

        assert result.sentences == ["Open config.yaml: Then edit it."]
        assert result.remainder == "Done"

    def test_ellipsis_followed_by_capital(self) -> None:
        """An ellipsis ends a sentence when a capital follows."""
        result = extract_sentences("Wait... Then go")

        assert result.sentences == ["Wait..."]
        assert result.remainder == "Then go"

    def test_ellipsis_followed_by_lowercase(self) -> None:
        """An ellipsis mid-thought is not a boundary."""
        result = extract_sentences("Hmm... maybe later. Sure")

        assert result.sentences == ["Hmm... maybe later."]

    def test_unclosed_code_fence_defers_everything(self) -> None:
        """Nothing is extracted while a fence is open."""
        text = "Run this. ```\nprint('a'). Then"
        result = extract_sentences(text)

        assert result.sentences == []
        assert result.remainder == text

    def test_closed_code_fence_ignored(self) -> None:
        """Terminators inside a closed fence are not boundaries."""
        result = extract_sentences("Look at ```a. B``` this one. Done")

        assert len(result.sentences) == 1
        assert "```" not in result.sentences[0]
        assert result.sentences[0].endswith("this one.")
        assert result.remainder == "Done"

    def test_whitespace_collapsed_where_fence_removed(self) -> None:
        """A removed fence leaves a single space in the sentence."""
        result = extract_sentences("Look at ```\ncode\n``` now. Next one")

        assert result.sentences == ["Look at now."]
        assert result.remainder == "Next one"

    def test_newlines_inside_sentence_collapsed(self) -> None:
        """Line breaks within a sentence become single spaces."""
        result = extract_sentences("First line\n  continues here. Second")

        assert result.sentences == ["First line continues here."]

    def test_empty_text(self) -> None:
        """Blank text yields nothing."""
        assert extract_sentences("").sentences == []
        assert extract_sentences("   ").sentences == []


# =============================================================================
# SentenceBuffer Tests
# =============================================================================


class TestSentenceBuffer:
    """Tests for the incremental buffer."""

    def test_sentences_across_chunks(self) -> None:
        """A boundary split over two chunks is found once."""
        buffer = SentenceBuffer()

        assert buffer.add("Hello world") == []
        assert buffer.add(". How") == ["Hello world."]
        assert buffer.add(" are you?") == []
        assert buffer.flush() == "How are you?"

    def test_whitespace_between_chunks_preserved(self) -> None:
        """The space after a boundary is kept for the next sentence check."""
        buffer = SentenceBuffer()

        assert buffer.add("One.") == []
        assert buffer.add(" Two") == ["One."]
        assert buffer.add(" three. Four") == ["Two three."]

    def test_sentences_never_repeated(self) -> None:
        """Each sentence is emitted exactly once."""
        buffer = SentenceBuffer()
        emitted: list[str] = []

        for chunk in ["Dr. Smith went ", "home. He ", "left. ", "The end"]:
            emitted.extend(buffer.add(chunk))
        remaining = buffer.flush()

        assert emitted == ["Dr. Smith went home.", "He left."]
        assert remaining == "The end"
        assert buffer.sentences_sent == 3

    def test_flush_collapses_whitespace(self) -> None:
        """Flushed text has runs of whitespace collapsed."""
        buffer = SentenceBuffer()
        buffer.add("Trailing\n\n  words   here")

        assert buffer.flush() == "Trailing words here"

    def test_flush_empty(self) -> None:
        """Flushing an empty buffer yields None."""
        buffer = SentenceBuffer()
        buffer.add("Done. ")

        assert buffer.flush() == "Done."
        assert buffer.flush() is None
