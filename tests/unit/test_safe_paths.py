"""Unit tests for pagescribe/core/safe_paths.py."""

from __future__ import annotations

import pytest

from pagescribe.core.safe_paths import numbered_filename, sanitize_filename


class TestSanitizeFilename:

    @pytest.mark.unit
    def test_title_with_punctuation(self):
        assert sanitize_filename("Chapter 1: The Beginning") == "chapter_1_the_beginning"

    @pytest.mark.unit
    def test_unsafe_characters_replaced_and_collapsed(self):
        assert sanitize_filename('a/b\\c*d?e"f<g>h|i') == "a_b_c_d_e_f_g_h_i"
        assert sanitize_filename("  spaced   out  ") == "spaced_out"

    @pytest.mark.unit
    def test_empty_result_defaults(self):
        assert sanitize_filename("///") == "document"
        assert sanitize_filename("") == "document"

    @pytest.mark.unit
    def test_length_capped(self):
        assert len(sanitize_filename("x" * 200)) == 50


class TestNumberedFilename:

    @pytest.mark.unit
    def test_index_prefix(self):
        assert numbered_filename("Intro", 3) == "03_intro.md"

    @pytest.mark.unit
    def test_index_zero_has_no_prefix(self):
        assert numbered_filename("Document", 0) == "document.md"
