"""
Unit tests for lab command evaluation.

Purpose
-------
Verify sanitizing, normalization and matching of free-text lab commands.

Test Coverage
-------------
- Trimming, length cap and markup stripping
- Script/style blocks removed with their content
- Markup cut open by the length cap does not survive
- Empty and non-text submissions rejected
- Case-insensitive exact matching; no fuzzy matching
"""

import pytest

from src.modules.lab.evaluation import (
    is_accepted,
    normalize_accepted,
    normalize_command,
    sanitize_command,
)
from src.modules.shared.exceptions import ValidationError


@pytest.mark.unit
class TestSanitizeCommand:
    """Test the storable form of submitted commands."""

    def test_trims_whitespace(self):
        assert sanitize_command("   kubectl get pods \n") == "kubectl get pods"

    def test_script_block_is_removed_with_content(self):
        assert sanitize_command("<script>alert(1)</script>ls -la") == "ls -la"

    def test_style_block_is_removed_case_insensitively(self):
        assert sanitize_command("<STYLE type='x'>p{}</STYLE>whoami") == "whoami"

    def test_plain_tags_are_stripped(self):
        assert sanitize_command("<b>pwd</b>") == "pwd"

    def test_truncates_to_max_length(self):
        command = sanitize_command("a" * 600)
        assert len(command) == 500

    def test_custom_max_length(self):
        assert sanitize_command("abcdef", max_length=3) == "abc"

    def test_tag_cut_by_length_cap_is_dropped(self):
        assert sanitize_command("ls -la <script>alert(1)", max_length=11) == "ls -la"

    def test_block_cut_by_length_cap_drops_its_content(self):
        command = sanitize_command("whoami<script>alert(document.cookie)</script>", max_length=25)

        assert command == "whoami"

    @pytest.mark.parametrize("raw", ["pwd <img src=x onerror=alert(1)", "pwd </b", "pwd <STYLE>p{"])
    def test_unclosed_trailing_markup_is_dropped(self, raw):
        assert sanitize_command(raw) == "pwd"

    def test_shell_redirection_is_kept(self):
        assert sanitize_command("sort < names.txt") == "sort < names.txt"

    @pytest.mark.parametrize("raw", ["", "   ", "<br>", "<script>x</script>"])
    def test_empty_after_sanitizing_is_rejected(self, raw):
        with pytest.raises(ValidationError) as exc_info:
            sanitize_command(raw)
        assert exc_info.value.field == "command"

    def test_non_text_is_rejected(self):
        with pytest.raises(ValidationError):
            sanitize_command(42)


@pytest.mark.unit
class TestMatching:
    """Test case-insensitive exact matching."""

    def test_normalize_lowercases(self):
        assert normalize_command("Deploy PRODUCTION") == "deploy production"

    def test_upper_case_submission_matches(self):
        assert is_accepted("DEPLOY PRODUCTION", ["deploy production"])

    def test_accepted_commands_are_trimmed_and_lowercased(self):
        assert is_accepted("git status", ["  Git Status  "])

    def test_any_accepted_command_matches(self):
        assert is_accepted("ls", ["dir", "ls"])

    def test_no_fuzzy_matching(self):
        assert not is_accepted("deploy prod", ["deploy production"])
        assert not is_accepted("deploy  production", ["deploy production"])

    def test_blank_accepted_entries_are_dropped(self):
        assert normalize_accepted(["", "  ", "ls"]) == frozenset({"ls"})

    def test_non_text_accepted_entry_is_rejected(self):
        with pytest.raises(ValidationError):
            normalize_accepted(["ls", None])
