"""Tests for pull request change resolution."""

import pytest

from storytree.core.errors import BadRequestError
from storytree.models import PRType
from storytree.services.diff_engine import diff_stats, resolve_changes, unified_diff

ORIGINAL = "The night was dark.\nA wolf howled.\nThe end."
PROPOSED = "The night was dark.\nA dragon roared.\nThe end.\nOr was it?"


def test_new_chapter_carries_only_proposed_text():
    changes = resolve_changes(PRType.NEW_CHAPTER, None, "Fresh start.")
    assert changes.proposed == "Fresh start."
    assert changes.original is None
    assert changes.diff is None
    assert changes.line_count == 0


def test_edit_chapter_counts_lines():
    changes = resolve_changes(PRType.EDIT_CHAPTER, ORIGINAL, PROPOSED)
    assert changes.original == ORIGINAL
    assert changes.proposed == PROPOSED
    assert changes.additions_count == 2
    assert changes.deletions_count == 1
    assert changes.unchanged_count == 2
    assert changes.line_count == 5


def test_edit_chapter_diff_is_unified():
    lines = unified_diff(ORIGINAL, PROPOSED).splitlines()
    assert lines[0] == "--- chapter\toriginal"
    assert lines[1] == "+++ chapter\tproposed"
    assert lines[2].startswith("@@")
    assert "-A wolf howled." in lines
    assert "+A dragon roared." in lines
    assert "+Or was it?" in lines


def test_line_count_is_sum_of_classes():
    stats = diff_stats("a\nb\nc\nd", "b\nc\ne\nf\ng")
    assert stats.line_count == stats.additions_count + stats.deletions_count + stats.unchanged_count
    assert stats.unchanged_count == 2


def test_resolution_is_deterministic():
    first = resolve_changes(PRType.EDIT_CHAPTER, ORIGINAL, PROPOSED)
    second = resolve_changes(PRType.EDIT_CHAPTER, ORIGINAL, PROPOSED)
    assert first == second


def test_identical_text_has_empty_diff():
    changes = resolve_changes("edit_chapter", ORIGINAL, ORIGINAL)
    assert changes.diff == ""
    assert changes.additions_count == changes.deletions_count == 0
    assert changes.unchanged_count == 3


def test_delete_chapter_keeps_original():
    changes = resolve_changes(PRType.DELETE_CHAPTER, ORIGINAL, "ignored")
    assert changes.original == ORIGINAL
    assert changes.proposed == ""


def test_unknown_type_is_bad_request():
    with pytest.raises(BadRequestError) as exc_info:
        resolve_changes("rename_chapter", ORIGINAL, PROPOSED)
    assert exc_info.value.code == "INVALID_INPUT"
