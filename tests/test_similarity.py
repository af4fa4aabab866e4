"""
Unit tests for edit distance and similarity scoring.
"""

import pytest

from maintdash.similarity import distance, similarity


# ── Tests: distance ──────────────────────────────────────────────────

def test_distance_identical_is_zero():
    assert distance("MNT001", "MNT001") == 0


def test_distance_single_edits():
    assert distance("MECHANICAL", "MECANICAL") == 1      # deletion
    assert distance("MAINTENANCE", "MAINTENENCE") == 1   # substitution
    assert distance("ELEC", "ELECT") == 1                # insertion


def test_distance_classic_example():
    assert distance("kitten", "sitting") == 3


def test_distance_empty_side_is_other_length():
    assert distance("", "HVAC") == 4
    assert distance("ROOF", "") == 4
    assert distance("", "") == 0


def test_distance_is_symmetric():
    assert distance("PLUMB002", "PLUMMB02") == distance("PLUMMB02", "PLUMB002")


def test_distance_is_case_sensitive():
    assert distance("mnt", "MNT") == 3


# ── Tests: similarity ────────────────────────────────────────────────

def test_similarity_both_empty_is_one():
    assert similarity("", "") == 1.0


def test_similarity_one_empty_is_zero():
    assert similarity("", "ABC") == 0.0


def test_similarity_uses_longest_length():
    assert similarity("MECANICAL", "MECHANICAL") == pytest.approx(0.9)


def test_similarity_in_unit_interval():
    for a, b in [("A", "B"), ("ABC", "XYZW"), ("ELEC001", "ELEC001")]:
        assert 0.0 <= similarity(a, b) <= 1.0
