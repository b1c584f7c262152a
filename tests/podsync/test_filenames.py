"""Tests for filename sanitation and episode filename construction."""

import pytest

from podsync.filenames import (
    build_episode_filename,
    sanitize_filename,
    sanitize_full_filename,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    "name,expected",
    [
        ("My:Show", "My-Show"),
        ('a*b?c"d<e>f|g/h', "a-b-c-d-e-f-g-h"),
        ("what?", "what"),
        ("::leading and trailing::", "leading and trailing"),
        ("many::::colons", "many-colons"),
        ("tab\there\x00", "tabhere"),
        ("Épisode 1 · café", "Épisode 1 · café"),
        ("", ""),
    ],
)
def test_sanitize_filename(name: str, expected: str):
    """Restricted characters become single hyphens and ends are trimmed."""
    assert sanitize_filename(name) == expected


@pytest.mark.unit
def test_sanitize_filename_does_not_truncate():
    """Long names are kept whole."""
    name = "x" * 500
    assert sanitize_filename(name) == name


@pytest.mark.unit
def test_sanitize_full_filename_keeps_extension_dot():
    """The dot before the extension survives; only the ends are trimmed."""
    assert sanitize_full_filename("001-My:Show?.mp3") == "001-My-Show-.mp3"


@pytest.mark.unit
@pytest.mark.parametrize(
    "sequence_number,title,ext,expected",
    [
        (1, "Pilot", "mp3", "001-Pilot.mp3"),
        (42, "Q&A: Listener Mail", "mp3", "042-Q&A- Listener Mail.mp3"),
        (999, "Last/First", "m4a", "999-Last-First.m4a"),
        (1000, "Milestone", "mp3", "1000-Milestone.mp3"),
        (7, "Why?", "mp3", "007-Why.mp3"),
    ],
)
def test_build_episode_filename(
    sequence_number: int, title: str, ext: str, expected: str
):
    """Sequence numbers are zero-padded to three digits and titles sanitized."""
    assert build_episode_filename(sequence_number, title, ext) == expected
