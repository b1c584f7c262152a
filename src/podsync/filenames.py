"""Filename sanitation for files uploaded to remote storage.

Android and FAT32 reject ``: * ? " < > | /``; those are replaced with hyphens
so synced files stay readable on every device.
"""

import re

_RESTRICTED_CHARS = re.compile(r'[:*?"<>|/]')
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_HYPHEN_RUNS = re.compile(r"-{2,}")

SEQUENCE_PAD_WIDTH = 3


def sanitize_filename(name: str) -> str:
    """Make ``name`` safe for restrictive filesystems.

    Restricted characters become hyphens, control characters are removed,
    runs of hyphens collapse to one, and leading/trailing hyphens are trimmed.
    Unicode text is kept and nothing is truncated.
    """
    if not name:
        return name
    cleaned = _CONTROL_CHARS.sub("", name)
    cleaned = _RESTRICTED_CHARS.sub("-", cleaned)
    cleaned = _HYPHEN_RUNS.sub("-", cleaned)
    return cleaned.strip("-")


def sanitize_full_filename(filename: str) -> str:
    """Sanitize a complete ``name.ext`` filename in one pass.

    The extension's dot is never replaced, so the extension survives;
    trimming applies only to the ends of the whole filename.

    >>> sanitize_full_filename("001-My:Show?.mp3")
    '001-My-Show-.mp3'
    """
    return sanitize_filename(filename)


def build_episode_filename(sequence_number: int, title: str, ext: str) -> str:
    """Build ``<seq>-<title>.<ext>`` with the sequence zero-padded to three digits.

    Sequence numbers of 1000 and above are written in full.
    """
    padded = str(sequence_number).zfill(SEQUENCE_PAD_WIDTH)
    return sanitize_full_filename(f"{padded}-{sanitize_filename(title)}.{ext}")
