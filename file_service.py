"""
Name handling shared by upload paths and archive members.

Both sides must agree on the same safe-character policy, so every caller
goes through sanitize_name().
"""
import os
import re
from typing import Iterable, List

UPLOAD_PREFIX = "uploads"

# Word characters, dot, dash, parentheses, plus and space survive; anything else becomes "_".
_UNSAFE_CHARS = re.compile(r"[^\w.\-()+ ]", re.ASCII)


def sanitize_name(name: str) -> str:
    """Map a user-supplied file name onto the conservative safe set."""
    safe = _UNSAFE_CHARS.sub("_", name).strip()
    # "", "." and ".." would address the parent or nothing at all
    if not safe.strip("."):
        safe = "_" * max(len(safe), 1)
    return safe


def object_path_for(transfer_id: str, safe_name: str) -> str:
    return f"{UPLOAD_PREFIX}/{transfer_id}/{safe_name}"


def with_counter(name: str, counter: int) -> str:
    """'report.pdf', 2 -> 'report (2).pdf'"""
    stem, ext = os.path.splitext(name)
    return f"{stem} ({counter}){ext}"


def unique_names(names: Iterable[str]) -> List[str]:
    """
    Sanitize each name and resolve repeats in input order: the first
    occurrence keeps its name, later ones get ' (2)', ' (3)', ... before the
    extension. Same input always yields the same output.
    """
    used = set()
    result = []
    for name in names:
        safe = sanitize_name(name)
        candidate = safe
        counter = 2
        while candidate in used:
            candidate = with_counter(safe, counter)
            counter += 1
        used.add(candidate)
        result.append(candidate)
    return result
