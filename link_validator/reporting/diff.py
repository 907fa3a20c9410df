"""
Comparison of two Markdown sitemaps produced by ``generate_markdown``.
"""

import re
from typing import List, Tuple

STATUS_CELL = re.compile(r'\|\s*(\d{3})\s*\|')

# title line and the blank line after it
HEADER_LINES = 2


def _content_lines(markdown: str) -> List[str]:
    """Table rows after the title; the broken links section is derived from them."""
    lines = (line.strip() for line in markdown.split('\n')[HEADER_LINES:])
    return [line for line in lines if line.startswith('|')]


def compare_sitemaps(previous: str, current: str) -> Tuple[List[str], bool]:
    """
    Diff two sitemaps line by line.

    Returns:
        ``(differences, has_errors)``: a line that disappeared is always an
        error, a new line only when it reports a 4xx/5xx status.
    """
    previous_lines = _content_lines(previous)
    current_lines = _content_lines(current)
    previous_set = set(previous_lines)
    current_set = set(current_lines)

    differences = []
    has_errors = False

    for line in previous_lines:
        if line not in current_set:
            differences.append(f"Missing: {line}")
            has_errors = True

    for line in current_lines:
        if line in previous_set:
            continue

        differences.append(f"New: {line}")
        match = STATUS_CELL.search(line)
        if match and int(match.group(1)) >= 400:
            has_errors = True

    return differences, has_errors
