"""
Markdown rendering of a crawl report.

The output is meant to be committed alongside a site and diffed between
runs, so rows are sorted and contain nothing time-dependent.
"""

from typing import Iterable, List, Mapping

from ..crawler.models import CrawlRecord, CrawlReport
from ..crawler.uri_types import AbsoluteUri

MAX_LINKED_FROM = 3


def _cell(text: str) -> str:
    return text.replace('|', '\\|')


def _referring_paths(links_to_page: Iterable[AbsoluteUri]) -> List[str]:
    return sorted({link.path for link in links_to_page})


def format_links_to_page(links_to_page: Iterable[AbsoluteUri]) -> str:
    """Comma-separated referring paths, at most three then ``+N more``."""
    paths = _referring_paths(links_to_page)
    if not paths:
        return '-'

    if len(paths) <= MAX_LINKED_FROM:
        return ', '.join(paths)

    remaining = len(paths) - MAX_LINKED_FROM
    return f"{', '.join(paths[:MAX_LINKED_FROM])} +{remaining} more"


def _status(record: CrawlRecord) -> str:
    return str(record.status_code) if record.status_code is not None else '-'


def _table(records: Mapping[str, CrawlRecord]) -> List[str]:
    lines = [
        '| URL | StatusCode | Linked From |',
        '| --- | ---------- | ----------- |',
    ]
    for key, record in records.items():
        lines.append(
            f"| `{_cell(key)}` | {_status(record)} | {_cell(format_links_to_page(record.links_to_page))} |"
        )
    return lines


def generate_markdown(report: CrawlReport) -> str:
    """Render ``report`` as a Markdown sitemap with a broken links section."""
    lines = [f"# Sitemap for [{report.root_uri}]", '']
    lines.extend(_table(report.internal_links))

    if report.external_links:
        lines.extend(['', '## External Links', ''])
        lines.extend(_table(report.external_links))

    broken = report.broken_links
    if broken:
        lines.extend(['', '## 🔴 Broken Links Report'])

        for key, record in broken.items():
            lines.extend(['', f"### {_status(record)}: {key}", ''])
            referrers = _referring_paths(record.links_to_page)
            if referrers:
                lines.append('**Fix by updating links in:**')
                lines.append('')
                lines.extend(f"- {path}" for path in referrers)
            else:
                lines.append('_No pages link to this URL (orphaned)_')

    return '\n'.join(lines) + '\n'
