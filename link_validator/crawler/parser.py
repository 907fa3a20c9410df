"""
Link extraction from HTML, honoring comment-based ignore directives.

Page authors can keep links out of the crawl with HTML comments:

    <!-- link-validator-ignore-next -->
    <a href="http://localhost:3000">skipped</a>

    <!-- link-validator-ignore -->
    ... every link in here is skipped ...
    <!-- /link-validator-ignore -->

Directives are matched case-insensitively.
"""

import logging
from typing import Dict, Iterable, List, Set, Tuple

from bs4 import BeautifulSoup, Comment, Tag

from .models import LinkKind
from .uri_helpers import can_resolve_as_http_url, is_same_domain, resolve_absolute
from .uri_types import AbsoluteUri

IGNORE_NEXT = 'link-validator-ignore-next'
IGNORE_BLOCK_OPEN = frozenset(('link-validator-ignore', 'begin link-validator-ignore'))
IGNORE_BLOCK_CLOSE = frozenset(('/link-validator-ignore', 'end link-validator-ignore'))

ExtractedLink = Tuple[AbsoluteUri, LinkKind]


def _directive(comment: Comment) -> str:
    return str(comment).strip().lower()


def _is_link(tag: Tag) -> bool:
    return tag.name == 'a' and tag.has_attr('href')


class LinkExtractor:
    """
    Parses a page's markup into a deduplicated list of resolved links.
    """

    def __init__(self, parser_features: str = 'lxml'):
        self.parser_features = parser_features
        self.logger = logging.getLogger(__name__)

    def extract(self, markup: str, base: AbsoluteUri) -> List[ExtractedLink]:
        """
        Extract every followable link from ``markup``.

        Args:
            markup: Raw HTML of the page
            base: Resolution base for relative hrefs, normally the page's directory

        Returns:
            ``(url, kind)`` pairs in document order, one per distinct URL
        """
        try:
            soup = BeautifulSoup(markup, self.parser_features)
        except Exception as e:
            self.logger.error(f"Error parsing markup under {base}: {e}")
            return []

        ignored = self._ignored_anchors(soup)
        links: Dict[AbsoluteUri, LinkKind] = {}

        for anchor in soup.find_all('a', href=True):
            if id(anchor) in ignored:
                continue

            href = anchor.get('href', '').strip()
            # fragment-only links point back at the page being parsed
            if not href or href.startswith('#'):
                continue
            if not can_resolve_as_http_url(base, href):
                self.logger.debug(f"Skipping unsupported link [{href}] under {base}")
                continue

            uri = resolve_absolute(base, href)
            if uri not in links:
                links[uri] = LinkKind.INTERNAL if is_same_domain(base, uri) else LinkKind.EXTERNAL

        return list(links.items())

    def _ignored_anchors(self, soup: BeautifulSoup) -> Set[int]:
        """Identity set of the anchors switched off by directives."""
        ignored: Set[int] = set()
        ignored.update(self._ignored_by_blocks(soup))
        ignored.update(self._ignored_by_next(soup))
        return ignored

    def _ignored_by_blocks(self, soup: BeautifulSoup) -> Iterable[int]:
        """
        Anchors between paired block markers, in document order.

        An open marker without a matching close ignores the rest of the
        document; nested pairs stay ignored until the outermost close.
        """
        depth = 0
        for node in soup.descendants:
            if isinstance(node, Comment):
                directive = _directive(node)
                if directive in IGNORE_BLOCK_OPEN:
                    depth += 1
                elif directive in IGNORE_BLOCK_CLOSE:
                    depth = max(depth - 1, 0)
            elif depth and isinstance(node, Tag) and _is_link(node):
                yield id(node)

    def _ignored_by_next(self, soup: BeautifulSoup) -> Iterable[int]:
        """The first anchor-bearing sibling after each ignore-next comment."""
        for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
            if _directive(comment) != IGNORE_NEXT:
                continue

            for sibling in comment.next_siblings:
                if not isinstance(sibling, Tag):
                    continue
                if _is_link(sibling):
                    yield id(sibling)
                    break
                nested = sibling.find_all('a', href=True)
                if nested:
                    for anchor in nested:
                        yield id(anchor)
                    break


_default_extractor = LinkExtractor()


def extract_links(markup: str, base: AbsoluteUri) -> List[ExtractedLink]:
    """Extract links from ``markup`` with the default lxml-backed extractor."""
    return _default_extractor.extract(markup, base)


def partition_links(links: Iterable[ExtractedLink]) -> Tuple[Tuple[AbsoluteUri, ...], Tuple[AbsoluteUri, ...]]:
    """Split extracted links into ``(internal, external)`` URL tuples."""
    internal = []
    external = []
    for uri, kind in links:
        (internal if kind is LinkKind.INTERNAL else external).append(uri)
    return tuple(internal), tuple(external)
