"""
URL resolution and classification.

All functions are pure. Relative references are resolved with a
segment-based algorithm that treats the base URL's path as a directory, so
callers resolving links found on a page should pass ``directory_of(page)``.
"""

from typing import List
from urllib.parse import urlsplit, urlunsplit

from .uri_types import AbsoluteUri, RelativeUri, UriKindError

HTTP_SCHEMES = ('http', 'https')


def _is_well_formed_http_url(raw: str) -> bool:
    """Check whether ``raw`` is itself a complete http(s) URL."""
    try:
        parts = urlsplit(raw)
        parts.port
    except ValueError:
        return False

    if any(c.isspace() for c in raw):
        return False

    return parts.scheme.lower() in HTTP_SCHEMES and bool(parts.hostname)


def can_resolve_as_http_url(base: AbsoluteUri, raw: str) -> bool:
    """
    Check whether ``raw`` is, or resolves against ``base`` to, an http(s) URL.

    Never raises; malformed input is reported as ``False``.
    """
    if not raw or not raw.strip():
        return False

    raw = raw.strip()
    try:
        parts = urlsplit(raw)
        parts.port
    except ValueError:
        return False

    if parts.scheme:
        # mailto:, tel:, javascript: and friends end up here
        return _is_well_formed_http_url(raw)

    if raw.startswith('//'):
        return bool(parts.hostname) and base.scheme in HTTP_SCHEMES

    return base.scheme in HTTP_SCHEMES


def _resolve_relative(base: AbsoluteUri, raw: str) -> AbsoluteUri:
    without_fragment = raw.split('#', 1)[0]
    path_part, has_query, query = without_fragment.partition('?')

    if not path_part:
        # query-only (or empty) reference keeps the base document
        path = base.path
        if not has_query:
            query = base.query
    else:
        if path_part.startswith('/'):
            segments: List[str] = []
        else:
            segments = [s for s in base.path.split('/') if s]

        raw_segments = path_part.split('/')
        for segment in raw_segments:
            if segment == '..':
                if segments:
                    segments.pop()
            elif segment in ('', '.'):
                continue
            else:
                segments.append(segment)

        path = '/' + '/'.join(segments)
        if segments and raw_segments[-1] in ('', '.', '..'):
            path += '/'

    return AbsoluteUri(urlunsplit((base.scheme, base.authority, path, query, '')))


def resolve_absolute(base: AbsoluteUri, raw: str) -> AbsoluteUri:
    """
    Resolve a raw href against ``base``.

    Well-formed absolute URLs are taken as-is, everything else is resolved
    segment by segment. Query strings are opaque and fragments are dropped.
    The result always carries ``base``'s scheme.
    """
    raw = raw.strip()

    if _is_well_formed_http_url(raw):
        resolved = AbsoluteUri(raw)
    elif raw.startswith('//'):
        resolved = AbsoluteUri(f"{base.scheme}:{raw}")
    elif urlsplit(raw).scheme:
        raise UriKindError(f"Cannot resolve [{raw}] as an http(s) URL")
    else:
        resolved = _resolve_relative(base, raw)

    resolved = resolved.without_fragment()
    if resolved.scheme != base.scheme:
        resolved = resolved.with_scheme(base.scheme)
    return resolved


def to_relative_path(base: AbsoluteUri, target: AbsoluteUri) -> RelativeUri:
    """Express ``target`` relative to ``base``'s directory, always with a leading ``/``."""
    base_dirs = [s for s in directory_of(base).path.split('/') if s]
    target_parts = target.path.split('/')[1:]

    if target_parts[:len(base_dirs)] == base_dirs:
        relative = '/' + '/'.join(target_parts[len(base_dirs):])
    else:
        common = 0
        for base_dir, target_dir in zip(base_dirs, target_parts[:-1]):
            if base_dir != target_dir:
                break
            common += 1
        ups = '../' * (len(base_dirs) - common)
        relative = '/' + ups + '/'.join(target_parts[common:])

    if target.query:
        relative = f"{relative}?{target.query}"
    return RelativeUri(relative)


def is_same_domain(base: AbsoluteUri, other: AbsoluteUri) -> bool:
    """Host equality; scheme and port are ignored."""
    return base.host == other.host


def is_file_like_path(uri: AbsoluteUri) -> bool:
    return '.' in uri.path.rsplit('/', 1)[-1]


def directory_of(uri: AbsoluteUri) -> AbsoluteUri:
    """
    The directory a document lives in.

    ``http://x/docs/page.html`` becomes ``http://x/docs/``; paths whose last
    segment has no extension are already treated as directories.
    """
    if not is_file_like_path(uri):
        return uri

    path = uri.path
    return AbsoluteUri(urlunsplit((uri.scheme, uri.authority, path[:path.rfind('/') + 1], '', '')))
