"""
Value types for the two kinds of URL the crawler deals with.

``AbsoluteUri`` identifies a document on the wire, ``RelativeUri`` is the
stable key used in reports so that report identity does not depend on the
scheme or host that was crawled.
"""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import SplitResult, urlsplit, urlunsplit

DEFAULT_PORTS = {'http': 80, 'https': 443}


class UriKindError(ValueError):
    """Raised when a URL value is constructed from the wrong kind of URL."""
    pass


def _split(value: str) -> SplitResult:
    try:
        parts = urlsplit(value)
        # accessing .port validates it
        parts.port
    except ValueError as e:
        raise UriKindError(f"Malformed URL [{value}]: {e}") from e
    return parts


def _build_netloc(parts: SplitResult, *schemes: str) -> str:
    """Rebuild the authority, dropping the port when it is the default of any of ``schemes``."""
    host = (parts.hostname or '').lower()
    if ':' in host:
        host = f"[{host}]"

    netloc = host
    port = parts.port
    if port is not None and port not in {DEFAULT_PORTS.get(s) for s in schemes}:
        netloc = f"{host}:{port}"

    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo = f"{userinfo}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"

    return netloc


@dataclass(frozen=True, order=True)
class AbsoluteUri:
    """
    An absolute URL.

    The stored value is canonical: lower-case scheme and host, no explicit
    default port and at least a ``/`` path. Two instances compare and hash
    equal when their canonical forms are equal.
    """
    value: str

    def __post_init__(self):
        raw = str(self.value).strip()
        parts = _split(raw)
        if not parts.scheme or not parts.netloc:
            raise UriKindError(f"Value must be an absolute URL: [{self.value}]")

        scheme = parts.scheme.lower()
        canonical = urlunsplit((
            scheme,
            _build_netloc(parts, scheme),
            parts.path or '/',
            parts.query,
            parts.fragment
        ))
        object.__setattr__(self, 'value', canonical)

    @property
    def parts(self) -> SplitResult:
        return urlsplit(self.value)

    @property
    def scheme(self) -> str:
        return self.parts.scheme

    @property
    def host(self) -> str:
        return self.parts.hostname or ''

    @property
    def port(self) -> Optional[int]:
        """Explicit port, or the scheme default when none is given."""
        parts = self.parts
        return parts.port if parts.port is not None else DEFAULT_PORTS.get(parts.scheme)

    @property
    def authority(self) -> str:
        return self.parts.netloc

    @property
    def path(self) -> str:
        return self.parts.path

    @property
    def query(self) -> str:
        return self.parts.query

    @property
    def fragment(self) -> str:
        return self.parts.fragment

    def with_scheme(self, scheme: str) -> 'AbsoluteUri':
        """Return a copy using ``scheme``; default ports of either scheme are dropped."""
        parts = self.parts
        netloc = _build_netloc(parts, parts.scheme, scheme)
        return AbsoluteUri(urlunsplit((scheme, netloc, parts.path, parts.query, parts.fragment)))

    def without_fragment(self) -> 'AbsoluteUri':
        parts = self.parts
        if not parts.fragment:
            return self
        return AbsoluteUri(urlunsplit(parts._replace(fragment='')))

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, order=True)
class RelativeUri:
    """A path-only URL used as a report key. Always starts with ``/``."""
    value: str

    def __post_init__(self):
        raw = str(self.value)
        parts = _split(raw)
        if parts.scheme or parts.netloc:
            raise UriKindError(f"Value must be a relative URL: [{self.value}]")
        if not raw.startswith('/'):
            raise UriKindError(f"Relative URL must start with '/': [{self.value}]")

    def __str__(self) -> str:
        return self.value
