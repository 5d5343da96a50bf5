"""Compact locators for archived credential bundles.

A locator packs the remote store's file id and decryption key behind a
product tag:

    https://mega.nz/file/abc123#def456  ->  SESS~abc123#def456
    https://mega.nz/#!abc123!def456     ->  SESS~abc123#def456

Both functions here are pure so they can be tested without network access.
"""

from dataclasses import dataclass

from linkvault.errors import InvalidLocator

__all__ = [
    "LocatorParts",
    "make_locator",
    "parse_locator",
]

SEPARATOR = "~"
FILE_MARKER = "/file/"
LEGACY_MARKER = "/#!"


@dataclass(frozen=True)
class LocatorParts:
    """Decomposed locator.

    Attributes:
        tag: Product tag in front of the separator.
        file_id: Remote file identifier (empty for raw locators).
        key: Remote decryption key (empty for raw locators).
        raw: Original URL when the locator wraps an unrecognized link.
    """

    tag: str
    file_id: str = ""
    key: str = ""
    raw: str | None = None

    def to_url(self, base_url: str) -> str:
        """Reconstruct the canonical remote URL.

        Args:
            base_url: Remote store origin, e.g. "https://mega.nz".

        Returns:
            https://<store>/file/<file_id>#<key>, or the raw URL.
        """
        if self.raw is not None:
            return self.raw
        url = f"{base_url.rstrip('/')}{FILE_MARKER}{self.file_id}"
        if self.key:
            url = f"{url}#{self.key}"
        return url

    def __str__(self) -> str:
        if self.raw is not None:
            return f"{self.tag}{SEPARATOR}{self.raw}"
        if self.key:
            return f"{self.tag}{SEPARATOR}{self.file_id}#{self.key}"
        return f"{self.tag}{SEPARATOR}{self.file_id}"


def make_locator(url: str, tag: str) -> str:
    """Derive a locator from a remote store URL.

    Args:
        url: URL returned by the remote store.
        tag: Product tag prefix.

    Returns:
        "<tag>~<file_id>#<key>", or "<tag>~<url>" for unrecognized URLs.
    """
    if FILE_MARKER in url:
        body = url.split(FILE_MARKER, 1)[1]
    elif LEGACY_MARKER in url:
        # ID!HASH -> ID#HASH
        body = url.split(LEGACY_MARKER, 1)[1].replace("!", "#", 1)
    else:
        body = url
    return f"{tag}{SEPARATOR}{body}"


def parse_locator(locator: str, tag: str | None = None) -> LocatorParts:
    """Split a locator into its parts.

    Args:
        locator: Locator string.
        tag: Expected tag. If given, other tags are rejected.

    Returns:
        LocatorParts.

    Raises:
        InvalidLocator: If the string is not a well-formed locator.
    """
    locator = locator.strip()
    if SEPARATOR not in locator:
        raise InvalidLocator("Locator has no tag separator")

    found_tag, body = locator.split(SEPARATOR, 1)
    if not found_tag or not body:
        raise InvalidLocator("Locator tag or body is empty")
    if tag is not None and found_tag != tag:
        raise InvalidLocator(f"Unknown locator tag: {found_tag}")

    if "://" in body:
        return LocatorParts(tag=found_tag, raw=body)

    file_id, _, key = body.partition("#")
    if not file_id:
        raise InvalidLocator("Locator has no file id")
    return LocatorParts(tag=found_tag, file_id=file_id, key=key)
