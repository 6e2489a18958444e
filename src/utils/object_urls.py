"""
Object URL Registry

Thumbnail images are handed to the presentation layer as opaque object URLs
("blob:thumbnail/<uuid>") that resolve to in-memory image bytes. Each URL is
created once and must be revoked exactly once when the owning cache is torn
down; the registry keeps the counts so that balance can be verified.

Inputs:
    - Encoded image bytes and their MIME type

Outputs:
    - Object URL strings
    - Resolved bytes for a live URL

Requirements:
    - uuid (standard library)
"""

import uuid
from typing import Dict, Optional, Tuple


URL_PREFIX = "blob:thumbnail/"


class ObjectUrlRegistry:
    """Creates, resolves and revokes object URLs for in-memory image data."""

    def __init__(self):
        self._entries: Dict[str, Tuple[bytes, str]] = {}
        self.created_count = 0
        self.revoked_count = 0

    def create(self, data: bytes, mime_type: str = "image/jpeg") -> str:
        """
        Register image bytes and return a new object URL.

        Args:
            data: Encoded image bytes
            mime_type: MIME type of data

        Returns:
            Object URL string
        """
        url = f"{URL_PREFIX}{uuid.uuid4()}"
        self._entries[url] = (bytes(data), mime_type)
        self.created_count += 1
        return url

    def resolve(self, url: str) -> Optional[bytes]:
        """Bytes for a live URL, None if it was revoked or never existed."""
        entry = self._entries.get(url)
        return entry[0] if entry is not None else None

    def mime_type(self, url: str) -> Optional[str]:
        entry = self._entries.get(url)
        return entry[1] if entry is not None else None

    def revoke(self, url: str) -> bool:
        """
        Release a URL.

        Returns:
            True if the URL was live; revoking twice is a no-op
        """
        if self._entries.pop(url, None) is None:
            return False
        self.revoked_count += 1
        return True

    def is_live(self, url: str) -> bool:
        return url in self._entries

    @property
    def live_count(self) -> int:
        return len(self._entries)
