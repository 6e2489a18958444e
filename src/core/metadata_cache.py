"""
Metadata and Thumbnail Cache

Session-lifetime cache of derived, asynchronously produced artifacts:

- Display metadata per image (overlay text), fetched once per instance and
  never invalidated within a session.
- Series thumbnails, rendered by the server for the middle instance of a
  series, normalized with Pillow and exposed as object URLs.

Concurrent requests for the same key share one fetch. A failed fetch leaves no
entry (the caller shows a placeholder) and may be retried later; it never
affects fetches for other keys. Every thumbnail URL created is revoked exactly
once, when its study is released or at teardown.

Inputs:
    - DicomDataSource for metadata, instance lists and thumbnails
    - Thumbnail quality / viewport settings from ConfigManager

Outputs:
    - DisplayMetadata per image id
    - Object URL per (study, series)

Requirements:
    - asyncio (standard library)
    - Pillow for thumbnail normalization
"""

import asyncio
from io import BytesIO
from typing import Dict, Optional, Tuple

from PIL import Image

from core.data_source import DicomDataSource
from core.dicom_models import DisplayMetadata
from core.dicomweb_client import parse_image_id
from utils.debug_log import debug_log
from utils.object_urls import ObjectUrlRegistry


SeriesKey = Tuple[str, str]


def metadata_key(image_id: str) -> str:
    """Cache key for an image id: per-frame ids share their instance's entry."""
    ref = parse_image_id(image_id)
    if ref is None or ref.frame_number is None:
        return image_id
    return image_id.rsplit("/frames/", 1)[0]


def normalize_thumbnail(data: bytes, size: Tuple[int, int] = (128, 128), quality: int = 75) -> bytes:
    """
    Re-encode a server thumbnail as an RGB JPEG no larger than size.

    Args:
        data: Encoded image bytes from the server
        size: Maximum (width, height)
        quality: JPEG quality

    Returns:
        JPEG bytes

    Raises:
        OSError: if the bytes are not a readable image
    """
    with Image.open(BytesIO(data)) as image:
        image.load()
        if image.mode != "RGB":
            image = image.convert("RGB")
        image.thumbnail(size, Image.Resampling.LANCZOS)
        output = BytesIO()
        image.save(output, format="JPEG", quality=quality)
    return output.getvalue()


class MetadataThumbnailCache:
    """Single-flight cache for display metadata and series thumbnails."""

    def __init__(
        self,
        data_source: DicomDataSource,
        url_registry: Optional[ObjectUrlRegistry] = None,
        thumbnail_quality: int = 75,
        thumbnail_viewport: str = "128,128",
        thumbnail_size: Tuple[int, int] = (128, 128),
    ):
        """
        Initialize the cache.

        Args:
            data_source: Source for metadata, instances and thumbnails
            url_registry: Registry that issues thumbnail object URLs
            thumbnail_quality: JPEG quality requested from the server
            thumbnail_viewport: Rendered viewport requested from the server
            thumbnail_size: Maximum size of the normalized thumbnail
        """
        self.data_source = data_source
        self.url_registry = url_registry if url_registry is not None else ObjectUrlRegistry()
        self.thumbnail_quality = thumbnail_quality
        self.thumbnail_viewport = thumbnail_viewport
        self.thumbnail_size = thumbnail_size

        self._metadata: Dict[str, DisplayMetadata] = {}
        self._metadata_pending: Dict[str, asyncio.Task] = {}
        self._thumbnails: Dict[SeriesKey, str] = {}
        self._thumbnail_pending: Dict[SeriesKey, asyncio.Task] = {}
        # study_uid -> release count; fetches started before a release are dropped
        self._study_releases: Dict[str, int] = {}
        self._torn_down = False

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def peek_metadata(self, image_id: str) -> Optional[DisplayMetadata]:
        """Cached metadata for an image id, without fetching."""
        return self._metadata.get(metadata_key(image_id))

    async def get_metadata(self, image_id: str) -> Optional[DisplayMetadata]:
        """
        Display metadata for an image id.

        Returns:
            DisplayMetadata, or None if the fetch failed or the id is not a DICOMweb id
        """
        key = metadata_key(image_id)
        cached = self._metadata.get(key)
        if cached is not None:
            return cached
        task = self._metadata_pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_metadata(key))
            self._metadata_pending[key] = task
        return await asyncio.shield(task)

    async def _fetch_metadata(self, key: str) -> Optional[DisplayMetadata]:
        try:
            ref = parse_image_id(key)
            if ref is None:
                print(f"Warning: Cannot fetch metadata for unrecognised image id {key}")
                return None
            dataset = await self.data_source.get_instance_metadata(
                ref.study_uid, ref.series_uid, ref.sop_instance_uid
            )
            metadata = DisplayMetadata.from_dataset(dataset)
            if not self._torn_down:
                self._metadata[key] = metadata
            return metadata
        except Exception as e:
            print(f"Warning: Could not load metadata for {key}: {e}")
            debug_log("metadata_cache.py:_fetch_metadata", "Metadata fetch failed", {"key": key, "error": str(e)})
            return None
        finally:
            self._metadata_pending.pop(key, None)

    # ------------------------------------------------------------------
    # Thumbnails
    # ------------------------------------------------------------------

    def peek_thumbnail(self, study_uid: str, series_uid: str) -> Optional[str]:
        """Cached thumbnail URL for a series, without fetching."""
        return self._thumbnails.get((study_uid, series_uid))

    async def get_thumbnail(self, study_uid: str, series_uid: str) -> Optional[str]:
        """
        Object URL of the thumbnail for a series.

        The middle instance (by instance number) is rendered.

        Returns:
            Object URL, or None if the series has no instances or the fetch failed
        """
        if self._torn_down:
            return None
        key = (study_uid, series_uid)
        cached = self._thumbnails.get(key)
        if cached is not None:
            return cached
        task = self._thumbnail_pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_thumbnail(key))
            self._thumbnail_pending[key] = task
        return await asyncio.shield(task)

    async def _fetch_thumbnail(self, key: SeriesKey) -> Optional[str]:
        study_uid, series_uid = key
        releases = self._study_releases.get(study_uid, 0)
        try:
            instances = await self.data_source.list_instances(study_uid, series_uid)
            if not instances:
                return None
            middle = instances[len(instances) // 2]
            data = await self.data_source.get_thumbnail(
                study_uid,
                series_uid,
                middle.sop_instance_uid,
                self.thumbnail_quality,
                self.thumbnail_viewport,
            )
            jpeg = await asyncio.to_thread(
                normalize_thumbnail, data, self.thumbnail_size, self.thumbnail_quality
            )
        except Exception as e:
            print(f"Warning: Could not load thumbnail for series {series_uid}: {e}")
            debug_log(
                "metadata_cache.py:_fetch_thumbnail",
                "Thumbnail fetch failed",
                {"study_uid": study_uid, "series_uid": series_uid, "error": str(e)},
            )
            return None
        finally:
            self._thumbnail_pending.pop(key, None)

        if self._torn_down or self._study_releases.get(study_uid, 0) != releases:
            return None
        url = self.url_registry.create(jpeg, "image/jpeg")
        self._thumbnails[key] = url
        return url

    def resolve_thumbnail(self, url: str) -> Optional[bytes]:
        """JPEG bytes behind a live thumbnail URL."""
        return self.url_registry.resolve(url)

    def release_study(self, study_uid: str) -> int:
        """
        Revoke the thumbnail URLs of a study that is no longer displayed.

        Fetches for the study still in flight complete without creating a URL.

        Returns:
            Number of URLs revoked
        """
        self._study_releases[study_uid] = self._study_releases.get(study_uid, 0) + 1
        revoked = 0
        for key in [k for k in self._thumbnails if k[0] == study_uid]:
            if self.url_registry.revoke(self._thumbnails.pop(key)):
                revoked += 1
        if revoked:
            debug_log(
                "metadata_cache.py:release_study",
                "Thumbnails released",
                {"study_uid": study_uid, "revoked": revoked},
            )
        return revoked

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def teardown(self) -> None:
        """
        Revoke every thumbnail URL, cancel pending fetches and clear the cache.

        Calling teardown twice revokes nothing the second time.
        """
        self._torn_down = True
        for task in list(self._metadata_pending.values()) + list(self._thumbnail_pending.values()):
            task.cancel()
        self._metadata_pending.clear()
        self._thumbnail_pending.clear()
        for url in list(self._thumbnails.values()):
            self.url_registry.revoke(url)
        self._thumbnails.clear()
        self._metadata.clear()

    @property
    def created_count(self) -> int:
        return self.url_registry.created_count

    @property
    def revoked_count(self) -> int:
        return self.url_registry.revoked_count

    @property
    def is_torn_down(self) -> bool:
        return self._torn_down
