"""
DICOMweb Client

Synchronous HTTP client for the QIDO-RS / WADO-RS endpoints the viewer needs:
study search, series and instance listing, instance metadata, Part 10
retrieval, single frames of multi-frame instances, and rendered thumbnails.

Image ids follow the "wadouri:" convention:
    wadouri:<base>/studies/<study>/series/<series>/instances/<sop>
    wadouri:<base>/studies/<study>/series/<series>/instances/<sop>/frames/<n>

Inputs:
    - DICOMweb base URL and request timeout (from ConfigManager)
    - Study / series / instance UIDs

Outputs:
    - StudySummary, SeriesSummary, InstanceSummary lists
    - pydicom Datasets (metadata, Part 10 instances)
    - Raw bytes (frames, thumbnails)

Requirements:
    - requests for HTTP
    - pydicom for DICOM JSON and Part 10 parsing
"""

import re
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, List, Optional

import pydicom
import requests
from pydicom.dataset import Dataset
from pydicom.errors import InvalidDicomError

from core.dicom_models import (
    InstanceSummary,
    SeriesSummary,
    StudySummary,
    parse_dicom_json,
)
from utils.debug_log import debug_log


IMAGE_ID_SCHEME = "wadouri:"

ACCEPT_DICOM_JSON = "application/dicom+json"
ACCEPT_DICOM = "application/dicom"
ACCEPT_OCTET_STREAM = "application/octet-stream"
ACCEPT_JPEG = "image/jpeg"

_IMAGE_ID_PATTERN = re.compile(
    r"^wadouri:(?P<base>.+)/studies/(?P<study>[^/]+)/series/(?P<series>[^/]+)"
    r"/instances/(?P<sop>[^/]+)(?:/frames/(?P<frame>\d+))?$"
)


class DicomWebError(Exception):
    """Raised when a DICOMweb request fails or returns unusable content."""

    def __init__(self, message: str, url: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


@dataclass(frozen=True)
class ImageRef:
    """UIDs recovered from an image id."""

    base_url: str
    study_uid: str
    series_uid: str
    sop_instance_uid: str
    frame_number: Optional[int] = None


def parse_image_id(image_id: str) -> Optional[ImageRef]:
    """
    Split an image id into its base URL and UIDs.

    Args:
        image_id: "wadouri:" image id

    Returns:
        ImageRef, or None if the id does not follow the convention
    """
    match = _IMAGE_ID_PATTERN.match(image_id or "")
    if match is None:
        return None
    frame = match.group("frame")
    return ImageRef(
        base_url=match.group("base"),
        study_uid=match.group("study"),
        series_uid=match.group("series"),
        sop_instance_uid=match.group("sop"),
        frame_number=int(frame) if frame is not None else None,
    )


def _first_multipart_body(content: bytes, content_type: str) -> bytes:
    """
    Extract the first part of a multipart/related response.

    Servers may answer frame requests as multipart even when a single part is
    requested; non-multipart bodies are returned unchanged.
    """
    if "multipart" not in content_type.lower():
        return content
    match = re.search(r'boundary="?([^";]+)"?', content_type, re.IGNORECASE)
    if match is None:
        return content
    delimiter = b"--" + match.group(1).encode("ascii")
    parts = content.split(delimiter)
    for part in parts[1:]:
        if part.startswith(b"--"):
            break
        header_end = part.find(b"\r\n\r\n")
        if header_end < 0:
            continue
        body = part[header_end + 4:]
        if body.endswith(b"\r\n"):
            body = body[:-2]
        return body
    raise DicomWebError("Multipart response contained no parts")


class DicomWebClient:
    """
    Blocking DICOMweb client built on a requests Session.

    Callers on the event loop go through core.data_source.DicomWebDataSource,
    which runs these methods in worker threads.
    """

    def __init__(self, base_url: str, timeout: float = 30.0, session: Optional[requests.Session] = None):
        """
        Initialize the client.

        Args:
            base_url: DICOMweb root, e.g. "http://localhost:8042/dicom-web"
            timeout: Per-request timeout in seconds
            session: Optional preconfigured requests Session
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _get(self, path: str, accept: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        url = self._url(path)
        try:
            response = self.session.get(
                url, headers={"Accept": accept}, params=params, timeout=self.timeout
            )
        except requests.RequestException as e:
            debug_log("dicomweb_client.py:_get", "Request failed", {"url": url, "error": str(e)})
            raise DicomWebError(f"Request to {url} failed: {e}", url=url) from e
        if response.status_code >= 400:
            debug_log(
                "dicomweb_client.py:_get",
                "HTTP error",
                {"url": url, "status": response.status_code},
            )
            raise DicomWebError(
                f"Request to {url} returned HTTP {response.status_code}",
                url=url,
                status_code=response.status_code,
            )
        return response

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        response = self._get(path, ACCEPT_DICOM_JSON, params)
        if response.status_code == 204 or not response.content:
            return []
        try:
            data = response.json()
        except ValueError as e:
            raise DicomWebError(f"Invalid DICOM JSON from {response.url}: {e}", url=response.url) from e
        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            raise DicomWebError(f"Unexpected DICOM JSON payload from {response.url}", url=response.url)
        return data

    def _get_datasets(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dataset]:
        datasets = []
        for obj in self._get_json(path, params):
            try:
                datasets.append(parse_dicom_json(obj))
            except (ValueError, TypeError, KeyError) as e:
                raise DicomWebError(f"Malformed DICOM JSON object from {path}: {e}") from e
        return datasets

    # ------------------------------------------------------------------
    # Image ids
    # ------------------------------------------------------------------

    def image_id_for(self, study_uid: str, series_uid: str, sop_instance_uid: str) -> str:
        return (
            f"{IMAGE_ID_SCHEME}{self.base_url}/studies/{study_uid}"
            f"/series/{series_uid}/instances/{sop_instance_uid}"
        )

    def frame_image_ids(self, study_uid: str, series_uid: str, sop_instance_uid: str, frame_count: int) -> List[str]:
        """Per-frame image ids (frames numbered from 1) for a multi-frame instance."""
        instance_id = self.image_id_for(study_uid, series_uid, sop_instance_uid)
        return [f"{instance_id}/frames/{n}" for n in range(1, max(frame_count, 0) + 1)]

    # ------------------------------------------------------------------
    # QIDO-RS
    # ------------------------------------------------------------------

    def search_studies(self, params: Optional[Dict[str, Any]] = None) -> List[StudySummary]:
        """
        Search studies.

        Args:
            params: QIDO query parameters (e.g. {"PatientName": "DOE*"})

        Returns:
            Matching studies in server order
        """
        query = {k: v for k, v in (params or {}).items() if v not in (None, "")}
        return [StudySummary.from_dataset(ds) for ds in self._get_datasets("studies", query)]

    def get_study(self, study_uid: str) -> Optional[StudySummary]:
        """Summary of a single study, None if the server does not know it."""
        studies = self.search_studies({"StudyInstanceUID": study_uid})
        for study in studies:
            if study.study_uid == study_uid:
                return study
        return studies[0] if studies else None

    def list_series(self, study_uid: str) -> List[SeriesSummary]:
        """Series of a study sorted by series number."""
        series = [
            SeriesSummary.from_dataset(ds, study_uid=study_uid)
            for ds in self._get_datasets(f"studies/{study_uid}/series")
        ]
        series.sort(key=lambda s: s.series_number)
        return series

    def list_instances(self, study_uid: str, series_uid: str) -> List[InstanceSummary]:
        """Instances of a series sorted by instance number."""
        instances = [
            InstanceSummary.from_dataset(ds, study_uid=study_uid, series_uid=series_uid)
            for ds in self._get_datasets(f"studies/{study_uid}/series/{series_uid}/instances")
        ]
        instances.sort(key=lambda i: i.instance_number)
        return instances

    def get_image_ids(self, study_uid: str, series_uid: str) -> List[str]:
        """Image ids of a series in instance-number order."""
        return [
            self.image_id_for(study_uid, series_uid, instance.sop_instance_uid)
            for instance in self.list_instances(study_uid, series_uid)
        ]

    # ------------------------------------------------------------------
    # WADO-RS
    # ------------------------------------------------------------------

    def get_instance_metadata(self, study_uid: str, series_uid: str, sop_instance_uid: str) -> Dataset:
        """Metadata of one instance (no pixel data)."""
        datasets = self._get_datasets(
            f"studies/{study_uid}/series/{series_uid}/instances/{sop_instance_uid}/metadata"
        )
        if not datasets:
            raise DicomWebError(f"No metadata returned for instance {sop_instance_uid}")
        return datasets[0]

    def retrieve_instance(self, image_id: str) -> Dataset:
        """
        Retrieve and parse the Part 10 object an image id points to.

        Frame suffixes are ignored; the whole instance is returned.
        """
        ref = parse_image_id(image_id)
        if ref is None:
            raise DicomWebError(f"Unrecognised image id: {image_id}")
        path = f"studies/{ref.study_uid}/series/{ref.series_uid}/instances/{ref.sop_instance_uid}"
        url = f"{ref.base_url}/{path}" if ref.base_url != self.base_url else self._url(path)
        try:
            response = self.session.get(url, headers={"Accept": ACCEPT_DICOM}, timeout=self.timeout)
        except requests.RequestException as e:
            raise DicomWebError(f"Request to {url} failed: {e}", url=url) from e
        if response.status_code >= 400:
            raise DicomWebError(
                f"Request to {url} returned HTTP {response.status_code}",
                url=url,
                status_code=response.status_code,
            )
        body = _first_multipart_body(response.content, response.headers.get("Content-Type", ""))
        try:
            return pydicom.dcmread(BytesIO(body), force=True)
        except (InvalidDicomError, EOFError, ValueError) as e:
            raise DicomWebError(f"Could not parse DICOM instance from {url}: {e}", url=url) from e

    def get_frame(self, study_uid: str, series_uid: str, sop_instance_uid: str, frame_number: int) -> bytes:
        """
        Raw uncompressed bytes of one frame (1-based frame number).
        """
        if frame_number < 1:
            raise DicomWebError(f"Frame numbers start at 1, got {frame_number}")
        response = self._get(
            f"studies/{study_uid}/series/{series_uid}/instances/{sop_instance_uid}/frames/{frame_number}",
            ACCEPT_OCTET_STREAM,
        )
        return _first_multipart_body(response.content, response.headers.get("Content-Type", ""))

    def get_thumbnail(
        self,
        study_uid: str,
        series_uid: str,
        sop_instance_uid: str,
        quality: int = 75,
        viewport: str = "128,128",
    ) -> bytes:
        """JPEG thumbnail of an instance rendered by the server."""
        response = self._get(
            f"studies/{study_uid}/series/{series_uid}/instances/{sop_instance_uid}/thumbnail",
            ACCEPT_JPEG,
            params={"quality": quality, "viewport": viewport},
        )
        if not response.content:
            raise DicomWebError(f"Empty thumbnail for instance {sop_instance_uid}")
        return response.content
