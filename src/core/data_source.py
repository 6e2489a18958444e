"""
DICOM Data Source

Asynchronous access to studies, series, instances, metadata, frames and
thumbnails. The engine depends only on the DicomDataSource interface; the
DICOMweb implementation runs the blocking requests client in worker threads so
every fetch is a suspension point on the event loop.

Inputs:
    - DicomWebClient (or any implementation of DicomDataSource)

Outputs:
    - Awaitable study/series/instance summaries, image ids, metadata,
      raw frames and thumbnail bytes

Requirements:
    - asyncio (standard library)
    - core.dicomweb_client for the HTTP implementation
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydicom.dataset import Dataset

from core.dicom_models import InstanceSummary, SeriesSummary, StudySummary
from core.dicomweb_client import DicomWebClient


class DicomDataSource(ABC):
    """Abstract asynchronous DICOM data collaborator."""

    @abstractmethod
    async def search_studies(self, params: Optional[Dict[str, Any]] = None) -> List[StudySummary]:
        pass

    @abstractmethod
    async def get_study(self, study_uid: str) -> Optional[StudySummary]:
        pass

    @abstractmethod
    async def list_series(self, study_uid: str) -> List[SeriesSummary]:
        pass

    @abstractmethod
    async def list_instances(self, study_uid: str, series_uid: str) -> List[InstanceSummary]:
        """Instances sorted by instance number."""
        pass

    @abstractmethod
    async def get_image_ids(self, study_uid: str, series_uid: str) -> List[str]:
        pass

    @abstractmethod
    async def get_instance_metadata(self, study_uid: str, series_uid: str, sop_instance_uid: str) -> Dataset:
        pass

    @abstractmethod
    async def retrieve_instance(self, image_id: str) -> Dataset:
        pass

    @abstractmethod
    async def get_frame(self, study_uid: str, series_uid: str, sop_instance_uid: str, frame_number: int) -> bytes:
        """Raw bytes of one frame, frame_number starting at 1."""
        pass

    @abstractmethod
    async def get_thumbnail(
        self,
        study_uid: str,
        series_uid: str,
        sop_instance_uid: str,
        quality: int = 75,
        viewport: str = "128,128",
    ) -> bytes:
        pass

    @abstractmethod
    def image_id_for(self, study_uid: str, series_uid: str, sop_instance_uid: str) -> str:
        pass

    @abstractmethod
    def frame_image_ids(self, study_uid: str, series_uid: str, sop_instance_uid: str, frame_count: int) -> List[str]:
        pass


class DicomWebDataSource(DicomDataSource):
    """DicomDataSource backed by a blocking DicomWebClient run via asyncio.to_thread."""

    def __init__(self, client: DicomWebClient):
        self.client = client

    async def search_studies(self, params: Optional[Dict[str, Any]] = None) -> List[StudySummary]:
        return await asyncio.to_thread(self.client.search_studies, params)

    async def get_study(self, study_uid: str) -> Optional[StudySummary]:
        return await asyncio.to_thread(self.client.get_study, study_uid)

    async def list_series(self, study_uid: str) -> List[SeriesSummary]:
        return await asyncio.to_thread(self.client.list_series, study_uid)

    async def list_instances(self, study_uid: str, series_uid: str) -> List[InstanceSummary]:
        return await asyncio.to_thread(self.client.list_instances, study_uid, series_uid)

    async def get_image_ids(self, study_uid: str, series_uid: str) -> List[str]:
        return await asyncio.to_thread(self.client.get_image_ids, study_uid, series_uid)

    async def get_instance_metadata(self, study_uid: str, series_uid: str, sop_instance_uid: str) -> Dataset:
        return await asyncio.to_thread(
            self.client.get_instance_metadata, study_uid, series_uid, sop_instance_uid
        )

    async def retrieve_instance(self, image_id: str) -> Dataset:
        return await asyncio.to_thread(self.client.retrieve_instance, image_id)

    async def get_frame(self, study_uid: str, series_uid: str, sop_instance_uid: str, frame_number: int) -> bytes:
        return await asyncio.to_thread(
            self.client.get_frame, study_uid, series_uid, sop_instance_uid, frame_number
        )

    async def get_thumbnail(
        self,
        study_uid: str,
        series_uid: str,
        sop_instance_uid: str,
        quality: int = 75,
        viewport: str = "128,128",
    ) -> bytes:
        return await asyncio.to_thread(
            self.client.get_thumbnail, study_uid, series_uid, sop_instance_uid, quality, viewport
        )

    def image_id_for(self, study_uid: str, series_uid: str, sop_instance_uid: str) -> str:
        return self.client.image_id_for(study_uid, series_uid, sop_instance_uid)

    def frame_image_ids(self, study_uid: str, series_uid: str, sop_instance_uid: str, frame_count: int) -> List[str]:
        return self.client.frame_image_ids(study_uid, series_uid, sop_instance_uid, frame_count)
