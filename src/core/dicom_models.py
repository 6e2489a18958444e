"""
DICOM Models

Typed summaries of the DICOMweb objects the viewer works with (studies, series,
instances), the frame source for multi-frame instances, and the display
metadata shown in viewport overlays.

DICOM JSON (application/dicom+json) is parsed into pydicom Datasets so that tag
values are accessed by keyword with pydicom's value conversion.

Inputs:
    - DICOM JSON objects returned by QIDO-RS / WADO-RS metadata requests
    - pydicom Datasets decoded from Part 10 files

Outputs:
    - StudySummary, SeriesSummary, InstanceSummary
    - MultiFrameSource
    - DisplayMetadata

Requirements:
    - pydicom for Dataset.from_json and value representations
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydicom.dataset import Dataset
from pydicom.multival import MultiValue

from core.multiframe_handler import get_frame_count


def parse_dicom_json(obj: Dict[str, Any]) -> Dataset:
    """
    Convert one DICOM JSON object into a pydicom Dataset.

    Bulk data URIs are not resolved; only inline values are kept.

    Args:
        obj: Mapping of "GGGGEEEE" tag strings to {"vr": ..., "Value": [...]}

    Returns:
        pydicom Dataset
    """
    return Dataset.from_json(obj, bulk_data_uri_handler=lambda tag, vr, uri: None)


def _first(value: Any) -> Any:
    if isinstance(value, (MultiValue, list, tuple)):
        return value[0] if len(value) > 0 else None
    return value


def get_text(dataset: Dataset, keyword: str, default: str = "") -> str:
    """
    Get a tag value as display text.

    Person names are rendered with their alphabetic component; multi-valued
    elements use the first value.
    """
    value = _first(getattr(dataset, keyword, None))
    if value is None:
        return default
    text = str(value).strip()
    return text if text else default


def get_int(dataset: Dataset, keyword: str, default: int = 0) -> int:
    """Get a tag value as int (first value for multi-valued elements)."""
    value = _first(getattr(dataset, keyword, None))
    if value is None or value == "":
        return default
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return default


def format_study_date(value: str) -> str:
    """
    Format a DICOM DA value (YYYYMMDD) as DD/MM/YYYY.

    Values that are not eight digits are returned unchanged.
    """
    text = (value or "").strip()
    if len(text) != 8 or not text.isdigit():
        return text
    return f"{text[6:8]}/{text[4:6]}/{text[0:4]}"


@dataclass(frozen=True)
class StudySummary:
    """One row of the worklist."""

    study_uid: str
    patient_name: str = ""
    patient_id: str = ""
    study_date: str = ""
    study_description: str = ""
    accession_number: str = ""
    modalities: str = ""
    number_of_series: int = 0
    number_of_instances: int = 0

    @classmethod
    def from_dataset(cls, dataset: Dataset) -> "StudySummary":
        modalities = getattr(dataset, "ModalitiesInStudy", None)
        if isinstance(modalities, (MultiValue, list, tuple)):
            modalities_text = "/".join(str(m) for m in modalities)
        else:
            modalities_text = str(modalities or "")
        return cls(
            study_uid=get_text(dataset, "StudyInstanceUID"),
            patient_name=get_text(dataset, "PatientName"),
            patient_id=get_text(dataset, "PatientID"),
            study_date=format_study_date(get_text(dataset, "StudyDate")),
            study_description=get_text(dataset, "StudyDescription"),
            accession_number=get_text(dataset, "AccessionNumber"),
            modalities=modalities_text,
            number_of_series=get_int(dataset, "NumberOfStudyRelatedSeries"),
            number_of_instances=get_int(dataset, "NumberOfStudyRelatedInstances"),
        )


@dataclass(frozen=True)
class SeriesSummary:
    """One entry of the series panel."""

    series_uid: str
    study_uid: str = ""
    series_number: int = 0
    series_description: str = ""
    modality: str = ""
    number_of_instances: int = 0

    @classmethod
    def from_dataset(cls, dataset: Dataset, study_uid: str = "") -> "SeriesSummary":
        return cls(
            series_uid=get_text(dataset, "SeriesInstanceUID"),
            study_uid=get_text(dataset, "StudyInstanceUID", study_uid),
            series_number=get_int(dataset, "SeriesNumber"),
            series_description=get_text(dataset, "SeriesDescription"),
            modality=get_text(dataset, "Modality"),
            number_of_instances=get_int(dataset, "NumberOfSeriesRelatedInstances"),
        )


@dataclass(frozen=True)
class InstanceSummary:
    """One instance of a series as listed by QIDO-RS."""

    sop_instance_uid: str
    series_uid: str = ""
    study_uid: str = ""
    instance_number: int = 0
    rows: int = 0
    columns: int = 0
    number_of_frames: int = 1

    @property
    def is_multiframe(self) -> bool:
        return self.number_of_frames > 1

    @classmethod
    def from_dataset(cls, dataset: Dataset, study_uid: str = "", series_uid: str = "") -> "InstanceSummary":
        return cls(
            sop_instance_uid=get_text(dataset, "SOPInstanceUID"),
            series_uid=get_text(dataset, "SeriesInstanceUID", series_uid),
            study_uid=get_text(dataset, "StudyInstanceUID", study_uid),
            instance_number=get_int(dataset, "InstanceNumber"),
            rows=get_int(dataset, "Rows"),
            columns=get_int(dataset, "Columns"),
            number_of_frames=get_frame_count(dataset),
        )


@dataclass(frozen=True)
class MultiFrameSource:
    """
    A single multi-frame instance navigated frame by frame.

    Frame numbers handed to the data source are 1-based: stack index i maps to
    frame i + 1.
    """

    study_uid: str
    series_uid: str
    instance_uid: str
    frame_count: int
    rows: int = 0
    columns: int = 0
    bits_allocated: int = 16
    pixel_representation: int = 0
    samples_per_pixel: int = 1
    window_center: Optional[float] = None
    window_width: Optional[float] = None
    rescale_slope: float = 1.0
    rescale_intercept: float = 0.0

    def frame_number(self, index: int) -> int:
        return index + 1

    @classmethod
    def from_dataset(cls, dataset: Dataset, study_uid: str, series_uid: str, instance_uid: str) -> "MultiFrameSource":
        center = _first(getattr(dataset, "WindowCenter", None))
        width = _first(getattr(dataset, "WindowWidth", None))
        return cls(
            study_uid=study_uid,
            series_uid=series_uid,
            instance_uid=instance_uid,
            frame_count=get_frame_count(dataset),
            rows=get_int(dataset, "Rows"),
            columns=get_int(dataset, "Columns"),
            bits_allocated=get_int(dataset, "BitsAllocated", 16),
            pixel_representation=get_int(dataset, "PixelRepresentation", 0),
            samples_per_pixel=get_int(dataset, "SamplesPerPixel", 1),
            window_center=float(center) if center not in (None, "") else None,
            window_width=float(width) if width not in (None, "") else None,
            rescale_slope=float(_first(getattr(dataset, "RescaleSlope", 1.0)) or 1.0),
            rescale_intercept=float(_first(getattr(dataset, "RescaleIntercept", 0.0)) or 0.0),
        )


@dataclass(frozen=True)
class DisplayMetadata:
    """
    Overlay text for one image.

    Window values are rounded integers taken from the first value of a
    multi-valued element; None when absent.
    """

    study_date: str = ""
    series_description: str = ""
    patient_name: str = ""
    patient_id: str = ""
    window_width: Optional[int] = None
    window_center: Optional[int] = None
    number_of_frames: int = 1
    rows: int = 0
    columns: int = 0

    @classmethod
    def from_dataset(cls, dataset: Dataset) -> "DisplayMetadata":
        return cls(
            study_date=format_study_date(get_text(dataset, "StudyDate")),
            series_description=get_text(dataset, "SeriesDescription"),
            patient_name=get_text(dataset, "PatientName"),
            patient_id=get_text(dataset, "PatientID"),
            window_width=_rounded(getattr(dataset, "WindowWidth", None)),
            window_center=_rounded(getattr(dataset, "WindowCenter", None)),
            number_of_frames=get_frame_count(dataset),
            rows=get_int(dataset, "Rows"),
            columns=get_int(dataset, "Columns"),
        )

    def window_level_text(self) -> str:
        """Overlay text such as "W: 400 L: 40", empty when the values are unknown."""
        if self.window_width is None or self.window_center is None:
            return ""
        return f"W: {self.window_width} L: {self.window_center}"


def _rounded(value: Any) -> Optional[int]:
    value = _first(value)
    if value is None or value == "":
        return None
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return None
