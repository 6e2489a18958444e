"""
In-memory collaborators for viewport engine tests.

FakeToolkit records every rendering call and can destroy engines on demand;
FakeDataSource serves studies, series, instances, frames and thumbnails from
dictionaries. Both can hold a request open on an asyncio.Event ("gate") or fail
it, so tests control the interleaving of concurrent loads.
"""

import asyncio
from io import BytesIO
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from PIL import Image
from pydicom.dataset import Dataset

from core.data_source import DicomDataSource
from core.dicom_models import InstanceSummary, MultiFrameSource, SeriesSummary, StudySummary
from core.rendering_toolkit import Camera, EngineDestroyedError, ImageInfo, RenderingToolkit


BASE_URL = "http://test/dicom-web"


def image_id(study_uid: str, series_uid: str, sop_uid: str) -> str:
    return f"wadouri:{BASE_URL}/studies/{study_uid}/series/{series_uid}/instances/{sop_uid}"


def png_bytes(width: int = 64, height: int = 32) -> bytes:
    output = BytesIO()
    Image.new("L", (width, height), color=128).save(output, format="PNG")
    return output.getvalue()


class FakeAnchor:
    """Display anchor with a switchable attached flag."""

    def __init__(self, attached: bool = True):
        self.attached = attached
        self.surfaces: List[Any] = []

    def is_attached(self) -> bool:
        return self.attached


class FakeEngine:
    def __init__(self, engine_id: str):
        self.engine_id = engine_id
        self.destroyed = False
        self.enabled: Dict[str, Any] = {}


class FakeToolkit(RenderingToolkit):
    """Rendering toolkit that records calls instead of drawing."""

    def __init__(self, image_size: Tuple[int, int] = (256, 128), canvas_size: Tuple[int, int] = (512, 512)):
        self.image_size = image_size
        self.canvas_size = canvas_size
        self.engines: List[FakeEngine] = []
        self.calls: List[Tuple[Any, ...]] = []
        self.loaded: List[str] = []
        self.fail_ids: Set[str] = set()
        self.gates: Dict[str, asyncio.Event] = {}
        self.cache: Set[str] = set()
        self.purge_count = 0
        # surface_id -> image id (or "frame:<n>") on screen
        self.displayed: Dict[str, str] = {}
        self.cameras: Dict[str, Camera] = {}
        self.stacks: Dict[str, List[str]] = {}
        self.tool_groups: Dict[str, Dict[str, Any]] = {}
        self.tool_groups_created = 0
        self.tool_groups_destroyed = 0

    # --- helpers ---

    def _check(self, engine: FakeEngine) -> None:
        if engine.destroyed:
            raise EngineDestroyedError(engine.engine_id)

    def kill(self, engine: FakeEngine) -> None:
        """Destroy an engine behind the caller's back."""
        engine.destroyed = True

    def live_engines(self) -> List[FakeEngine]:
        return [e for e in self.engines if not e.destroyed]

    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls]

    # --- engines ---

    def create_engine(self, engine_id: str) -> FakeEngine:
        engine = FakeEngine(engine_id)
        self.engines.append(engine)
        self.calls.append(("create_engine", engine_id))
        return engine

    def is_engine_destroyed(self, engine: FakeEngine) -> bool:
        return engine.destroyed

    def enable(self, engine, surface_id, anchor, viewport_type="stack") -> None:
        self._check(engine)
        engine.enabled[surface_id] = anchor
        anchor.surfaces.append(surface_id)
        self.calls.append(("enable", engine.engine_id, surface_id))

    def disable(self, engine, surface_id) -> None:
        self._check(engine)
        anchor = engine.enabled.pop(surface_id, None)
        if anchor is not None and surface_id in anchor.surfaces:
            anchor.surfaces.remove(surface_id)
        self.calls.append(("disable", engine.engine_id, surface_id))

    def destroy_engine(self, engine) -> None:
        engine.destroyed = True
        self.calls.append(("destroy_engine", engine.engine_id))

    def resize(self, engine, keep_camera=True) -> None:
        self._check(engine)
        self.calls.append(("resize", engine.engine_id, keep_camera))

    # --- images ---

    async def load_image(self, image_id: str) -> ImageInfo:
        self.loaded.append(image_id)
        gate = self.gates.get(image_id)
        if gate is not None:
            await gate.wait()
        else:
            await asyncio.sleep(0)
        if image_id in self.fail_ids:
            raise IOError(f"cannot load {image_id}")
        self.cache.add(image_id)
        return ImageInfo(image_id, self.image_size[0], self.image_size[1], 400.0, 40.0)

    def set_stack(self, engine, surface_id, image_ids: Sequence[str], index: int = 0) -> None:
        self._check(engine)
        self.stacks[surface_id] = list(image_ids)
        if image_ids:
            self.displayed[surface_id] = image_ids[index]
        else:
            self.displayed.pop(surface_id, None)
        self.calls.append(("set_stack", surface_id, len(image_ids), index))

    def set_image_index(self, engine, surface_id, index: int) -> None:
        self._check(engine)
        self.displayed[surface_id] = self.stacks[surface_id][index]
        self.calls.append(("set_image_index", surface_id, index))

    def display_frame(self, engine, surface_id, frame: bytes, source: MultiFrameSource, frame_number: int) -> ImageInfo:
        self._check(engine)
        self.displayed[surface_id] = f"frame:{frame_number}"
        self.calls.append(("display_frame", surface_id, frame_number))
        return ImageInfo(f"{source.instance_uid}/frames/{frame_number}", source.columns, source.rows)

    def render(self, engine, surface_id) -> None:
        self._check(engine)
        self.calls.append(("render", surface_id))

    def get_camera(self, engine, surface_id) -> Camera:
        self._check(engine)
        return self.cameras.get(surface_id, Camera())

    def set_camera(self, engine, surface_id, camera: Camera) -> None:
        self._check(engine)
        self.cameras[surface_id] = camera

    def get_canvas_size(self, engine, surface_id) -> Tuple[int, int]:
        self._check(engine)
        return self.canvas_size

    def purge_cache(self) -> None:
        self.cache.clear()
        self.purge_count += 1

    # --- tools ---

    def create_tool_group(self, group_id: str) -> None:
        self.tool_groups[group_id] = {"tools": [], "active": {}, "surfaces": []}
        self.tool_groups_created += 1

    def add_tool(self, group_id: str, tool_name: str) -> None:
        self.tool_groups[group_id]["tools"].append(tool_name)

    def set_tool_active(self, group_id: str, tool_name: str, mouse_button: int) -> None:
        self.tool_groups[group_id]["active"][tool_name] = mouse_button

    def add_surface(self, group_id: str, engine_id: str, surface_id: str) -> None:
        self.tool_groups[group_id]["surfaces"].append((engine_id, surface_id))

    def destroy_tool_group(self, group_id: str) -> None:
        if self.tool_groups.pop(group_id, None) is not None:
            self.tool_groups_destroyed += 1


class FakeDataSource(DicomDataSource):
    """Dictionary-backed data source."""

    def __init__(self):
        self.studies: List[StudySummary] = []
        self.series: Dict[str, List[SeriesSummary]] = {}
        self.instances: Dict[Tuple[str, str], List[InstanceSummary]] = {}
        self.metadata: Dict[str, Dataset] = {}
        self.thumbnail_data: bytes = png_bytes()
        self.frame_requests: List[int] = []
        self.metadata_requests: List[str] = []
        self.thumbnail_requests: List[str] = []
        self.fail_keys: Set[str] = set()
        self.gates: Dict[str, asyncio.Event] = {}

    async def _pass(self, key: str) -> None:
        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()
        else:
            await asyncio.sleep(0)
        if key in self.fail_keys:
            raise IOError(f"request failed: {key}")

    # --- fixtures ---

    def add_series(self, study_uid: str, series_uid: str, count: int, series_number: int = 1,
                   frames: int = 1) -> List[str]:
        """Register a series of count instances; returns their image ids."""
        summary = SeriesSummary(series_uid=series_uid, study_uid=study_uid, series_number=series_number,
                                series_description=f"Series {series_number}", modality="CT",
                                number_of_instances=count)
        self.series.setdefault(study_uid, []).append(summary)
        instances = []
        for n in range(count):
            sop = f"{series_uid}.{n + 1}"
            instances.append(InstanceSummary(sop_instance_uid=sop, series_uid=series_uid, study_uid=study_uid,
                                             instance_number=n + 1, rows=4, columns=4,
                                             number_of_frames=frames))
            ds = Dataset()
            ds.PatientName = "DOE^JANE"
            ds.PatientID = "P1"
            ds.StudyDate = "20240131"
            ds.SeriesDescription = f"Series {series_number}"
            ds.WindowCenter = 40
            ds.WindowWidth = 400
            ds.Rows = 4
            ds.Columns = 4
            ds.BitsAllocated = 8
            ds.PixelRepresentation = 0
            ds.SamplesPerPixel = 1
            if frames > 1:
                ds.NumberOfFrames = frames
            self.metadata[sop] = ds
        self.instances[(study_uid, series_uid)] = instances
        return [image_id(study_uid, series_uid, i.sop_instance_uid) for i in instances]

    # --- DicomDataSource ---

    async def search_studies(self, params: Optional[Dict[str, Any]] = None) -> List[StudySummary]:
        await self._pass("search")
        return list(self.studies)

    async def get_study(self, study_uid: str) -> Optional[StudySummary]:
        await self._pass(f"study:{study_uid}")
        for study in self.studies:
            if study.study_uid == study_uid:
                return study
        return None

    async def list_series(self, study_uid: str) -> List[SeriesSummary]:
        await self._pass(f"series:{study_uid}")
        return list(self.series.get(study_uid, []))

    async def list_instances(self, study_uid: str, series_uid: str) -> List[InstanceSummary]:
        await self._pass(f"instances:{series_uid}")
        return list(self.instances.get((study_uid, series_uid), []))

    async def get_image_ids(self, study_uid: str, series_uid: str) -> List[str]:
        instances = await self.list_instances(study_uid, series_uid)
        return [self.image_id_for(study_uid, series_uid, i.sop_instance_uid) for i in instances]

    async def get_instance_metadata(self, study_uid: str, series_uid: str, sop_instance_uid: str) -> Dataset:
        self.metadata_requests.append(sop_instance_uid)
        await self._pass(f"metadata:{sop_instance_uid}")
        return self.metadata[sop_instance_uid]

    async def retrieve_instance(self, image_id: str) -> Dataset:
        raise NotImplementedError

    async def get_frame(self, study_uid: str, series_uid: str, sop_instance_uid: str, frame_number: int) -> bytes:
        self.frame_requests.append(frame_number)
        await self._pass(f"frame:{frame_number}")
        return bytes([frame_number]) * 16

    async def get_thumbnail(self, study_uid, series_uid, sop_instance_uid, quality=75, viewport="128,128") -> bytes:
        self.thumbnail_requests.append(sop_instance_uid)
        await self._pass(f"thumbnail:{series_uid}")
        return self.thumbnail_data

    def image_id_for(self, study_uid: str, series_uid: str, sop_instance_uid: str) -> str:
        return image_id(study_uid, series_uid, sop_instance_uid)

    def frame_image_ids(self, study_uid: str, series_uid: str, sop_instance_uid: str, frame_count: int) -> List[str]:
        base = image_id(study_uid, series_uid, sop_instance_uid)
        return [f"{base}/frames/{n}" for n in range(1, frame_count + 1)]
