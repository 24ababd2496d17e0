from __future__ import annotations

import asyncio

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from faceattend.errors import NoUsableGalleryError
from faceattend.face.enrollment import EnrollmentRecord
from faceattend.face.gallery import DescriptorVector, Gallery, GalleryEntry
from faceattend.interfaces import FaceDescriptorService
from faceattend.utils.log import get_logger

logger = get_logger(__name__)


@dataclass
class GalleryLoaderConfig:
    # Max records extracted at the same time. 1 = strictly sequential.
    concurrency: int = 4


class RecordStatus(str, Enum):
    LOADED = "loaded"
    NO_FACE = "no_face"
    EXTRACTION_FAILED = "extraction_failed"
    INVALID = "invalid"
    DUPLICATE = "duplicate"
    DIMENSION_MISMATCH = "dimension_mismatch"


@dataclass
class RecordResult:
    record: EnrollmentRecord
    status: RecordStatus
    entry: Optional[GalleryEntry] = None
    reason: str = ""


@dataclass
class GalleryLoadResult:
    gallery: Gallery
    records: List[RecordResult] = field(default_factory=list)

    @property
    def warnings(self) -> List[str]:
        return [r.reason for r in self.records if r.status != RecordStatus.LOADED]

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.records if r.status != RecordStatus.LOADED)


class GalleryLoader:
    """Builds a Gallery from enrollment records through the descriptor service.

    Every record resolves on its own into a RecordResult; a failing record is
    skipped with a warning and never aborts the batch. The gallery keeps input
    order whatever order the extractions finish in.
    """

    def __init__(self, service: FaceDescriptorService, config: Optional[GalleryLoaderConfig] = None):
        self.service = service
        self.config = config or GalleryLoaderConfig()

    async def _extract(self, record: EnrollmentRecord, sem: asyncio.Semaphore) -> RecordResult:
        if not str(record.identity or "").strip():
            return RecordResult(record, RecordStatus.INVALID, reason=f"{record.image_reference}: 缺少身份标签")

        async with sem:
            try:
                image = await self.service.fetch_image(record.image_reference)
                embedding = await self.service.extract_descriptor(image)
            except Exception as e:
                return RecordResult(
                    record, RecordStatus.EXTRACTION_FAILED, reason=f"{record.identity}: 特征提取失败 ({e})"
                )

        if embedding is None:
            return RecordResult(
                record, RecordStatus.NO_FACE, reason=f"{record.identity}: 在 {record.image_reference} 中未检测到人脸"
            )

        try:
            desc = DescriptorVector(identity=record.identity, embedding=embedding)
        except ValueError as e:
            return RecordResult(record, RecordStatus.INVALID, reason=f"{record.identity}: {e}")

        return RecordResult(record, RecordStatus.LOADED, entry=GalleryEntry(descriptor=desc, source=record.image_reference))

    async def load(self, records: Sequence[EnrollmentRecord]) -> GalleryLoadResult:
        """Extract every record and assemble the gallery.

        Duplicate identities keep the first record in input order. The first
        loaded record fixes the embedding dimension; later ones of another
        length are skipped. Raises NoUsableGalleryError when nothing loads.
        """
        records = list(records)
        logger.info(f"开始构建图库: {len(records)} 条登记记录")

        sem = asyncio.Semaphore(max(1, int(self.config.concurrency)))
        results: List[RecordResult] = list(await asyncio.gather(*(self._extract(r, sem) for r in records)))

        entries: List[GalleryEntry] = []
        seen = set()
        dim = 0
        for i, res in enumerate(results):
            if res.status != RecordStatus.LOADED or res.entry is None:
                continue
            entry = res.entry
            if entry.identity in seen:
                results[i] = RecordResult(
                    res.record,
                    RecordStatus.DUPLICATE,
                    reason=f"{entry.identity}: 重复登记，保留第一条，忽略 {res.record.image_reference}",
                )
                continue
            if dim == 0:
                dim = entry.descriptor.dimension
            elif entry.descriptor.dimension != dim:
                results[i] = RecordResult(
                    res.record,
                    RecordStatus.DIMENSION_MISMATCH,
                    reason=f"{entry.identity}: 特征维度 {entry.descriptor.dimension} 与图库维度 {dim} 不一致",
                )
                continue
            seen.add(entry.identity)
            entries.append(entry)

        result = GalleryLoadResult(gallery=Gallery(entries), records=results)
        for warning in result.warnings:
            logger.warning(warning)

        if not entries:
            raise NoUsableGalleryError(f"no usable gallery entries from {len(records)} records", result.warnings)

        logger.info(f"图库构建完成: {len(entries)}/{len(records)} 条记录可用")
        return result
