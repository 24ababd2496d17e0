from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from faceattend.config import GALLERY_CACHE_FILENAME, GALLERY_SCHEMA_VERSION
from faceattend.face.enrollment import EnrollmentRecord
from faceattend.utils.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, eq=False)
class DescriptorVector:
    """Face embedding plus the identity it belongs to.

    The embedding is stored as a read-only float32 array and is never
    renormalized here; normalization is the extractor's business.
    """

    identity: str
    embedding: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        name = str(self.identity or "").strip()
        if not name:
            raise ValueError("descriptor identity must be a non-empty string")
        vec = np.array(self.embedding, dtype=np.float32).reshape(-1)
        if vec.size == 0:
            raise ValueError(f"descriptor for {name!r} has an empty embedding")
        vec.setflags(write=False)
        object.__setattr__(self, "identity", name)
        object.__setattr__(self, "embedding", vec)

    @property
    def dimension(self) -> int:
        return int(self.embedding.shape[0])


@dataclass(frozen=True)
class GalleryEntry:
    descriptor: DescriptorVector
    source: str = ""

    @property
    def identity(self) -> str:
        return self.descriptor.identity

    @property
    def embedding(self) -> np.ndarray:
        return self.descriptor.embedding


@dataclass
class GalleryConfig:
    # File name for the persisted gallery snapshot.
    filename: str = GALLERY_CACHE_FILENAME
    # Schema version to support future migrations.
    schema_version: str = GALLERY_SCHEMA_VERSION


class Gallery:
    """Ordered, read-only set of enrolled entries, unique by identity.

    All entries share one embedding dimension. A gallery is built once by the
    loader and replaced wholesale on reload, so the stacked (N, D) matrix used
    by the matcher is computed a single time.
    """

    def __init__(self, entries: Iterable[GalleryEntry] = ()):
        items: Tuple[GalleryEntry, ...] = tuple(entries)
        seen = set()
        dim = 0
        for entry in items:
            if entry.identity in seen:
                raise ValueError(f"duplicate identity in gallery: {entry.identity!r}")
            seen.add(entry.identity)
            if dim == 0:
                dim = entry.descriptor.dimension
            elif entry.descriptor.dimension != dim:
                raise ValueError(
                    f"gallery entry {entry.identity!r} has dimension {entry.descriptor.dimension}, expected {dim}"
                )
        self._entries = items
        self._dimension = dim
        self._matrix: Optional[np.ndarray] = None

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[GalleryEntry]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> GalleryEntry:
        return self._entries[index]

    def __bool__(self) -> bool:
        return bool(self._entries)

    @property
    def entries(self) -> Tuple[GalleryEntry, ...]:
        return self._entries

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def identities(self) -> List[str]:
        return [e.identity for e in self._entries]

    @property
    def matrix(self) -> np.ndarray:
        """(N, D) float32 matrix in gallery order."""
        if self._matrix is None:
            if not self._entries:
                mat = np.zeros((0, 0), dtype=np.float32)
            else:
                mat = np.ascontiguousarray(np.stack([e.embedding for e in self._entries], axis=0))
            mat.setflags(write=False)
            self._matrix = mat
        return self._matrix

    def save(
        self,
        gallery_dir: Path,
        threshold: float,
        records: Optional[Sequence[EnrollmentRecord]] = None,
        config: Optional[GalleryConfig] = None,
    ) -> Path:
        """Pickle the gallery. `records` is the registry it was built from, used to detect stale caches."""
        import pickle

        cfg = config or GalleryConfig()
        gallery_dir = Path(gallery_dir)
        gallery_dir.mkdir(parents=True, exist_ok=True)
        fp = gallery_dir / cfg.filename
        data = {
            "schema_version": cfg.schema_version,
            "threshold": float(threshold),
            "records": _record_keys(records) if records is not None else None,
            "entries": [
                {
                    "identity": e.identity,
                    "source": e.source,
                    "embedding": np.asarray(e.embedding, dtype=np.float32),
                }
                for e in self._entries
            ],
        }
        with open(fp, "wb") as f:
            pickle.dump(data, f)
        return fp

    @classmethod
    def load(
        cls,
        gallery_dir: Path,
        records: Optional[Sequence[EnrollmentRecord]] = None,
        config: Optional[GalleryConfig] = None,
    ) -> Optional["Gallery"]:
        """Read a snapshot written by `save`.

        Returns None (cache miss) when the file is missing, unreadable, of an
        unknown schema, inconsistent, or built from other records than `records`.
        """
        import pickle

        cfg = config or GalleryConfig()
        fp = Path(gallery_dir) / cfg.filename
        if not fp.exists():
            return None

        try:
            with open(fp, "rb") as f:
                data = pickle.load(f)

            if not isinstance(data, dict) or data.get("schema_version") != cfg.schema_version:
                logger.warning(f"图库缓存版本不匹配，忽略: {fp}")
                return None

            if records is not None and data.get("records") != _record_keys(records):
                logger.info(f"登记记录已变化，图库缓存失效: {fp}")
                return None

            entries: List[GalleryEntry] = []
            for item in data.get("entries", []) or []:
                desc = DescriptorVector(identity=item["identity"], embedding=item["embedding"])
                entries.append(GalleryEntry(descriptor=desc, source=str(item.get("source", ""))))
            return cls(entries)
        except Exception as e:
            logger.warning(f"加载图库缓存失败，将重建: {e}")
            return None

    def stats(self) -> Dict[str, object]:
        return {
            "count": len(self._entries),
            "dimension": self._dimension,
            "identities": self.identities,
        }


def _record_keys(records: Sequence[EnrollmentRecord]) -> List[List[str]]:
    return [[str(r.identity), str(r.image_reference)] for r in records]
