from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from faceattend.config import DEFAULT_THRESHOLD
from faceattend.errors import DimensionMismatchError
from faceattend.face.gallery import DescriptorVector, Gallery, GalleryEntry
from faceattend.utils.math import euclidean_distances


@dataclass
class MatcherConfig:
    # Accept iff best distance < threshold. Historically 0.5, tightened to 0.4.
    threshold: float = DEFAULT_THRESHOLD
    # Number of nearest identities kept on the result for debug logging.
    topk_debug: int = 3


@dataclass
class MatchResult:
    best_entry: Optional[GalleryEntry]
    best_distance: float
    accepted: bool
    threshold: float
    empty_gallery: bool = False
    topk: List[Tuple[str, float]] = field(default_factory=list)

    @property
    def identity(self) -> Optional[str]:
        return self.best_entry.identity if self.best_entry is not None else None


class EuclideanMatcher:
    """Nearest-neighbour matcher over a gallery using Euclidean distance.

    Pure: no state besides its config. The scan is vectorised, but the result is
    the same as a linear scan with strict less-than, so the first entry in
    gallery order wins ties.
    """

    def __init__(self, config: Optional[MatcherConfig] = None):
        self.config = config or MatcherConfig()
        if float(self.config.threshold) <= 0.0:
            raise ValueError(f"threshold must be positive, got {self.config.threshold}")

    @property
    def threshold(self) -> float:
        return float(self.config.threshold)

    def match(self, live: DescriptorVector, gallery: Gallery) -> MatchResult:
        """Return the nearest gallery entry and whether it passes the threshold.

        Raises DimensionMismatchError when the live descriptor length differs
        from the gallery dimension. An empty gallery is not an error: the result
        is rejected and flagged `empty_gallery`.
        """
        thr = self.threshold
        if gallery is None or len(gallery) == 0:
            return MatchResult(
                best_entry=None,
                best_distance=float("inf"),
                accepted=False,
                threshold=thr,
                empty_gallery=True,
            )

        if live.dimension != gallery.dimension:
            raise DimensionMismatchError(expected=gallery.dimension, actual=live.dimension)

        dists = euclidean_distances(gallery.matrix, live.embedding)
        # argmin returns the first occurrence of the minimum
        best_idx = int(np.argmin(dists))
        best_dist = float(dists[best_idx])

        topk = int(max(1, self.config.topk_debug))
        order = np.argsort(dists, kind="stable")[:topk]
        topk_list = [(gallery[int(i)].identity, float(dists[int(i)])) for i in order]

        return MatchResult(
            best_entry=gallery[best_idx],
            best_distance=best_dist,
            accepted=best_dist < thr,
            threshold=thr,
            topk=topk_list,
        )
