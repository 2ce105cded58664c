from __future__ import annotations

from typing import Dict, Iterable, Tuple

import numpy as np

from .config import EDGE_POLICIES
from .errors import InvalidLabelError, ManifestParseError


NOT_FOUND = -1


class LabelRegistry:
    """Ordered label alphabet and the label vectors derived from it.

    A label at alphabet position ``i`` writes slot ``i + label_offset`` of a
    vector of length ``len(labels) + 1``; the remaining slot is never written
    by a one-hot encoding.
    """

    def __init__(self, labels: Iterable[str], label_offset: int = 0) -> None:
        ordered = tuple(labels)
        if not ordered:
            raise ManifestParseError("Label alphabet is empty")
        for label in ordered:
            if not isinstance(label, str) or not label:
                raise ManifestParseError("Labels must be non-empty strings, got {0!r}".format(label))
        if len(set(ordered)) != len(ordered):
            raise ManifestParseError("Label alphabet contains duplicates: {0}".format(list(ordered)))
        if int(label_offset) not in (0, 1):
            raise ValueError("label_offset must be 0 or 1")

        self._labels: Tuple[str, ...] = ordered
        self._index: Dict[str, int] = {label: idx for idx, label in enumerate(ordered)}
        self.label_offset = int(label_offset)

    @classmethod
    def from_manifest(cls, manifest, default_offset: int = 0) -> "LabelRegistry":
        offset = manifest.label_offset if manifest.label_offset is not None else default_offset
        return cls(manifest.labels, label_offset=offset)

    @property
    def labels(self) -> Tuple[str, ...]:
        return self._labels

    @property
    def vector_size(self) -> int:
        return len(self._labels) + 1

    def __len__(self) -> int:
        return len(self._labels)

    def __contains__(self, label: object) -> bool:
        return label in self._index

    def index_of(self, label: str) -> int:
        return self._index.get(label, NOT_FOUND)

    def require(self, label: str) -> int:
        cursor = self.index_of(label)
        if cursor == NOT_FOUND:
            raise InvalidLabelError(label, self._labels)
        return cursor

    def next_index(self, cursor: int, edge: str = "wrap") -> int:
        if edge not in EDGE_POLICIES:
            raise ValueError("Unknown edge policy: {0!r}".format(edge))
        nxt = int(cursor) + 1
        if nxt < len(self._labels):
            return nxt
        if edge == "reject":
            last = self._labels[cursor]
            raise InvalidLabelError(
                last,
                message="Label {0!r} is last in the alphabet and has no successor to morph into".format(last),
            )
        return 0

    def slot(self, cursor: int) -> int:
        return int(cursor) + self.label_offset

    def zeros(self) -> np.ndarray:
        return np.zeros((self.vector_size,), dtype=np.float32)

    def one_hot(self, label: str) -> np.ndarray:
        cursor = self.require(label)
        vec = self.zeros()
        vec[self.slot(cursor)] = 1.0
        return vec

    def blend(self, label: str, weight: float, edge: str = "wrap") -> np.ndarray:
        """Weight ``1 - weight`` on ``label`` and ``weight`` on the next label."""
        cursor = self.require(label)
        nxt = self.next_index(cursor, edge)
        w = float(np.clip(weight, 0.0, 1.0))
        vec = self.zeros()
        vec[self.slot(cursor)] = 1.0 - w
        vec[self.slot(nxt)] += w
        return vec
