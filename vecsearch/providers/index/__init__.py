"""ANN index structures and the registry that maps an IndexKind to its class."""

from __future__ import annotations

from vecsearch.interfaces.ann_index import IAnnIndex
from vecsearch.models.index import IndexKind
from vecsearch.providers.index.flat_index import FlatIndex
from vecsearch.providers.index.hnsw_index import HNSWIndex
from vecsearch.providers.index.ivfflat_index import IVFFlatIndex
from vecsearch.utils.errors import InvalidArgumentError

INDEX_TYPES: dict[IndexKind, type[IAnnIndex]] = {
    IndexKind.FLAT: FlatIndex,
    IndexKind.IVFFLAT: IVFFlatIndex,
    IndexKind.HNSW: HNSWIndex,
}


def index_class(kind: IndexKind) -> type[IAnnIndex]:
    """Return the structure class for a concrete (non-auto) *kind*."""
    try:
        return INDEX_TYPES[IndexKind(kind)]
    except (KeyError, ValueError) as exc:
        raise InvalidArgumentError(f"No index structure for kind {kind!r}") from exc


__all__ = ["INDEX_TYPES", "FlatIndex", "HNSWIndex", "IVFFlatIndex", "index_class"]
