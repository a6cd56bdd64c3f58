"""
Primitive catalog.

Holds the read-only set of primitives a composition can use. Primitives are
shared by reference; lookups never copy them.
"""

import json
import logging
import os
from typing import Dict, List, Optional, Iterable, Any

from .config import PROJECT_ROOT
from .exceptions import CatalogUnavailableError, PrimitiveNotFoundError
from .models import Primitive


logger = logging.getLogger(__name__)


DEFAULT_CATALOG_PATH = os.path.join(PROJECT_ROOT, 'data', 'primitives.json')


class PrimitiveCatalog:
    """In-memory primitive catalog keyed by primitive id."""

    def __init__(self, primitives: Optional[Iterable[Primitive]] = None):
        self._primitives: Dict[str, Primitive] = {}
        for primitive in primitives or []:
            self._primitives[primitive.id] = primitive

    def __len__(self) -> int:
        return len(self._primitives)

    def __contains__(self, primitive_id: str) -> bool:
        return primitive_id in self._primitives

    def get(self, primitive_id: str) -> Optional[Primitive]:
        """Get a primitive by id, or None."""
        return self._primitives.get(primitive_id)

    def require(self, primitive_id: str) -> Primitive:
        """Get a primitive by id, raising if it is unknown."""
        primitive = self._primitives.get(primitive_id)
        if primitive is None:
            raise PrimitiveNotFoundError(primitive_id)
        return primitive

    def all(self) -> List[Primitive]:
        """All primitives in load order."""
        return list(self._primitives.values())

    def by_category(self, category: str) -> List[Primitive]:
        return [p for p in self._primitives.values() if p.category == category.lower()]

    def as_lookup(self, primitive_ids: Optional[Iterable[str]] = None) -> Dict[str, Primitive]:
        """Return an id -> primitive mapping, optionally limited to some ids.

        Unknown ids are left out; validation reports them.
        """
        if primitive_ids is None:
            return dict(self._primitives)
        return {pid: self._primitives[pid] for pid in primitive_ids if pid in self._primitives}

    @classmethod
    def from_dicts(cls, records: Iterable[Dict[str, Any]]) -> 'PrimitiveCatalog':
        return cls(Primitive.from_dict(record) for record in records)


def load_catalog(path: Optional[str] = None) -> PrimitiveCatalog:
    """Load the primitive catalog from a JSON file.

    The file holds either a list of primitive records or an object with a
    ``primitives`` list.
    """
    path = path or DEFAULT_CATALOG_PATH
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to load primitive catalog from {path}: {e}")
        raise CatalogUnavailableError(f"Primitive catalog unavailable: {e}", path=path)

    records = data.get('primitives', []) if isinstance(data, dict) else data
    try:
        catalog = PrimitiveCatalog.from_dicts(records)
    except (KeyError, TypeError, AttributeError) as e:
        logger.error(f"Malformed primitive record in {path}: {e}")
        raise CatalogUnavailableError(f"Malformed primitive catalog: {e}", path=path)

    logger.info(f"Loaded {len(catalog)} primitives from {path}")
    return catalog
