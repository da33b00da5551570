"""
File-backed Entity Store.

Reads one JSON file per entity collection from a data directory and hands
the engine an immutable ``ProjectSnapshot``. Collections are independent, so
they are read concurrently; each worker fills its own preallocated slot and
the slots are merged in a fixed order once every worker has finished.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from plangraph.core.store import Entity, NodeType, ProjectSnapshot

logger = logging.getLogger(__name__)

# Collection name -> (file name, entity type), in snapshot order
COLLECTIONS: Dict[str, Tuple[str, NodeType]] = {
    "objectives": ("objectives.json", NodeType.OBJECTIVE),
    "deliverables": ("deliverables.json", NodeType.DELIVERABLE),
    "work_items": ("work_items.json", NodeType.WORK_ITEM),
    "usecases": ("usecases.json", NodeType.USE_CASE),
    "risks": ("risks.json", NodeType.RISK),
    "quality": ("quality.json", NodeType.QUALITY),
    "problems": ("problems.json", NodeType.PROBLEM),
}


def _records(name: str, data: Any) -> List[Dict[str, Any]]:
    """
    Normalize the accepted file shapes into a list of records.

    Accepts a list of records, an ``{id: record}`` mapping, or either of
    those wrapped as ``{"<collection>": ...}``.
    """
    if isinstance(data, dict) and name in data:
        data = data[name]

    if isinstance(data, list):
        return [r for r in data if isinstance(r, dict)]

    if isinstance(data, dict):
        records = []
        for key, value in data.items():
            if isinstance(value, dict):
                record = dict(value)
                record.setdefault("id", key)
                records.append(record)
        return records

    return []


class EntityStore:
    """
    Read-only JSON entity store.

    Parameters
    ----------
    data_dir : Union[str, Path]
        Directory holding the collection files
    max_workers : Optional[int]
        Thread pool size (defaults to one worker per collection)
    """

    def __init__(self, data_dir: Union[str, Path], max_workers: Optional[int] = None):
        self.data_dir = Path(data_dir)
        self.max_workers = max_workers or len(COLLECTIONS)
        logger.info(f"Initialized EntityStore with data dir: {self.data_dir}")

    def load_collection(self, name: str) -> List[Entity]:
        """
        Load one collection.

        Missing files log a warning, unreadable JSON logs an error; both
        yield an empty list. Records without an id are skipped.
        """
        file_name, entity_type = COLLECTIONS[name]
        path = self.data_dir / file_name
        if not path.exists():
            logger.warning(f"{name} file not found: {path}")
            return []

        try:
            with open(path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading {name} from {path}: {e}")
            return []

        entities = []
        for record in _records(name, data):
            if not record.get("id"):
                logger.warning(f"Skipping {name} record without id in {path}")
                continue
            try:
                entities.append(Entity.from_dict(record, entity_type))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping invalid {name} record {record.get('id')}: {e}")
        logger.info(f"Loaded {len(entities)} {name}")
        return entities

    def load_snapshot(self) -> ProjectSnapshot:
        """
        Load every collection concurrently into one snapshot.

        Returns
        -------
        ProjectSnapshot
            Entities in collection order, then file order
        """
        slots: Dict[str, List[Entity]] = {name: [] for name in COLLECTIONS}

        def fill(name: str) -> None:
            slots[name] = self.load_collection(name)

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            # list() re-raises any worker exception here
            list(pool.map(fill, COLLECTIONS))

        snapshot = ProjectSnapshot.of(e for name in COLLECTIONS for e in slots[name])
        logger.info(f"Snapshot loaded: {len(snapshot)} entities from {self.data_dir}")
        return snapshot
