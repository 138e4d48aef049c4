"""
Catalog Store
=============

Keyed document store holding itineraries, activities and distance cache
rows, queryable with Mongo-style filters.

Key Features:
- Filter evaluation shared by all backends: implicit equality, dotted
  paths, array-element matching, $in/$nin, comparisons, $exists,
  case-insensitive $regex, $elemMatch, $and/$or
- Thread-safe in-memory backend
- SQLite backend storing one JSON body per document
- Sorting and limits applied after filtering

Classes:
    CatalogStore: Abstract store interface
    InMemoryCatalogStore: Process-local store
    SQLiteCatalogStore: File-backed store

Author: Hybrid Trip Planner Team
"""

import re
import copy
import json
import sqlite3
import logging
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from ..utils.error_handler import CatalogUnavailable, PersistenceFailed
from ..utils.data_utils import generate_object_id


SortSpec = Sequence[Tuple[str, int]]

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}

_LOGICAL_OPERATORS = ("$and", "$or", "$nor")


# =============================================================================
# FILTER EVALUATION
# =============================================================================

def _resolve_path(value: Any, parts: List[str]) -> List[Any]:
    """Collect every value reachable through a dotted path, descending into arrays"""
    if not parts:
        return [value]

    head, rest = parts[0], parts[1:]
    if isinstance(value, dict):
        if head in value:
            return _resolve_path(value[head], rest)
        return []

    if isinstance(value, list):
        if head.isdigit():
            index = int(head)
            return _resolve_path(value[index], rest) if index < len(value) else []
        results = []
        for element in value:
            if isinstance(element, (dict, list)):
                results.extend(_resolve_path(element, parts))
        return results

    return []


def _candidates(values: List[Any]) -> List[Any]:
    """Values plus the elements of any array values"""
    expanded = []
    for value in values:
        expanded.append(value)
        if isinstance(value, list):
            expanded.extend(value)
    return expanded


def _compile_regex(pattern: Union[str, "re.Pattern"], options: str = "") -> "re.Pattern":
    if isinstance(pattern, re.Pattern):
        return pattern
    flags = 0
    for option in options or "":
        if option not in _REGEX_FLAGS:
            raise ValueError(f"Unsupported regex option: {option!r}")
        flags |= _REGEX_FLAGS[option]
    return re.compile(pattern, flags)


def _equals(candidate: Any, expected: Any) -> bool:
    if isinstance(expected, re.Pattern):
        return isinstance(candidate, str) and expected.search(candidate) is not None
    return candidate == expected


def _equals_any(values: List[Any], expected: Any) -> bool:
    if not values:
        return expected is None
    return any(_equals(candidate, expected) for candidate in _candidates(values))


def _compare(values: List[Any], operator: str, bound: Any) -> bool:
    for candidate in _candidates(values):
        if candidate is None or isinstance(candidate, (list, dict)):
            continue
        try:
            if operator == "$gt" and candidate > bound:
                return True
            if operator == "$gte" and candidate >= bound:
                return True
            if operator == "$lt" and candidate < bound:
                return True
            if operator == "$lte" and candidate <= bound:
                return True
        except TypeError:
            continue
    return False


def _is_operator_dict(condition: Any) -> bool:
    return isinstance(condition, dict) and bool(condition) and all(
        key.startswith("$") for key in condition
    )


def _element_matches(element: Any, condition: Any) -> bool:
    """$elemMatch check of one array element"""
    if isinstance(condition, dict) and any(key in _LOGICAL_OPERATORS for key in condition):
        return isinstance(element, dict) and matches_filter(element, condition)
    if _is_operator_dict(condition):
        return _match_condition([element], condition)
    if isinstance(element, dict) and isinstance(condition, dict):
        return matches_filter(element, condition)
    return False


def _match_condition(values: List[Any], condition: Any) -> bool:
    """Evaluate one field condition against the values found at its path"""
    if not _is_operator_dict(condition):
        return _equals_any(values, condition)

    for operator, argument in condition.items():
        if operator == "$options":
            continue
        if operator == "$eq":
            matched = _equals_any(values, argument)
        elif operator == "$ne":
            matched = not _equals_any(values, argument)
        elif operator == "$in":
            matched = any(_equals_any(values, option) for option in argument)
        elif operator == "$nin":
            matched = not any(_equals_any(values, option) for option in argument)
        elif operator in ("$gt", "$gte", "$lt", "$lte"):
            matched = _compare(values, operator, argument)
        elif operator == "$exists":
            matched = bool(values) == bool(argument)
        elif operator == "$regex":
            pattern = _compile_regex(argument, condition.get("$options", ""))
            matched = any(
                isinstance(candidate, str) and pattern.search(candidate) is not None
                for candidate in _candidates(values)
            )
        elif operator == "$elemMatch":
            matched = any(
                isinstance(value, list) and any(_element_matches(element, argument) for element in value)
                for value in values
            )
        else:
            raise ValueError(f"Unsupported filter operator: {operator}")

        if not matched:
            return False

    return True


def matches_filter(document: Dict, query_filter: Optional[Dict]) -> bool:
    """
    Evaluate a Mongo-style filter against a document

    Args:
        document (Dict): Candidate document
        query_filter (Dict): Filter; empty or None matches everything

    Returns:
        bool: True if the document satisfies every clause

    Raises:
        ValueError: For unsupported operators or regex options
    """
    if not query_filter:
        return True

    for key, condition in query_filter.items():
        if key == "$and":
            if not all(matches_filter(document, clause) for clause in condition):
                return False
        elif key == "$or":
            if not any(matches_filter(document, clause) for clause in condition):
                return False
        elif key == "$nor":
            if any(matches_filter(document, clause) for clause in condition):
                return False
        elif key.startswith("$"):
            raise ValueError(f"Unsupported top-level operator: {key}")
        elif not _match_condition(_resolve_path(document, key.split(".")), condition):
            return False

    return True


def _sort_key(field_path: str):
    def key(document: Dict):
        values = _resolve_path(document, field_path.split("."))
        value = values[0] if values else None
        return (value is not None, value if value is not None else 0)
    return key


def apply_sort_and_limit(documents: List[Dict], sort: Optional[SortSpec],
                         limit: Optional[int]) -> List[Dict]:
    """Stable multi-key sort followed by an optional limit"""
    if sort:
        for field_path, direction in reversed(list(sort)):
            documents.sort(key=_sort_key(field_path), reverse=direction < 0)
    if limit is not None and limit > 0:
        documents = documents[:limit]
    return documents


# =============================================================================
# STORE INTERFACE
# =============================================================================

class CatalogStore(ABC):
    """
    Abstract keyed document store

    Backends provide raw collection scans, inserts and deletes; filtering,
    sorting and limits are shared.
    """

    @abstractmethod
    def _scan(self, collection: str) -> List[Dict]:
        """Return copies of every document in the collection in insertion order"""

    @abstractmethod
    def _insert(self, collection: str, document: Dict) -> None:
        """Store a document that already carries its ``_id``"""

    @abstractmethod
    def _delete(self, collection: str, ids: List[str]) -> int:
        """Delete documents by identity and return how many were removed"""

    def find(self, collection: str, query_filter: Optional[Dict] = None,
             limit: Optional[int] = None, sort: Optional[SortSpec] = None) -> List[Dict]:
        """
        Find documents matching a filter

        Args:
            collection (str): Collection name
            query_filter (Dict): Mongo-style filter
            limit (int): Maximum number of documents
            sort (Sequence[Tuple[str, int]]): (field, 1 | -1) pairs

        Returns:
            List[Dict]: Matching documents

        Raises:
            CatalogUnavailable: If the backend cannot be read or the filter is invalid
        """
        documents = self._scan(collection)
        try:
            matched = [doc for doc in documents if matches_filter(doc, query_filter)]
        except (ValueError, re.error) as e:
            raise CatalogUnavailable(f"Invalid filter for {collection}: {e}") from e
        return apply_sort_and_limit(matched, sort, limit)

    def find_one(self, collection: str, query_filter: Optional[Dict] = None,
                 sort: Optional[SortSpec] = None) -> Optional[Dict]:
        results = self.find(collection, query_filter, limit=1, sort=sort)
        return results[0] if results else None

    def count(self, collection: str, query_filter: Optional[Dict] = None) -> int:
        return len(self.find(collection, query_filter))

    def insert_one(self, collection: str, document: Dict) -> str:
        """
        Insert a document, assigning a 24-hex ``_id`` when missing

        Returns:
            str: Identity of the stored document

        Raises:
            PersistenceFailed: If the identity already exists
            CatalogUnavailable: If the backend cannot be written
        """
        stored = copy.deepcopy(document)
        if stored.get("_id") is None:
            stored["_id"] = generate_object_id()
        stored["_id"] = str(stored["_id"])
        self._insert(collection, stored)
        return stored["_id"]

    def insert_many(self, collection: str, documents: List[Dict]) -> List[str]:
        return [self.insert_one(collection, document) for document in documents]

    def delete_many(self, collection: str, query_filter: Optional[Dict] = None) -> int:
        ids = [doc["_id"] for doc in self.find(collection, query_filter)]
        if not ids:
            return 0
        return self._delete(collection, ids)

    def close(self) -> None:
        """Release backend resources"""


class InMemoryCatalogStore(CatalogStore):
    """
    Process-local catalog store
    Thread-safe; documents are deep-copied on the way in and out
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._collections: Dict[str, "OrderedDict[str, Dict]"] = {}
        self.logger.info("In-memory catalog store initialized")

    def _scan(self, collection: str) -> List[Dict]:
        with self._lock:
            documents = self._collections.get(collection, OrderedDict())
            return [copy.deepcopy(doc) for doc in documents.values()]

    def _insert(self, collection: str, document: Dict) -> None:
        with self._lock:
            documents = self._collections.setdefault(collection, OrderedDict())
            if document["_id"] in documents:
                raise PersistenceFailed(f"Duplicate _id {document['_id']} in {collection}")
            documents[document["_id"]] = document

    def _delete(self, collection: str, ids: List[str]) -> int:
        with self._lock:
            documents = self._collections.get(collection, OrderedDict())
            removed = 0
            for doc_id in ids:
                if documents.pop(doc_id, None) is not None:
                    removed += 1
            return removed


class SQLiteCatalogStore(CatalogStore):
    """
    SQLite-backed catalog store
    Each document is stored as a JSON body keyed by (collection, _id)
    """

    def __init__(self, db_path: str):
        """
        Initialize SQLite catalog store

        Args:
            db_path (str): Database file path, or ":memory:"
        """
        self.logger = logging.getLogger(__name__)
        self.db_path = db_path
        self._lock = threading.RLock()

        try:
            self._connection = sqlite3.connect(db_path, check_same_thread=False)
            with self._connection:
                self._connection.execute(
                    "CREATE TABLE IF NOT EXISTS documents ("
                    " collection TEXT NOT NULL,"
                    " id TEXT NOT NULL,"
                    " body TEXT NOT NULL,"
                    " PRIMARY KEY (collection, id))"
                )
        except sqlite3.Error as e:
            raise CatalogUnavailable(f"Cannot open catalog database {db_path}: {e}") from e

        self.logger.info(f"SQLite catalog store initialized at {db_path}")

    def _scan(self, collection: str) -> List[Dict]:
        try:
            with self._lock:
                rows = self._connection.execute(
                    "SELECT body FROM documents WHERE collection = ? ORDER BY rowid",
                    (collection,)
                ).fetchall()
        except sqlite3.Error as e:
            raise CatalogUnavailable(f"Failed to read {collection}: {e}") from e
        return [json.loads(row[0]) for row in rows]

    def _insert(self, collection: str, document: Dict) -> None:
        body = json.dumps(document, default=str)
        try:
            with self._lock, self._connection:
                self._connection.execute(
                    "INSERT INTO documents (collection, id, body) VALUES (?, ?, ?)",
                    (collection, document["_id"], body)
                )
        except sqlite3.IntegrityError as e:
            raise PersistenceFailed(f"Duplicate _id {document['_id']} in {collection}") from e
        except sqlite3.Error as e:
            raise CatalogUnavailable(f"Failed to write {collection}: {e}") from e

    def _delete(self, collection: str, ids: List[str]) -> int:
        try:
            with self._lock, self._connection:
                cursor = self._connection.executemany(
                    "DELETE FROM documents WHERE collection = ? AND id = ?",
                    [(collection, doc_id) for doc_id in ids]
                )
                return cursor.rowcount
        except sqlite3.Error as e:
            raise CatalogUnavailable(f"Failed to delete from {collection}: {e}") from e

    def close(self) -> None:
        with self._lock:
            self._connection.close()
        self.logger.info("SQLite catalog store closed")


def create_catalog_store(settings) -> CatalogStore:
    """Build the backend named by ``settings.CATALOG_BACKEND``"""
    if settings.CATALOG_BACKEND == "sqlite":
        return SQLiteCatalogStore(settings.CATALOG_SQLITE_PATH)
    return InMemoryCatalogStore()
