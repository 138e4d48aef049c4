"""
Semantic Activity Search
========================

Fetches candidate activities from Vertex AI Search (Discovery Engine) and
adapts its untyped documents into catalog activities.

Key Features:
- Natural-language query built from activity tags and location text
- Query expansion and spell correction left to the service
- Explicit adapter from structData documents to Activity with named
  default-fill rules for every missing field
- NotConfigured / DependencyUnavailable signalling so callers fall back
  to the catalog

Author: Hybrid Trip Planner Team
"""

import re
import math
import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import requests

from .data_models import Activity, Address, CapacityRange, TimeSlot
from ..utils.error_handler import ErrorHandler, NotConfigured, DependencyUnavailable
from config import config


SEARCH_ENDPOINT = (
    "https://discoveryengine.googleapis.com/v1/projects/{project}/locations/{location}"
    "/dataStores/{data_store}/servingConfigs/{serving_config}:search"
)

DEFAULT_QUERY = "activities"
PAGE_SIZE = 20

# Default-fill rules for search documents
DEFAULT_DURATION_MINUTES = 120
DEFAULT_CAPACITY = (1, 20)
DEFAULT_COUNTRY = "USA"

_OBJECT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")
_TIME_SLOT_PATTERN = re.compile(r"^\s*(\d{1,2}:\d{2})\s*-\s*(\d{1,2}:\d{2})\s*$")


@dataclass
class SearchHit:
    """
    One semantic search result

    Attributes:
        id (str): Result identity reported by the service
        score (float): Relevance score (model score, or rank-derived)
        fields (Dict): Raw structData document
    """
    id: str
    score: float
    fields: Dict


def build_search_query(tags: Sequence[str], location_text: str = "") -> str:
    """Join tags and location text into one query, "activities" when both are empty"""
    parts = [tag.strip() for tag in tags if tag and tag.strip()]
    if location_text and location_text.strip():
        parts.append(location_text.strip())
    return " ".join(parts) if parts else DEFAULT_QUERY


def _text_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(part).strip() for part in value if part is not None and str(part).strip()]


def _number(value: Any, default: float) -> float:
    """Finite float of ``value``, or ``default`` for missing, malformed, infinite or NaN input"""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def parse_external_id(value: Any) -> Optional[str]:
    """
    Map an external identifier onto the catalog's 24-hex identity

    24-character hex strings (bare or wrapped as {"$oid": ...}) are used as
    is; any other non-empty text is hashed so the same external record
    always maps to the same identity.
    """
    if isinstance(value, dict):
        value = value.get("$oid")
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if _OBJECT_ID_PATTERN.match(text):
        return text.lower()
    return hashlib.md5(text.encode("utf-8")).hexdigest()[:24]


def parse_time_slots(value: Any) -> List[TimeSlot]:
    """Coerce "HH:MM-HH:MM" strings or {"start", "end"} objects into time slots"""
    slots = []
    for raw in value or []:
        if isinstance(raw, dict):
            if raw.get("start") and raw.get("end"):
                slots.append(TimeSlot(start=str(raw["start"]), end=str(raw["end"])))
            continue
        match = _TIME_SLOT_PATTERN.match(str(raw))
        if match:
            slots.append(TimeSlot(start=match.group(1), end=match.group(2)))
    return slots


def activity_from_search_fields(fields: Dict, fallback_id: Optional[str] = None) -> Activity:
    """
    Adapt an untyped search document into an Activity

    Default-fill rules:
        - identity: ``_id`` / ``id`` / ``activity_id``, else the hit id
        - title: ``title`` or ``name``; required
        - description: "<title> activity" when missing
        - activity types: ``activity_types`` or ``activity_type``, else tags
        - address: nested ``address`` or top-level city/state, country "USA"
        - capacity: ``capacity`` {min|minimum, max|maximum} or
          ``min_capacity``/``max_capacity``, default 1-20
        - price: clamped to >= 0; duration: positive, default 120 minutes

    Args:
        fields (Dict): structData document
        fallback_id (str): Identity to use when the document has none

    Returns:
        Activity: Typed activity

    Raises:
        ValueError: If the document has no usable title or identity
    """
    title = str(fields.get("title") or fields.get("name") or "").strip()
    if not title:
        raise ValueError("Search document has no title")

    activity_id = parse_external_id(
        fields.get("_id") or fields.get("id") or fields.get("activity_id") or fallback_id
    )
    if activity_id is None:
        raise ValueError(f"Search document '{title}' has no identity")

    tags = _text_list(fields.get("tags"))
    activity_types = _text_list(fields.get("activity_types") or fields.get("activity_type")) or list(tags)

    description = str(fields.get("description") or "").strip() or f"{title} activity"

    raw_address = fields.get("address")
    if isinstance(raw_address, dict):
        address = Address.from_document(raw_address)
    else:
        address = Address(
            street=str(raw_address or ""),
            city=str(fields.get("city") or ""),
            state=str(fields.get("state") or ""),
            zip_code=str(fields.get("zip") or ""),
            country=str(fields.get("country") or DEFAULT_COUNTRY),
        )

    raw_capacity = fields.get("capacity") if isinstance(fields.get("capacity"), dict) else {}
    minimum = int(_number(
        raw_capacity.get("minimum", raw_capacity.get("min", fields.get("min_capacity"))),
        DEFAULT_CAPACITY[0]
    ))
    maximum = int(_number(
        raw_capacity.get("maximum", raw_capacity.get("max", fields.get("max_capacity"))),
        DEFAULT_CAPACITY[1]
    ))
    minimum = max(0, minimum)
    maximum = max(minimum, maximum)

    duration = int(_number(fields.get("duration_minutes"), DEFAULT_DURATION_MINUTES))
    if duration <= 0:
        duration = DEFAULT_DURATION_MINUTES

    restrictions = fields.get("restrictions") if isinstance(fields.get("restrictions"), dict) else {}

    return Activity(
        id=activity_id,
        title=title,
        description=description,
        activity_types=activity_types,
        tags=tags,
        price_per_person=max(0.0, _number(fields.get("price_per_person"), 0.0)),
        duration_minutes=duration,
        address=address,
        capacity=CapacityRange(minimum=minimum, maximum=maximum),
        min_age=restrictions.get("min_age", fields.get("min_age")),
        max_weight_lbs=restrictions.get("max_weight_lbs", fields.get("max_weight_lbs")),
        min_height_inches=restrictions.get("min_height_inches", fields.get("min_height_inches")),
        daily_time_slots=parse_time_slots(fields.get("daily_time_slots")),
    )


def _model_score(result: Dict) -> Optional[float]:
    """First numeric value found in a result's modelScores, if any"""
    scores = result.get("modelScores") or {}
    for entry in scores.values():
        values = entry.get("values") if isinstance(entry, dict) else entry
        if isinstance(values, (list, tuple)) and values:
            values = values[0]
        try:
            return float(values)
        except (TypeError, ValueError):
            continue
    return None


class VertexSearchClient:
    """
    Vertex AI Search client for bookable activities
    """

    def __init__(self, project_id: Optional[str], data_store_id: Optional[str],
                 access_token: Optional[str] = None, location: str = "global",
                 serving_config: str = "default_config", timeout: int = 10,
                 session: Optional[requests.Session] = None):
        """
        Initialize Vertex AI Search client

        Args:
            project_id (str): Google Cloud project
            data_store_id (str): Discovery Engine data store
            access_token (str): OAuth bearer token
            location (str): Data store location
            serving_config (str): Serving config name
            timeout (int): Request timeout in seconds
            session (requests.Session): HTTP session, created when omitted
        """
        self.logger = logging.getLogger(__name__)
        self.error_handler = ErrorHandler()

        self.project_id = project_id
        self.data_store_id = data_store_id
        self.access_token = access_token
        self.location = location
        self.serving_config = serving_config
        self.timeout = timeout
        self.session = session or requests.Session()

        self.logger.info(f"Vertex Search client initialized (configured={self.is_configured})")

    @classmethod
    def from_config(cls, settings=None, session: Optional[requests.Session] = None) -> "VertexSearchClient":
        settings = settings or config
        return cls(
            project_id=settings.GOOGLE_CLOUD_PROJECT_ID,
            data_store_id=settings.VERTEX_SEARCH_DATA_STORE_ID,
            access_token=settings.GOOGLE_CLOUD_ACCESS_TOKEN,
            location=settings.VERTEX_SEARCH_LOCATION,
            serving_config=settings.VERTEX_SEARCH_SERVING_CONFIG,
            timeout=settings.VERTEX_SEARCH_TIMEOUT,
            session=session,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.project_id and self.data_store_id and self.access_token)

    @property
    def endpoint(self) -> str:
        return SEARCH_ENDPOINT.format(
            project=self.project_id,
            location=self.location,
            data_store=self.data_store_id,
            serving_config=self.serving_config,
        )

    def search(self, tags: Sequence[str], location_text: str = "") -> List[SearchHit]:
        """
        Run a semantic search

        Args:
            tags (Sequence[str]): Requested activity tags
            location_text (str): Free-text location

        Returns:
            List[SearchHit]: Hits in service order

        Raises:
            NotConfigured: If project, data store or token is missing
            DependencyUnavailable: On timeouts, network errors, non-2xx
                responses or unparseable bodies
        """
        if not self.is_configured:
            raise NotConfigured("Vertex AI Search is not configured")

        query = build_search_query(tags, location_text)
        body = {
            "query": query,
            "pageSize": PAGE_SIZE,
            "queryExpansionSpec": {"condition": "AUTO"},
            "spellCorrectionSpec": {"mode": "AUTO"},
        }
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

        self.logger.info(f"Vertex AI Search query: '{query}'")

        try:
            response = self.session.post(self.endpoint, json=body, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise DependencyUnavailable(f"Vertex AI Search timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            self.error_handler.handle_api_error("vertex_search", self.endpoint, exception=e)
            raise DependencyUnavailable(f"Vertex AI Search request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            self.error_handler.handle_api_error(
                "vertex_search", self.endpoint,
                status_code=response.status_code, response_text=response.text
            )
            raise DependencyUnavailable(f"Vertex AI Search returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise DependencyUnavailable("Vertex AI Search returned an unparseable body") from e

        hits = []
        for rank, result in enumerate(payload.get("results") or []):
            document = result.get("document") or {}
            fields = document.get("structData") or {}
            score = _model_score(result)
            hits.append(SearchHit(
                id=str(result.get("id") or document.get("id") or ""),
                score=score if score is not None else 1.0 / (rank + 1),
                fields=fields,
            ))

        self.logger.info(f"Vertex AI Search returned {len(hits)} results")
        return hits

    def search_activities(self, tags: Sequence[str], location_text: str = "") -> List[Activity]:
        """
        Search and adapt hits into activities, skipping malformed documents

        Raises:
            NotConfigured: See ``search``
            DependencyUnavailable: See ``search``
        """
        activities = []
        for hit in self.search(tags, location_text):
            try:
                activities.append(activity_from_search_fields(hit.fields, fallback_id=hit.id or None))
            except (ValueError, TypeError) as e:
                self.error_handler.handle_data_error("Activity", str(e), hit.fields)
        return activities
