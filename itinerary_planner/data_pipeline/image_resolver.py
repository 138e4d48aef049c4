"""
Itinerary Image Resolver
========================

Looks up display images for itineraries stored in Google Cloud Storage
under "<itinerary_id>/" object prefixes.

Author: Hybrid Trip Planner Team
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import requests

from ..utils.error_handler import ErrorHandler, NotConfigured, DependencyUnavailable
from config import config


GCS_LIST_URL = "https://storage.googleapis.com/storage/v1/b/{bucket}/o"

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif")


class ImageResolver(ABC):
    """Resolves display image URLs for an itinerary identity"""

    @abstractmethod
    def resolve(self, itinerary_id: str) -> List[str]:
        """
        Raises:
            NotConfigured: If the resolver has no storage to query
            DependencyUnavailable: If the storage lookup fails
        """


class GcsImageResolver(ImageResolver):
    """
    Lists public image objects in a Cloud Storage bucket by itinerary prefix
    """

    def __init__(self, bucket: Optional[str], base_url: str = "https://storage.googleapis.com",
                 timeout: int = 5, session: Optional[requests.Session] = None):
        self.logger = logging.getLogger(__name__)
        self.error_handler = ErrorHandler()
        self.bucket = bucket
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger.info(f"GCS image resolver initialized (bucket={bucket})")

    @classmethod
    def from_config(cls, settings=None, session: Optional[requests.Session] = None) -> "GcsImageResolver":
        settings = settings or config
        return cls(
            bucket=settings.ITINERARY_BUCKET,
            base_url=settings.CLOUD_STORAGE_URL,
            timeout=settings.IMAGE_LOOKUP_TIMEOUT,
            session=session,
        )

    def resolve(self, itinerary_id: str) -> List[str]:
        """
        Public URLs of the image objects stored under the itinerary's prefix

        Args:
            itinerary_id (str): Itinerary identity

        Returns:
            List[str]: Image URLs in object-name order
        """
        if not self.bucket:
            raise NotConfigured("ITINERARY_BUCKET is not set")

        url = GCS_LIST_URL.format(bucket=self.bucket)
        params = {"prefix": f"{itinerary_id}/", "fields": "items(name)"}

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.RequestException as e:
            raise DependencyUnavailable(f"Image listing failed for {itinerary_id}: {e}") from e
        except ValueError as e:
            raise DependencyUnavailable(f"Image listing for {itinerary_id} was unparseable") from e

        names = sorted(
            item["name"] for item in payload.get("items") or []
            if item.get("name", "").lower().endswith(IMAGE_EXTENSIONS)
        )
        self.logger.debug(f"Found {len(names)} images for itinerary {itinerary_id}")
        return [f"{self.base_url}/{self.bucket}/{name}" for name in names]
