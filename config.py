"""
Configuration Management for the Itinerary Planner
==================================================

This module handles:
- Loading environment variables from .env file
- Validating search weights, cache and routing settings
- Providing centralized configuration access
- Setting up default values and logging

Usage:
    from config import config
    threshold = config.MIN_SEARCH_RESULTS
    maps_key = config.GOOGLE_MAPS_API_KEY
"""

import os
import logging
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Config(BaseSettings):
    """
    Centralized configuration class using Pydantic for validation
    Loads settings from environment variables with type checking
    """

    # =============================================================================
    # SEARCH SCORING WEIGHTS
    # =============================================================================

    SEARCH_LOCATION_WEIGHT: float = 35.0
    SEARCH_ACTIVITY_WEIGHT: float = 30.0
    SEARCH_GROUP_SIZE_WEIGHT: float = 15.0
    SEARCH_LODGING_WEIGHT: float = 5.0
    SEARCH_TRANSPORT_WEIGHT: float = 3.0
    SEARCH_TRIP_PACE_WEIGHT: float = 12.0
    SEARCH_MIN_SCORE: float = 15.0

    @field_validator('SEARCH_LOCATION_WEIGHT', 'SEARCH_ACTIVITY_WEIGHT',
                     'SEARCH_GROUP_SIZE_WEIGHT', 'SEARCH_LODGING_WEIGHT',
                     'SEARCH_TRANSPORT_WEIGHT', 'SEARCH_TRIP_PACE_WEIGHT',
                     'SEARCH_MIN_SCORE')
    @classmethod
    def validate_weights(cls, v):
        """Weights and the admission threshold must be non-negative"""
        if v < 0:
            raise ValueError(f"Search weight must be non-negative, got {v}")
        return v

    # Minimum number of high-quality results before generation kicks in
    MIN_SEARCH_RESULTS: int = 5

    # =============================================================================
    # EXTERNAL SERVICES - all optional, absence triggers fallbacks
    # =============================================================================

    GOOGLE_MAPS_API_KEY: Optional[str] = None
    GOOGLE_API_TIMEOUT: int = 10

    GOOGLE_CLOUD_PROJECT_ID: Optional[str] = None
    GOOGLE_CLOUD_ACCESS_TOKEN: Optional[str] = None
    VERTEX_SEARCH_LOCATION: str = "global"
    VERTEX_SEARCH_DATA_STORE_ID: Optional[str] = None
    VERTEX_SEARCH_SERVING_CONFIG: str = "default_config"
    VERTEX_SEARCH_TIMEOUT: int = 10

    ITINERARY_BUCKET: Optional[str] = None
    CLOUD_STORAGE_URL: str = "https://storage.googleapis.com"
    IMAGE_LOOKUP_TIMEOUT: int = 5

    # =============================================================================
    # CATALOG STORE
    # =============================================================================

    CATALOG_BACKEND: str = "memory"
    CATALOG_SQLITE_PATH: str = "./data/catalog.db"
    ITINERARY_COLLECTION: str = "Featured"
    ACTIVITY_COLLECTION: str = "Activities"
    DISTANCE_CACHE_COLLECTION: str = "DistanceCache"

    @field_validator('CATALOG_BACKEND')
    @classmethod
    def validate_catalog_backend(cls, v):
        """Only the in-memory and SQLite backends are available"""
        if v.lower() not in ("memory", "sqlite"):
            raise ValueError(f"CATALOG_BACKEND must be 'memory' or 'sqlite', got {v}")
        return v.lower()

    # =============================================================================
    # DISTANCE CACHE CONFIGURATION
    # =============================================================================

    DISTANCE_CACHE_TTL_STATIC: int = 86400  # 24 hours
    DISTANCE_CACHE_TTL_TRAFFIC: int = 3600  # 1 hour
    DISTANCE_COORD_TOLERANCE: float = 0.0001  # ~10 meters

    # =============================================================================
    # ROUTE OPTIMIZATION PARAMETERS
    # =============================================================================

    MAX_ACTIVITIES_PER_DAY: int = 4
    MIN_TIME_BETWEEN_ACTIVITIES: int = 30  # minutes
    TRAVEL_TIME_BUFFER: float = 0.05  # 5%
    DAY_START_HOUR: int = 9
    DAY_END_HOUR: int = 17
    CONSIDER_TRAFFIC: bool = True

    @field_validator('DAY_START_HOUR', 'DAY_END_HOUR')
    @classmethod
    def validate_hour(cls, v):
        """Day window hours must be valid clock hours"""
        if not 0 <= v <= 23:
            raise ValueError(f"Hour must be between 0 and 23, got {v}")
        return v

    # =============================================================================
    # APPLICATION SETTINGS
    # =============================================================================

    APP_NAME: str = "Itinerary Planner"
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"
    LOG_FILE_PATH: Optional[str] = None
    WORKER_POOL_SIZE: int = 8

    # =============================================================================
    # CONFIGURATION SETUP
    # =============================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    def create_directories(self) -> None:
        """Create directories for file-backed resources if they don't exist"""
        directories = []
        if self.LOG_FILE_PATH:
            directories.append(os.path.dirname(self.LOG_FILE_PATH))
        if self.CATALOG_BACKEND == "sqlite":
            directories.append(os.path.dirname(self.CATALOG_SQLITE_PATH))

        for directory in directories:
            if directory:
                Path(directory).mkdir(parents=True, exist_ok=True)

    def setup_logging(self) -> None:
        """Configure application logging"""
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

        handlers = [logging.StreamHandler()]
        if self.LOG_FILE_PATH:
            handlers.append(logging.FileHandler(self.LOG_FILE_PATH))

        logging.basicConfig(
            level=getattr(logging, self.LOG_LEVEL.upper(), logging.INFO),
            format=log_format,
            handlers=handlers
        )

    def validate_configuration(self) -> bool:
        """
        Validate that all critical configuration is properly set
        Returns True if configuration is valid, raises exception otherwise
        """
        try:
            weight_sum = (self.SEARCH_LOCATION_WEIGHT + self.SEARCH_ACTIVITY_WEIGHT +
                          self.SEARCH_GROUP_SIZE_WEIGHT + self.SEARCH_LODGING_WEIGHT +
                          self.SEARCH_TRANSPORT_WEIGHT + self.SEARCH_TRIP_PACE_WEIGHT)

            if weight_sum <= 0:
                raise ValueError("At least one search weight must be positive")

            if self.SEARCH_MIN_SCORE > weight_sum:
                raise ValueError(
                    f"SEARCH_MIN_SCORE ({self.SEARCH_MIN_SCORE}) exceeds the maximum "
                    f"possible score ({weight_sum})"
                )

            if self.DAY_END_HOUR <= self.DAY_START_HOUR:
                raise ValueError("DAY_END_HOUR must be later than DAY_START_HOUR")

            if self.MIN_SEARCH_RESULTS < 0 or self.WORKER_POOL_SIZE < 1:
                raise ValueError("MIN_SEARCH_RESULTS must be >= 0 and WORKER_POOL_SIZE >= 1")

            return True

        except Exception as e:
            logging.error(f"Configuration validation failed: {e}")
            raise

    @property
    def vertex_search_enabled(self) -> bool:
        return bool(self.GOOGLE_CLOUD_PROJECT_ID and self.VERTEX_SEARCH_DATA_STORE_ID)


def load_configuration() -> Config:
    """
    Load and validate configuration from environment
    Creates directories and sets up logging
    """
    try:
        # Load environment variables from .env file
        load_dotenv()

        config = Config()
        config.create_directories()
        config.setup_logging()
        config.validate_configuration()

        logging.info(f"Configuration loaded successfully for {config.APP_NAME} v{config.APP_VERSION}")
        return config

    except Exception as e:
        print(f"Failed to load configuration: {e}")
        raise


# =============================================================================
# GLOBAL CONFIGURATION INSTANCE
# =============================================================================

config = load_configuration()

MIN_SEARCH_RESULTS = config.MIN_SEARCH_RESULTS
