from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    LOG_LEVEL: str = "INFO"
    # Static GTFS tables, refreshed out-of-band by the data-sync job
    GTFS_DATA_DIR: str = "data/gtfs"
    GTFS_ROUTES_FILE: str = "routes.txt"
    GTFS_TRIPS_FILE: str = "trips.txt"
    GTFS_SHAPES_FILE: str = "shapes.txt"
    # Duplicate detection thresholds
    DEDUP_GEO_THRESHOLD_METERS: float = 100.0
    DEDUP_TEXT_SIMILARITY: float = 0.7
    DEDUP_TIME_WINDOW_MINUTES: int = 15
    DEDUP_MIN_MATCHING_SIGNALS: int = 2  # out of geo / text / time
    # Streaming loader (64 KB reads)
    STREAM_CHUNK_SIZE: int = 64 * 1024
    STREAM_MAX_LINE_LENGTH: int = 64 * 1024
    MEMORY_CHECK_INTERVAL: int = 500
    MAX_MEMORY_MB: int = 1200
    # Recall limit: shape points inspected per lookup scan
    MAX_SHAPE_POINTS_PER_LOOKUP: int = 20_000
    # Service region bounding box (North East England)
    SERVICE_REGION_NORTH: float = 56.0
    SERVICE_REGION_SOUTH: float = 54.0
    SERVICE_REGION_EAST: float = 0.0
    SERVICE_REGION_WEST: float = -2.5
    # Adaptive route search tiers (metres, ascending)
    ROUTE_SEARCH_RADII_METERS: list[float] = [100.0, 250.0, 500.0]
    # Regional shape-point cache
    SHAPE_CACHE_MAX_ENTRIES: int = 250_000
    SHAPE_CACHE_PRESSURE_ENTRIES: int = 100_000
    # Text fallback fuzzy keyword threshold (0-100)
    ROUTE_TEXT_FUZZY_THRESHOLD: int = 90


settings = Settings()
