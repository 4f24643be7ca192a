"""pygps51 - GPS51 telemetry normalization, trip reconstruction and rate-limited ingestion."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pygps51")
except PackageNotFoundError:
    __version__ = "0+local"
from pygps51.client import Gps51Client
from pygps51.config import Gps51Config, RateLimitPolicy
from pygps51.credentials import Credentials, CredentialSource, StaticCredentialSource, StoredCredentialSource
from pygps51.exceptions import (
    Gps51ApiError,
    Gps51AuthenticationError,
    Gps51ConfigError,
    Gps51Error,
    Gps51RateLimitError,
    Gps51RequestError,
    Gps51TokenExpiredError,
    Gps51TokenMissingError,
    Gps51TransportError,
    Gps51TransportExhaustedError,
)
from pygps51.ingestion.job import BatchParameters, BatchReport, DeviceResult, IngestionJob
from pygps51.ingestion.telemetry import normalize_telemetry
from pygps51.models import (
    BatteryChemistry,
    BatteryConfig,
    DataQuality,
    DetectionMethod,
    IgnitionDetection,
    NormalizedState,
    RawPing,
    TimestampSource,
    TrackPoint,
    Trip,
    TripCandidate,
    TripSource,
)
from pygps51.trips.dedupe import DedupConfig, is_duplicate, persist_trips, summarize_trips
from pygps51.trips.segmentation import SegmentationConfig, segment_trips

__all__ = [
    "__version__",
    "BatchParameters",
    "BatchReport",
    "BatteryChemistry",
    "BatteryConfig",
    "CredentialSource",
    "Credentials",
    "DataQuality",
    "DedupConfig",
    "DetectionMethod",
    "DeviceResult",
    "Gps51ApiError",
    "Gps51AuthenticationError",
    "Gps51Client",
    "Gps51Config",
    "Gps51ConfigError",
    "Gps51Error",
    "Gps51RateLimitError",
    "Gps51RequestError",
    "Gps51TokenExpiredError",
    "Gps51TokenMissingError",
    "Gps51TransportError",
    "Gps51TransportExhaustedError",
    "IgnitionDetection",
    "IngestionJob",
    "NormalizedState",
    "RateLimitPolicy",
    "RawPing",
    "SegmentationConfig",
    "StaticCredentialSource",
    "StoredCredentialSource",
    "TimestampSource",
    "TrackPoint",
    "Trip",
    "TripCandidate",
    "TripSource",
    "is_duplicate",
    "normalize_telemetry",
    "persist_trips",
    "segment_trips",
    "summarize_trips",
]
