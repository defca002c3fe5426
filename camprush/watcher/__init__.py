"""Registration-open watcher"""
from .detector import OpenDetector, DetectionResult, detect_registration_open, extract_registration_time
from .fetcher import PageFetcher, PageResponse, FetchError, RateLimitedError
from .watcher import OpenWatcher, TickSummary

__all__ = [
    "OpenDetector",
    "DetectionResult",
    "detect_registration_open",
    "extract_registration_time",
    "PageFetcher",
    "PageResponse",
    "FetchError",
    "RateLimitedError",
    "OpenWatcher",
    "TickSummary",
]
