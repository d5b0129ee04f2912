"""Per-metric dimension tags consulted when building data points"""
import threading
from typing import Dict, Optional
from .models import MetricIdentity


SOURCE_DIMENSION = "sf_source"


class MetricTagger:
    """Fluent helper returned by MetricMetadata.tag"""

    def __init__(self, metadata: "MetricMetadata", identity: MetricIdentity):
        self._metadata = metadata
        self._identity = identity

    def with_source_name(self, source_name: str) -> "MetricTagger":
        self._metadata._set(self._identity, SOURCE_DIMENSION, source_name)
        return self

    def with_dimension(self, key: str, value: str) -> "MetricTagger":
        if key == SOURCE_DIMENSION:
            raise ValueError(f"Use with_source_name to set {SOURCE_DIMENSION}")
        self._metadata._set(self._identity, key, value)
        return self


class MetricMetadata:
    """Dimension store keyed by metric identity.

    The reporter only reads from it while flushing; tagging may happen from
    any thread.
    """

    def __init__(self):
        self._tags: Dict[MetricIdentity, Dict[str, str]] = {}
        self._lock = threading.Lock()

    def tag(self, identity: MetricIdentity) -> MetricTagger:
        return MetricTagger(self, identity)

    def _set(self, identity: MetricIdentity, key: str, value: str) -> None:
        with self._lock:
            self._tags.setdefault(identity, {})[key] = str(value)

    def get_source_name(self, identity: MetricIdentity) -> Optional[str]:
        with self._lock:
            return self._tags.get(identity, {}).get(SOURCE_DIMENSION)

    def get_dimensions(self, identity: MetricIdentity) -> Dict[str, str]:
        """Dimensions for a metric, excluding its source name"""
        with self._lock:
            tags = self._tags.get(identity, {})
            return {key: value for key, value in tags.items() if key != SOURCE_DIMENSION}

    def forget(self, identity: MetricIdentity) -> None:
        with self._lock:
            self._tags.pop(identity, None)
