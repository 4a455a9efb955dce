"""
Gallery performance tracking.

Turns gallery browsing events (list loads, detail views, search, filters,
image loads, scrolling, modals) into metric samples on the monitor, and
keeps a bounded log of user interactions for the report's user journey.
Budget checks happen in the monitor; the tracker only records.
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Mapping
from typing import Any

from .models import UserInteraction
from .monitor import PerformanceMonitor
from .throttle import FRAME_INTERVAL_MS

logger = logging.getLogger(__name__)


class GalleryPerformanceTracker:
    """Records gallery timings into a PerformanceMonitor."""

    def __init__(
        self,
        monitor: PerformanceMonitor,
        max_interactions: int = 100,
        clock: Callable[[], float] = time.time,
    ):
        self.monitor = monitor
        self._interactions: deque[UserInteraction] = deque(maxlen=max_interactions)
        self._clock = clock
        self._lock = threading.Lock()
        monitor.attach_gallery_tracker(self)

    def track_gallery_load(self, start_time: float, end_time: float, artwork_count: int) -> float:
        """Record the artwork list load time (``end_time - start_time`` ms)."""
        load_time = end_time - start_time
        logger.debug(f"Gallery loaded {artwork_count} artworks in {load_time:.0f}ms")
        self.monitor.record_metric("artworkListLoadTime", load_time)
        return load_time

    def track_artwork_detail(self, artwork_id: str, load_time: float) -> None:
        logger.debug(f"Artwork {artwork_id} detail loaded in {load_time:.0f}ms")
        self.monitor.record_metric("artworkDetailLoadTime", load_time)

    def track_search_performance(self, query: str, response_time: float, result_count: int) -> None:
        self.monitor.record_metric("searchResponseTime", response_time)
        self.track_interaction(
            "search", "search-input", response_time,
            {"query": query, "result_count": result_count},
        )

    def track_filter_performance(self, filters: Mapping[str, Any], response_time: float) -> None:
        self.monitor.record_metric("filterResponseTime", response_time)
        self.track_interaction("filter", "filter-controls", response_time, {"filters": dict(filters)})

    def track_image_loading(self, image_url: str, load_time: float, size_bytes: int) -> None:
        """Thumbnails (URL contains ``thumb``) and full images have separate budgets."""
        metric = "thumbnailLoadTime" if "thumb" in image_url else "imageLoadingTime"
        logger.debug(f"Image {image_url} ({size_bytes} bytes) loaded in {load_time:.0f}ms")
        self.monitor.record_metric(metric, load_time)

    def track_scroll_performance(self, frame_duration: float) -> None:
        sample: dict[str, float] = {"scrollPerformance": frame_duration}
        if frame_duration > 0:
            sample["animationFrameRate"] = round(1000 / frame_duration, 1)
        if frame_duration > FRAME_INTERVAL_MS:
            logger.warning(f"Scroll performance issue: {frame_duration:.1f}ms frame duration")
        self.monitor.record_sample(sample)

    def track_modal_open(self, artwork_id: str, open_time: float) -> None:
        self.monitor.record_metric("artworkModalOpenTime", open_time)
        self.track_interaction("click", f"artwork-modal:{artwork_id}", open_time)

    def track_interaction(
        self,
        interaction_type: str,
        element: str,
        duration: float,
        context: Mapping[str, Any] | None = None,
    ) -> UserInteraction:
        """Append an interaction to the user journey."""
        interaction = UserInteraction(
            interaction_type=interaction_type,
            element=element,
            duration=duration,
            timestamp=self._clock(),
            context=dict(context or {}),
        )
        with self._lock:
            self._interactions.append(interaction)
        return interaction

    def get_user_journey(self) -> tuple[UserInteraction, ...]:
        """Recorded interactions, most recent last."""
        with self._lock:
            return tuple(self._interactions)

    def clear_tracking_data(self) -> None:
        with self._lock:
            self._interactions.clear()
