"""
Automatic collection of the state snapshot attached to error contexts.

The host application feeds navigation changes in through
:meth:`ContextCollector.record_navigation` and may supply a network check;
performance figures are sampled from the running process.
"""

import logging
import os
import sys
import time
from typing import Any, Callable, Dict, Optional

from faultline.models import ErrorContext, NavigationState, NetworkState, PerformanceMetrics

logger = logging.getLogger(__name__)

NetworkCheck = Callable[[], NetworkState]

# Second field is the current resident size in pages
_STATM_PATH = "/proc/self/statm"


class ContextCollector:
    """Builds ErrorContext instances, filling in what the caller omitted."""

    def __init__(self, network_check: Optional[NetworkCheck] = None):
        """
        Initialize the collector.

        Args:
            network_check: Callable reporting current connectivity. When absent
                the network is assumed to be connected.
        """
        self._network_check = network_check
        self._current_route: Optional[str] = None
        self._previous_route: Optional[str] = None
        self._last_cpu_sample = (time.monotonic(), time.process_time())

    def record_navigation(self, route: str) -> None:
        """Track a route change in the host application."""
        if route == self._current_route:
            return
        self._previous_route = self._current_route
        self._current_route = route

    def collect_network_state(self) -> NetworkState:
        if self._network_check is None:
            return NetworkState.CONNECTED
        try:
            return NetworkState(self._network_check())
        except Exception as e:
            logger.debug(f"Network check failed, assuming connected: {e}")
            return NetworkState.CONNECTED

    def collect_navigation_state(self) -> Optional[NavigationState]:
        if not self._current_route:
            return None
        return NavigationState(
            current_route=self._current_route,
            previous_route=self._previous_route,
        )

    def collect_performance_metrics(self) -> Optional[PerformanceMetrics]:
        metrics: Dict[str, float] = {}

        memory = _resident_memory_bytes()
        if memory is not None:
            metrics["memory_usage"] = memory

        now_wall, now_cpu = time.monotonic(), time.process_time()
        last_wall, last_cpu = self._last_cpu_sample
        self._last_cpu_sample = (now_wall, now_cpu)
        elapsed = now_wall - last_wall
        if elapsed > 0:
            metrics["cpu_usage"] = min(100.0, max(0.0, (now_cpu - last_cpu) / elapsed * 100))

        return PerformanceMetrics(**metrics) if metrics else None

    def collect(self, error_event_id: str, partial: Optional[Dict[str, Any]] = None) -> ErrorContext:
        """
        Build the context for an error event.

        Args:
            error_event_id: Event the context belongs to
            partial: Caller-supplied context fields; these always win over
                collected values

        Returns:
            Validated ErrorContext
        """
        fields: Dict[str, Any] = dict(partial or {})
        fields["error_event_id"] = error_event_id

        if fields.get("network_state") is None:
            fields["network_state"] = self.collect_network_state()
        if fields.get("navigation_state") is None:
            fields["navigation_state"] = self.collect_navigation_state()
        if fields.get("performance_metrics") is None:
            fields["performance_metrics"] = self.collect_performance_metrics()

        return ErrorContext(**fields)


def _resident_memory_bytes() -> Optional[float]:
    """
    Current resident set size of this process.

    Read from ``/proc`` where it exists. Elsewhere only the peak resident
    size is available, which is reported instead.
    """
    try:
        with open(_STATM_PATH) as statm:
            resident_pages = int(statm.read().split()[1])
        return float(resident_pages * os.sysconf("SC_PAGE_SIZE"))
    except (OSError, ValueError, IndexError, AttributeError):
        pass

    try:
        import resource
    except ImportError:
        # Not available on Windows
        return None

    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux reports kilobytes, macOS reports bytes
    return float(usage if sys.platform == "darwin" else usage * 1024)
