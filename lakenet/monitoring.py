"""
LAKENET Region Monitoring
=========================

Runtime and memory tracking for long-running per-region processing.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import psutil


@dataclass
class RegionMetrics:
    """Performance metrics for one processed region."""

    region_id: int
    runtime_seconds: float
    memory_mb: float
    peak_memory_mb: float
    lake_count: int
    component_count: int
    fragment_count: int


class RegionMonitor:
    """
    Monitor runtime and resident memory while a region is processed.

    Regions can take minutes each, so the summary line is the main signal
    an operator has that a run is progressing.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.process = psutil.Process()
        self.start_time: Optional[float] = None
        self.peak_memory: float = 0.0

    def _memory_mb(self) -> float:
        return self.process.memory_info().rss / 1024 / 1024

    def start(self) -> None:
        """Start monitoring a region."""
        self.start_time = time.time()
        self.peak_memory = self._memory_mb()

    def update_peak_memory(self) -> None:
        """Update peak memory usage."""
        self.peak_memory = max(self.peak_memory, self._memory_mb())

    def finish(
        self,
        region_id: int,
        lake_count: int,
        component_count: int,
        fragment_count: int,
    ) -> RegionMetrics:
        """
        Finish monitoring and log a summary for the region.

        Returns:
            RegionMetrics for the region
        """
        runtime = time.time() - self.start_time if self.start_time is not None else 0.0
        current_memory = self._memory_mb()
        self.peak_memory = max(self.peak_memory, current_memory)

        metrics = RegionMetrics(
            region_id=region_id,
            runtime_seconds=runtime,
            memory_mb=current_memory,
            peak_memory_mb=self.peak_memory,
            lake_count=lake_count,
            component_count=component_count,
            fragment_count=fragment_count,
        )

        self.logger.info(
            f"Region {region_id}: {lake_count} lakes, {component_count} components, "
            f"{fragment_count} boundary fragments in {runtime:.1f}s "
            f"(memory {current_memory:.1f} MB, peak {self.peak_memory:.1f} MB)"
        )
        self.start_time = None
        return metrics
