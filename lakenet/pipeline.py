"""
LAKENET Pipeline
================

Region-by-region network construction with checkpoint/resume, followed by a
single global reconciliation pass.

Control flow:
1. For every region not yet in the store: query lakes and rivers, compute
   local components, derive boundary fragments, commit both to the store.
2. Once every region is committed: number components globally, merge them
   across region boundaries and by shared lake identity, write the final
   table.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import geopandas as gpd
import pandas as pd
from pyproj import CRS
from tqdm import tqdm

from .boundary import BoundaryFragmentExtractor
from .config import load_config
from .exceptions import LakeNetError, ResumeStateError, ValidationError
from .merge import NetworkReconciler
from .monitoring import RegionMetrics, RegionMonitor
from .provider import GeometryProvider, Region
from .region_processor import RegionProcessor, RegionResult
from .store import ResumableStore


class NetworkPipeline:
    """
    Build province-wide lake networks from a geometry provider.

    Attributes:
        provider (GeometryProvider): Source of regions, lakes and rivers
        config (Dict[str, Any]): Configuration parameters
        store (ResumableStore): Checkpoint store of completed regions
        processor (RegionProcessor): Per-region component computation
        extractor (BoundaryFragmentExtractor): Boundary fragment extraction
        reconciler (NetworkReconciler): Global reconciliation
        logger (logging.Logger): Logger instance
    """

    def __init__(
        self,
        provider: GeometryProvider,
        config: Optional[Dict[str, Any]] = None,
        store: Optional[ResumableStore] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.provider = provider
        self.config = config or load_config()
        self.logger = logger or logging.getLogger(__name__)
        self._check_crs()
        self.store = store or ResumableStore(self.config["store"]["directory"], self.logger)
        self.processor = RegionProcessor.from_config(self.config, self.logger)
        self.extractor = BoundaryFragmentExtractor.from_config(self.config, self.logger)
        self.reconciler = NetworkReconciler(self.logger)
        self._regions: Optional[List[Region]] = None

    def _check_crs(self) -> None:
        """Tolerances are in configured CRS units, so the provider must match it."""
        provider_crs = self.provider.crs
        if provider_crs is not None and not CRS.from_user_input(self.config["crs"]).equals(
            provider_crs
        ):
            raise ValidationError(
                f"Provider CRS {CRS.from_user_input(provider_crs).to_string()} differs from "
                f"configured CRS {self.config['crs']}"
            )

    @property
    def regions(self) -> List[Region]:
        if self._regions is None:
            self._regions = self.provider.regions()
        return self._regions

    def status(self) -> Dict[str, Any]:
        """Progress summary of the store against the region enumeration."""
        total = len(self.regions)
        return {
            "regions": total,
            "regions_completed": self.store.regions_completed,
            "resume_point": self.store.resume_point(),
            "complete": self.store.is_complete(total),
        }

    def process_region(
        self, region: Region
    ) -> Tuple[RegionResult, gpd.GeoDataFrame, RegionMetrics]:
        """
        Compute components and boundary fragments for one region.

        Nothing is written; the caller commits the result.

        Raises:
            DataSourceError: If lakes or rivers cannot be retrieved
            GeometryError: If the geometry engine fails
        """
        monitor = RegionMonitor(self.logger)
        monitor.start()
        try:
            lakes = self.provider.query_lakes(region)
            rivers = self.provider.query_rivers(region)
            result = self.processor.process(region, lakes, rivers)
            monitor.update_peak_memory()
            fragments = self.extractor.extract(result)
        except LakeNetError as e:
            self.logger.error(f"Region {region.region_id} (index {region.index}) failed: {e}")
            raise

        metrics = monitor.finish(
            region.region_id, len(result.lakes), result.component_count, len(fragments)
        )
        return result, fragments, metrics

    def _start_index(self, start_index: Optional[int]) -> int:
        resume_point = self.store.resume_point()
        if start_index is None:
            return resume_point
        if start_index < 0:
            raise ValidationError(f"start_index must be non-negative, got {start_index}")
        if start_index > resume_point:
            raise ResumeStateError(
                f"start_index {start_index} would skip uncompleted regions; "
                f"the first uncompleted region is index {resume_point}"
            )
        return start_index

    def run(self, start_index: Optional[int] = None) -> List[RegionMetrics]:
        """
        Process and commit every uncompleted region from ``start_index`` on.

        Args:
            start_index: Index of the first region to consider; defaults to
                the store's resume point. Committed regions are skipped.

        Returns:
            Metrics of the regions processed in this run

        Raises:
            ResumeStateError: If start_index lies beyond the resume point or
                the store does not match the region enumeration
        """
        regions = self.regions
        self.store.verify_regions(regions)
        start = self._start_index(start_index)

        completed = self.store.completed_indices()
        pending = [region for region in regions[start:] if region.index not in completed]
        self.logger.info(
            f"Processing {len(pending)} of {len(regions)} regions starting at index {start} "
            f"({len(regions) - start - len(pending)} already committed)"
        )

        workers = self.config["processing"]["workers"]
        show_progress = self.config["processing"]["show_progress"]
        with tqdm(
            total=len(pending),
            desc="Processing regions",
            unit="region",
            disable=not show_progress,
        ) as progress:
            if workers > 1 and len(pending) > 1:
                metrics = self._run_parallel(pending, progress, workers)
            else:
                metrics = self._run_sequential(pending, progress)

        self.logger.info(
            f"Run finished: {self.store.regions_completed} of {len(regions)} regions committed"
        )
        return metrics

    def _commit(self, region: Region, result: RegionResult, fragments: gpd.GeoDataFrame) -> None:
        self.store.append(region, result.lakes, fragments)

    def _run_sequential(self, pending: List[Region], progress: tqdm) -> List[RegionMetrics]:
        metrics = []
        for region in pending:
            progress.set_postfix(region=region.region_id)
            result, fragments, region_metrics = self.process_region(region)
            self._commit(region, result, fragments)
            metrics.append(region_metrics)
            progress.update(1)
        return metrics

    def _run_parallel(
        self, pending: List[Region], progress: tqdm, workers: int
    ) -> List[RegionMetrics]:
        """Compute regions on a thread pool; commits stay on this thread."""
        metrics = []
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(self.process_region, region): region for region in pending}
            try:
                for future in as_completed(futures):
                    region = futures[future]
                    result, fragments, region_metrics = future.result()
                    self._commit(region, result, fragments)
                    metrics.append(region_metrics)
                    progress.update(1)
            except BaseException:
                for future in futures:
                    future.cancel()
                raise
        return metrics

    def reconcile(self, output_path: Optional[Union[str, Path]] = None) -> pd.DataFrame:
        """
        Merge all committed regions into the final network table.

        Args:
            output_path: CSV destination; defaults to ``output.final_table``

        Returns:
            Final table, one row per lake occurrence

        Raises:
            ResumeStateError: If some regions are not committed yet
            MergeIntegrityError: If stored data is inconsistent
        """
        regions = self.regions
        self.store.verify_regions(regions)
        if not self.store.is_complete(len(regions)):
            raise ResumeStateError(
                f"Only {self.store.regions_completed} of {len(regions)} regions are committed; "
                f"resume at index {self.store.resume_point()} before reconciling"
            )

        final = self.reconciler.reconcile(
            self.store.lake_table(), self.store.fragments(), self.store.region_order()
        )

        path = Path(output_path or self.config["output"]["final_table"])
        path.parent.mkdir(parents=True, exist_ok=True)
        final.to_csv(path, index=False)
        self.logger.info(
            f"Wrote {len(final)} rows in {final['global_network_id'].nunique()} networks to {path}"
        )
        return final

    def export_checkpoint(self, output_path: Optional[Union[str, Path]] = None) -> Path:
        """Write the inspectable per-lake checkpoint table."""
        return self.store.export_checkpoint(
            output_path or self.config["output"]["checkpoint_table"]
        )
