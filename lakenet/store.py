"""
LAKENET Resumable Store
=======================

Durable, append-only record of completed regions.

Layout of a store directory::

    manifest.json            regions_completed marker and per-region record
    lakes/region_00012.csv   per-lake rows of region index 12
    fragments/region_00012.gpkg
                             boundary fragments of region index 12
    _staging/                parts being written

A region counts as complete only once the manifest lists it. Parts are
written to the staging directory, moved into place, and the manifest is
rewritten last with an atomic rename, so a crash mid-region leaves at most
unlisted parts, which are discarded the next time the store is opened.
"""

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Union

import geopandas as gpd
import pandas as pd
from pyproj import CRS

from .boundary import FRAGMENT_COLUMNS
from .exceptions import ResumeStateError
from .provider import Region
from .region_processor import empty_geoframe

CHECKPOINT_COLUMNS = [
    "network_number",
    "region_id",
    "waterbody_key",
    "watershed_group_id",
    "name",
    "connection_count",
    "regions_completed",
]
FORMAT_VERSION = 1
FRAGMENT_LAYER = "fragments"
# source key columns whose dtype is recorded per region so CSV reads restore it
KEY_COLUMNS = ["waterbody_key", "watershed_group_id"]


class ResumableStore:
    """
    Append-only per-region checkpoint store with a resume point.

    Attributes:
        root (Path): Store directory
        logger (logging.Logger): Logger instance
    """

    MANIFEST = "manifest.json"

    def __init__(self, root: Union[str, Path], logger: Optional[logging.Logger] = None):
        """
        Open or create a store.

        Raises:
            ResumeStateError: If the directory holds an inconsistent checkpoint
        """
        self.root = Path(root)
        self.logger = logger or logging.getLogger(__name__)
        self.lakes_dir = self.root / "lakes"
        self.fragments_dir = self.root / "fragments"
        self.staging_dir = self.root / "_staging"
        self.manifest_path = self.root / self.MANIFEST

        for directory in (self.lakes_dir, self.fragments_dir, self.staging_dir):
            directory.mkdir(parents=True, exist_ok=True)

        self._manifest = self._load_manifest()
        self._discard_uncommitted()

        self.logger.info(
            f"Opened store {self.root}: {self.regions_completed} regions completed, "
            f"resume point {self.resume_point()}"
        )

    @staticmethod
    def _part_name(index: int) -> str:
        return f"region_{index:05d}"

    @staticmethod
    def _part_index(path: Path) -> Optional[int]:
        try:
            return int(path.stem.split("_", 1)[1])
        except (IndexError, ValueError):
            return None

    def _lake_part(self, index: int) -> Path:
        return self.lakes_dir / f"{self._part_name(index)}.csv"

    def _fragment_part(self, index: int) -> Path:
        return self.fragments_dir / f"{self._part_name(index)}.gpkg"

    def _existing_parts(self) -> List[Path]:
        return sorted(self.lakes_dir.glob("region_*.csv")) + sorted(
            self.fragments_dir.glob("region_*.gpkg")
        )

    def _load_manifest(self) -> Dict[str, Any]:
        if not self.manifest_path.exists():
            if self._existing_parts():
                raise ResumeStateError(
                    f"Store {self.root} holds region data but no manifest; "
                    f"cannot tell which regions completed"
                )
            manifest = {
                "format_version": FORMAT_VERSION,
                "crs": None,
                "regions_completed": 0,
                "regions": [],
            }
            self._write_manifest(manifest)
            return manifest

        try:
            with open(self.manifest_path, "r", encoding="utf-8") as f:
                manifest = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ResumeStateError(f"Unreadable manifest {self.manifest_path}: {e}")

        self._validate_manifest(manifest)
        return manifest

    def _validate_manifest(self, manifest: Dict[str, Any]) -> None:
        if "regions_completed" not in manifest or "regions" not in manifest:
            raise ResumeStateError(f"Manifest {self.manifest_path} has no regions_completed marker")

        regions = manifest["regions"]
        if manifest["regions_completed"] != len(regions):
            raise ResumeStateError(
                f"Manifest marker says {manifest['regions_completed']} regions completed "
                f"but lists {len(regions)}"
            )

        indices = [entry["index"] for entry in regions]
        if len(set(indices)) != len(indices):
            raise ResumeStateError("Manifest lists a region index more than once")

        for entry in regions:
            if not self._lake_part(entry["index"]).exists():
                raise ResumeStateError(
                    f"Region {entry['region_id']} is marked complete but its lake table is missing"
                )
            if entry["fragments"] > 0 and not self._fragment_part(entry["index"]).exists():
                raise ResumeStateError(
                    f"Region {entry['region_id']} is marked complete but its fragments are missing"
                )

    def _write_manifest(self, manifest: Dict[str, Any]) -> None:
        tmp_path = self.manifest_path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(manifest, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.manifest_path)

    def _discard_uncommitted(self) -> None:
        completed = self.completed_indices()
        for path in self._existing_parts():
            if self._part_index(path) not in completed:
                self.logger.warning(f"Discarding uncommitted region part {path}")
                path.unlink()
        for path in self.staging_dir.iterdir():
            path.unlink()

    @property
    def regions_completed(self) -> int:
        """Monotonically increasing count of committed regions."""
        return self._manifest["regions_completed"]

    @property
    def crs(self) -> Optional[CRS]:
        if self._manifest["crs"] is None:
            return None
        return CRS.from_user_input(self._manifest["crs"])

    def completed_indices(self) -> Set[int]:
        return {entry["index"] for entry in self._manifest["regions"]}

    def resume_point(self) -> int:
        """Index of the first region not yet completed."""
        completed = self.completed_indices()
        index = 0
        while index in completed:
            index += 1
        return index

    def is_complete(self, n_regions: int) -> bool:
        return self.completed_indices() >= set(range(n_regions))

    def verify_regions(self, regions: Iterable[Region]) -> None:
        """
        Check that committed regions match the current region enumeration.

        Raises:
            ResumeStateError: If a committed index now names a different region
        """
        by_index = {region.index: region.region_id for region in regions}
        for entry in self._manifest["regions"]:
            current = by_index.get(entry["index"])
            if current != entry["region_id"]:
                raise ResumeStateError(
                    f"Store region index {entry['index']} was committed for region "
                    f"{entry['region_id']} but the enumeration now has {current}"
                )

    def _check_crs(self, fragments: gpd.GeoDataFrame) -> Optional[str]:
        if fragments.crs is None:
            return self._manifest["crs"]
        stored = self.crs
        if stored is not None and not stored.equals(fragments.crs):
            raise ResumeStateError(
                f"Fragment CRS {fragments.crs.to_string()} does not match store CRS "
                f"{stored.to_string()}"
            )
        return self._manifest["crs"] or fragments.crs.to_wkt()

    def append(
        self,
        region: Region,
        lake_rows: pd.DataFrame,
        fragments: gpd.GeoDataFrame,
    ) -> None:
        """
        Durably record one completed region.

        Either all rows and fragments of the region are recorded and the
        region is marked complete, or nothing is.

        Raises:
            ResumeStateError: If the region was already committed or the
                fragment CRS differs from the store CRS
        """
        if region.index in self.completed_indices():
            raise ResumeStateError(
                f"Region {region.region_id} (index {region.index}) is already committed"
            )
        crs = self._check_crs(fragments)
        ordinal = self.regions_completed + 1

        rows = lake_rows.rename(columns={"local_component_id": "network_number"}).assign(
            regions_completed=ordinal
        )[CHECKPOINT_COLUMNS]

        name = self._part_name(region.index)
        lake_tmp = self.staging_dir / f"{name}.csv"
        rows.to_csv(lake_tmp, index=False)

        fragment_target = self._fragment_part(region.index)
        if len(fragments) > 0:
            fragment_tmp = self.staging_dir / f"{name}.gpkg"
            fragments[FRAGMENT_COLUMNS + ["geometry"]].to_file(
                fragment_tmp, layer=FRAGMENT_LAYER, driver="GPKG"
            )
            os.replace(fragment_tmp, fragment_target)
        elif fragment_target.exists():
            fragment_target.unlink()
        os.replace(lake_tmp, self._lake_part(region.index))

        manifest = dict(self._manifest)
        manifest["crs"] = crs
        manifest["regions"] = self._manifest["regions"] + [
            {
                "index": region.index,
                "region_id": region.region_id,
                "ordinal": ordinal,
                "lake_rows": len(rows),
                "fragments": len(fragments),
                "dtypes": {col: str(rows[col].dtype) for col in KEY_COLUMNS},
                "completed_at": datetime.now().isoformat(),
            }
        ]
        manifest["regions_completed"] = ordinal
        self._write_manifest(manifest)
        self._manifest = manifest

        self.logger.debug(
            f"Committed region {region.region_id} as #{ordinal}: "
            f"{len(rows)} lake rows, {len(fragments)} fragments"
        )

    def _entries_in_order(self) -> List[Dict[str, Any]]:
        return sorted(self._manifest["regions"], key=lambda entry: entry["index"])

    def _read_lake_part(self, entry: Dict[str, Any]) -> pd.DataFrame:
        # Only empty cells are missing: "NA" or "None" are real lake names
        dtypes = {"name": object}
        for col, dtype in entry.get("dtypes", {}).items():
            dtypes[col] = str if dtype == "object" else dtype
        return pd.read_csv(
            self._lake_part(entry["index"]),
            dtype=dtypes,
            keep_default_na=False,
            na_values={col: [""] for col in ["name"] + KEY_COLUMNS},
        )

    def checkpoint_table(self) -> pd.DataFrame:
        """Combined per-lake table in region order, as persisted."""
        parts = []
        for entry in self._entries_in_order():
            if entry["lake_rows"] == 0:
                continue
            part = self._read_lake_part(entry)
            parts.append(part.assign(region_index=entry["index"]))
        if not parts:
            return pd.DataFrame(columns=CHECKPOINT_COLUMNS + ["region_index"])
        return pd.concat(parts, ignore_index=True)

    def lake_table(self) -> pd.DataFrame:
        """Combined per-lake table with ``local_component_id`` naming."""
        return self.checkpoint_table().rename(columns={"network_number": "local_component_id"})

    def region_order(self) -> List[int]:
        """Region ids of committed regions in enumeration order."""
        return [entry["region_id"] for entry in self._entries_in_order()]

    def fragments(self) -> gpd.GeoDataFrame:
        """All committed boundary fragments."""
        parts = [
            gpd.read_file(self._fragment_part(entry["index"]), layer=FRAGMENT_LAYER)
            for entry in self._entries_in_order()
            if entry["fragments"] > 0
        ]
        if not parts:
            return empty_geoframe(FRAGMENT_COLUMNS, self.crs)
        return pd.concat(parts, ignore_index=True)

    def export_checkpoint(self, path: Union[str, Path]) -> Path:
        """Write the combined per-lake table to a single CSV file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.checkpoint_table()[CHECKPOINT_COLUMNS].to_csv(path, index=False)
        self.logger.info(f"Exported checkpoint table: {path}")
        return path
