"""
LAKENET - Lake and River Connectivity Networks
==============================================

Groups lakes into connected networks across a large area that is processed
one region at a time.

Key Features:
- Per-region union of buffered lakes and rivers into local components
- Boundary fragments for linking components across region borders
- Append-only checkpoint store with an explicit resume point
- Dense global numbering of region-scoped components
- Single union-find reconciliation of boundary overlaps and shared
  named-lake identity
- Python API and command-line interface

Author: LAKENET Team
License: MIT
Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "LAKENET Team"
__license__ = "MIT"

from .boundary import BoundaryFragmentExtractor
from .config import load_config
from .exceptions import (
    ConfigurationError,
    DataSourceError,
    GeometryError,
    LakeNetError,
    MergeIntegrityError,
    ResumeStateError,
    ValidationError,
)
from .global_ids import GlobalIDAssigner
from .merge import CrossRegionMerger, IdentityMerger, NetworkReconciler, UnionFind
from .pipeline import NetworkPipeline
from .provider import FileGeometryProvider, GeoDataFrameProvider, GeometryProvider, Region
from .region_processor import RegionProcessor, RegionResult
from .store import ResumableStore

__all__ = [
    "BoundaryFragmentExtractor",
    "ConfigurationError",
    "CrossRegionMerger",
    "DataSourceError",
    "FileGeometryProvider",
    "GeoDataFrameProvider",
    "GeometryError",
    "GeometryProvider",
    "GlobalIDAssigner",
    "IdentityMerger",
    "LakeNetError",
    "MergeIntegrityError",
    "NetworkPipeline",
    "NetworkReconciler",
    "Region",
    "RegionProcessor",
    "RegionResult",
    "ResumableStore",
    "ResumeStateError",
    "UnionFind",
    "ValidationError",
    "load_config",
]
