"""
LAKENET Exceptions
==================

Custom exception classes for LAKENET water-body network construction.
"""


class LakeNetError(Exception):
    """Base exception for LAKENET errors."""

    pass


class DataSourceError(LakeNetError):
    """Exception raised when the geometry source cannot deliver features."""

    pass


class GeometryError(LakeNetError):
    """Exception raised when the geometry engine fails on a region."""

    pass


class ResumeStateError(LakeNetError):
    """Exception raised for an inconsistent checkpoint store or start index."""

    pass


class MergeIntegrityError(LakeNetError):
    """Exception raised when merge inputs reference unknown components."""

    pass


class ValidationError(LakeNetError):
    """Exception raised for input validation errors."""

    pass


class ConfigurationError(LakeNetError):
    """Exception raised for configuration-related errors."""

    pass
