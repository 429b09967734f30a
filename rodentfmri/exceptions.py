"""
rodentfmri.exceptions
=====================

Exception hierarchy for the rodent resting-state pipeline.

Every error raised by the package derives from
:class:`RodentFMRIError` so that the cohort runner in
:mod:`rodentfmri.pipeline` can isolate a failing subject without
swallowing unrelated programming errors.  The validation errors also
inherit from :class:`ValueError` and the tool errors from
:class:`RuntimeError`, which keeps ``except ValueError`` style handling
in calling code working.
"""


class RodentFMRIError(Exception):
    """Base exception for all rodentfmri errors."""

    pass


class ValidationError(RodentFMRIError, ValueError):
    """Raised when parameters or input data fail validation."""

    pass


class DimensionMismatchError(ValidationError):
    """Raised when array shapes (data, mask, ROI, covariates) don't match."""

    pass


class ROIDefinitionError(ValidationError):
    """Raised for an unknown ROI definition or unsupported ROI file type."""

    pass


class ScrubbingError(ValidationError):
    """Raised for an unsupported scrubbing method or timing."""

    pass


class ExternalToolError(RodentFMRIError, RuntimeError):
    """Raised when an external command is missing or exits non-zero."""

    pass


__all__ = [
    'RodentFMRIError',
    'ValidationError',
    'DimensionMismatchError',
    'ROIDefinitionError',
    'ScrubbingError',
    'ExternalToolError',
]
