"""Error taxonomy shared by every pipeline stage.

Configuration problems are reported as skipped results, transient dependency failures are
retried by the queue layer, data-integrity failures fail only the owning entity's job.
"""
from __future__ import annotations


class PipelineError(Exception):
    pass


class ConfigurationError(PipelineError):
    """Missing credentials or policy; callers turn this into a skipped result."""


class TransientError(PipelineError):
    """Dependency hiccup worth retrying with backoff."""


class DataIntegrityError(PipelineError):
    """Missing parent entity or malformed stored data; retrying will not help."""


class ClassifierError(PipelineError):
    """External classifier timed out, errored or answered with something unparseable."""
