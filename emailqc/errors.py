"""Exception hierarchy shared across the QC backend."""

from __future__ import annotations


class QcError(Exception):
    """Base class for every error raised deliberately by this package."""


class PreviewFetchError(QcError):
    """The template preview could not be turned into usable HTML."""


class ModelOutputError(QcError):
    """The content-validation model returned something we cannot accept."""


class InvalidStageTransition(QcError):
    """A run was asked to move backwards or out of a terminal state."""


class RunNotFoundError(QcError):
    """No QC run exists with the requested identifier."""


class QueueFullError(QcError):
    """The background run queue refused a job because too many are pending."""


class ModelInvocationError(QcError):
    """Calling the content-validation model failed; fatal for the run."""


class CheckNotFoundError(QcError):
    """No check result with the requested identifier belongs to the run."""


class InvalidIssueFeedback(QcError):
    """An issue triage update had an unknown status or missing feedback."""
