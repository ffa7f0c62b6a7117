"""Exception hierarchy for beetle_core.

Only genuine caller mistakes raise. External-call failures (GitHub, sandbox
termination, side-store writes) are caught and logged at the call site.
"""

from __future__ import annotations


class BeetleError(Exception):
    """Base class for every error raised by beetle."""


class AnalysisNotFoundError(BeetleError):
    def __init__(self, analysis_id: str):
        super().__init__(f"Analysis {analysis_id!r} not found.")
        self.analysis_id = analysis_id


class InvalidTransitionError(BeetleError):
    """Raised when a lifecycle operation is not allowed from the record's current status."""

    def __init__(self, analysis_id: str, current: str, attempted: str):
        super().__init__(f"Cannot {attempted} analysis {analysis_id!r} while it is {current!r}.")
        self.analysis_id = analysis_id
        self.current = current
        self.attempted = attempted


class SandboxError(BeetleError):
    """The execution environment could not be started or addressed."""
