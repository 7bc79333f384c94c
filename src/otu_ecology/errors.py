"""Error taxonomy for the analysis pipeline.

Every error names the stage that raised it and the identifiers involved so a
failed run can be traced back to the offending rows.
"""

from typing import Iterable, List, Optional


class PipelineError(ValueError):
    """Base class for errors raised by a pipeline stage.

    Attributes:
        stage: Name of the stage that failed (e.g. ``"load"``)
        identifiers: Sample or OTU identifiers that caused the failure
    """

    def __init__(
        self,
        message: str,
        stage: str,
        identifiers: Optional[Iterable[str]] = None,
    ):
        self.stage = stage
        self.identifiers: List[str] = (
            [str(i) for i in identifiers] if identifiers is not None else []
        )
        self.message = message
        super().__init__(self._format())

    def _format(self) -> str:
        text = f"[{self.stage}] {self.message}"
        if self.identifiers:
            shown = self.identifiers[:20]
            more = len(self.identifiers) - len(shown)
            text += f": {shown}"
            if more > 0:
                text += f" (+{more} more)"
        return text


class ParseError(PipelineError):
    """Malformed input table."""

    def __init__(
        self,
        message: str,
        identifiers: Optional[Iterable[str]] = None,
        stage: str = "load",
    ):
        super().__init__(message, stage=stage, identifiers=identifiers)


class JoinError(PipelineError):
    """Identifiers that do not match between tables."""

    def __init__(
        self,
        message: str,
        identifiers: Optional[Iterable[str]] = None,
        stage: str = "assemble",
    ):
        super().__init__(message, stage=stage, identifiers=identifiers)


class DivideByZeroError(PipelineError):
    """Normalisation of a row whose total abundance is zero."""

    def __init__(
        self,
        message: str,
        identifiers: Optional[Iterable[str]] = None,
        stage: str = "normalise",
    ):
        super().__init__(message, stage=stage, identifiers=identifiers)


class EmptyResultError(PipelineError):
    """A stage received too few rows or groups to produce a result."""

    def __init__(
        self,
        message: str,
        identifiers: Optional[Iterable[str]] = None,
        stage: str = "aggregate",
    ):
        super().__init__(message, stage=stage, identifiers=identifiers)
