"""
Error taxonomy for the structure recovery engine.

Only the top-level entry points raise these; the heuristic stages
underneath return None and let the caller fall through.
"""

from dataclasses import dataclass, field
from typing import List

from docstruct.models import TocEntry


@dataclass
class TocValidationIssue:
    code: str
    message: str
    path: str
    entry: TocEntry


@dataclass
class TocValidationResult:
    valid: bool
    error_count: int
    issues: List[TocValidationIssue] = field(default_factory=list)


class TocExtractError(Exception):
    """Base error for TOC extraction failures."""

    @classmethod
    def from_error(cls, context: str, error: BaseException) -> "TocExtractError":
        return cls(f"{context}: {error}")


class TocNotFoundError(TocExtractError):

    def __init__(self, message: str = "Table of contents not found in the document"):
        super().__init__(message)


class TocValidationError(TocExtractError):
    """Raised when a TOC entry tree breaks one or more structural rules."""

    def __init__(self, validation_result: TocValidationResult):
        self.validation_result = validation_result
        super().__init__(self.get_summary())

    def get_summary(self) -> str:
        result = self.validation_result
        lines = [
            f"TOC validation failed: {result.error_count} error(s)",
            "",
            "Issues:",
        ]

        for issue in result.issues:
            lines.append(f"  [{issue.code}] {issue.message}")
            lines.append(f"    Path: {issue.path}")
            lines.append(
                f'    Entry: "{issue.entry.title}" (page {issue.entry.page_no})'
            )

        return "\n".join(lines)


class PageRangeParseError(Exception):
    """Raised when printed page numbers cannot be recovered."""

    @classmethod
    def from_error(cls, context: str, error: BaseException) -> "PageRangeParseError":
        return cls(f"{context}: {error}")


class OperationAbortedError(Exception):
    """Raised when the caller's abort event fires before or during a vision call."""


class VisionCallError(Exception):
    """One failed vision model attempt; the only error the retry loop retries."""
