"""
Page number pattern detection from sampled (pdf page, printed page) pairs.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional

from docstruct.models import FAILED_PAGE, PageRange

DEFAULT_OFFSET_TOLERANCE = 1


class PagePattern(str, Enum):
    SIMPLE_INCREMENT = "simple_increment"   # [1, 2, 3, ...]
    OFFSET = "offset"                       # [6, 7, 8, ...]
    DOUBLE_SIDED = "double_sided"           # [1-2, 3-4, 5-6, ...]
    UNKNOWN = "unknown"


class SampleOutcome(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"


@dataclass
class PatternAnalysis:
    pattern: PagePattern
    offset: int
    increment: int


@dataclass(frozen=True)
class SampleResult:
    pdf_page_no: int
    start_page_no: Optional[int]
    end_page_no: Optional[int]


UNKNOWN_PATTERN = PatternAnalysis(PagePattern.UNKNOWN, 0, 1)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def classify_samples(samples: List[SampleResult], requested: Iterable[int]) -> SampleOutcome:
    """COMPLETE when every requested page came back with a printed number."""
    resolved = {s.pdf_page_no for s in samples if s.start_page_no is not None}
    if all(p in resolved for p in requested):
        return SampleOutcome.COMPLETE
    return SampleOutcome.PARTIAL


def detect_pattern(
    samples: List[SampleResult],
    offset_tolerance: int = DEFAULT_OFFSET_TOLERANCE
) -> PatternAnalysis:

    valid = sorted(
        (s for s in samples if s.start_page_no is not None),
        key=lambda s: s.pdf_page_no,
    )

    if len(valid) < 2:
        return UNKNOWN_PATTERN

    single_sided = all(
        s.end_page_no is None or s.end_page_no == s.start_page_no for s in valid
    )

    # Exact +1 per physical page
    if single_sided and all(
        cur.start_page_no - prev.start_page_no == cur.pdf_page_no - prev.pdf_page_no
        for prev, cur in zip(valid, valid[1:])
    ):
        offset = valid[0].start_page_no - valid[0].pdf_page_no
        pattern = PagePattern.SIMPLE_INCREMENT if offset == 0 else PagePattern.OFFSET
        return PatternAnalysis(pattern, offset, 1)

    # Spreads: start = pdf * 2 + offset
    if all(
        s.end_page_no is not None and s.end_page_no == s.start_page_no + 1 for s in valid
    ) and all(
        cur.start_page_no - prev.start_page_no == (cur.pdf_page_no - prev.pdf_page_no) * 2
        for prev, cur in zip(valid, valid[1:])
    ):
        offset = valid[0].start_page_no - valid[0].pdf_page_no * 2
        return PatternAnalysis(PagePattern.DOUBLE_SIDED, offset, 2)

    if single_sided:
        offsets = [s.start_page_no - s.pdf_page_no for s in valid]
        avg_offset = _round_half_up(sum(offsets) / len(offsets))
        if all(abs(o - avg_offset) <= offset_tolerance for o in offsets):
            return PatternAnalysis(PagePattern.OFFSET, avg_offset, 1)

    return UNKNOWN_PATTERN


def apply_pattern(page_nos: Iterable[int], analysis: PatternAnalysis) -> Dict[int, PageRange]:
    result: Dict[int, PageRange] = {}

    for pdf_page_no in page_nos:
        if analysis.pattern in (PagePattern.SIMPLE_INCREMENT, PagePattern.OFFSET):
            page_no = pdf_page_no + analysis.offset
            result[pdf_page_no] = PageRange(page_no, page_no)
        elif analysis.pattern == PagePattern.DOUBLE_SIDED:
            start = pdf_page_no * 2 + analysis.offset
            result[pdf_page_no] = PageRange(start, start + 1)
        else:
            result[pdf_page_no] = FAILED_PAGE

    return result


def samples_to_map(samples: List[SampleResult], page_nos: Iterable[int] = ()) -> Dict[int, PageRange]:
    """Direct mapping for small groups; pages the model skipped become 0."""
    result: Dict[int, PageRange] = {p: FAILED_PAGE for p in page_nos}

    for s in samples:
        if s.start_page_no is not None:
            end = s.end_page_no if s.end_page_no is not None else s.start_page_no
            result[s.pdf_page_no] = PageRange(s.start_page_no, end)
        else:
            result[s.pdf_page_no] = FAILED_PAGE

    return result
