"""
Page range post-processing.

Each pass takes a page range map and returns a new one. The order is
fixed because later passes rely on the 0 sentinels written by earlier ones:

    normalize_negatives → detect_outliers → handle_drops → backfill_failed_pages
"""

import math
from typing import Dict, List, Optional

from docstruct.models import FAILED_PAGE, PageRange
from docstruct.utils.logging_utils import get_component_logger

DEFAULT_OUTLIER_THRESHOLD = 10
DEFAULT_MIN_SEQUENCE_LENGTH = 3
DEFAULT_MIN_BACKFILL_PAGES = 2

logger = get_component_logger("PageRangePostProcess", component="pages")

PageRangeMap = Dict[int, PageRange]


def _sorted_pages(page_map: PageRangeMap) -> List[int]:
    return sorted(page_map)


def _range_from(start: int, double_sided: bool) -> PageRange:
    if start < 1:
        return FAILED_PAGE
    return PageRange(start, start + 1 if double_sided else start)


# -------------------------------------------------
# PASS 1: negatives
# -------------------------------------------------
def normalize_negatives(page_map: PageRangeMap) -> PageRangeMap:
    result = dict(page_map)

    for pdf_page, r in page_map.items():
        if r.start_page_no < 0 or r.end_page_no < 0:
            logger.info(f"Normalizing negative: PDF {pdf_page} -> 0")
            result[pdf_page] = FAILED_PAGE

    return result


# -------------------------------------------------
# PASS 2: outliers
# -------------------------------------------------
def find_normal_sequence_start(
    page_map: PageRangeMap,
    pdf_pages: List[int],
    min_length: int = DEFAULT_MIN_SEQUENCE_LENGTH
) -> Optional[int]:
    """Index of the first run of min_length pages advancing by +1 (or +2 for spreads)."""
    for start_idx in range(len(pdf_pages) - min_length + 1):
        valid = True

        for i in range(min_length - 1):
            cur_pdf = pdf_pages[start_idx + i]
            next_pdf = pdf_pages[start_idx + i + 1]
            cur = page_map[cur_pdf]
            nxt = page_map[next_pdf]

            if cur.failed or nxt.failed:
                valid = False
                break

            per_pdf = 2 if cur.is_double_sided else 1
            if nxt.start_page_no - cur.start_page_no != (next_pdf - cur_pdf) * per_pdf:
                valid = False
                break

        if valid:
            return start_idx

    return None


def detect_outliers(
    page_map: PageRangeMap,
    threshold: int = DEFAULT_OUTLIER_THRESHOLD,
    min_sequence_length: int = DEFAULT_MIN_SEQUENCE_LENGTH
) -> PageRangeMap:
    """Early pages printed far above the first consistent run were misread (figure numbers etc.)."""
    result = dict(page_map)
    pdf_pages = _sorted_pages(page_map)

    if len(pdf_pages) < min_sequence_length:
        return result

    normal_start = find_normal_sequence_start(page_map, pdf_pages, min_sequence_length)
    if not normal_start:
        return result

    anchor_pdf = pdf_pages[normal_start]
    anchor = page_map[anchor_pdf]
    per_pdf = 2 if anchor.is_double_sided else 1

    for pdf_page in pdf_pages[:normal_start]:
        page_no = page_map[pdf_page].start_page_no
        if page_no == 0:
            continue

        expected = anchor.start_page_no - (anchor_pdf - pdf_page) * per_pdf
        if page_no > expected + threshold:
            logger.info(f"Outlier detected: PDF {pdf_page}={page_no} (expected ~{expected})")
            result[pdf_page] = FAILED_PAGE

    return result


# -------------------------------------------------
# PASS 3: drops
# -------------------------------------------------
def handle_drops(page_map: PageRangeMap) -> PageRangeMap:
    """A printed number falling by more than 1 re-anchors every earlier page."""
    result = dict(page_map)
    pdf_pages = _sorted_pages(result)

    for i in range(1, len(pdf_pages)):
        prev_pdf = pdf_pages[i - 1]
        cur_pdf = pdf_pages[i]
        prev_no = result[prev_pdf].start_page_no
        cur_no = result[cur_pdf].start_page_no

        if prev_no == 0 or cur_no == 0:
            continue

        if prev_no - cur_no > 1:
            logger.info(
                f"Page drop detected: PDF {prev_pdf}={prev_no} -> PDF {cur_pdf}={cur_no}"
            )
            double_sided = result[cur_pdf].is_double_sided
            per_pdf = 2 if double_sided else 1

            for pdf_page in pdf_pages[:i]:
                expected = cur_no - (cur_pdf - pdf_page) * per_pdf
                result[pdf_page] = _range_from(expected, double_sided)
                logger.info(
                    f"Recalculated PDF {pdf_page} -> {result[pdf_page].start_page_no}"
                )

    return result


# -------------------------------------------------
# PASS 4: backfill
# -------------------------------------------------
def backfill_failed_pages(
    page_map: PageRangeMap,
    min_successful: int = DEFAULT_MIN_BACKFILL_PAGES
) -> PageRangeMap:
    result = dict(page_map)
    pdf_pages = _sorted_pages(result)

    failed = [p for p in pdf_pages if result[p].failed]
    if not failed:
        return result

    successful = [p for p in pdf_pages if result[p].start_page_no > 0]
    if len(successful) < min_successful:
        logger.warning("Not enough successful pages for backfill")
        return result

    double_count = sum(1 for p in successful if result[p].is_double_sided)
    double_sided = double_count > len(successful) / 2
    per_pdf = 2 if double_sided else 1

    offsets = [result[p].start_page_no - p * per_pdf for p in successful]
    avg_offset = math.floor(sum(offsets) / len(offsets) + 0.5)

    logger.info(
        f"Backfilling {len(failed)} pages "
        f"({'double-sided' if double_sided else 'single'} pattern, offset={avg_offset})"
    )

    for pdf_page in failed:
        expected = pdf_page * per_pdf + avg_offset

        if expected < 1:
            logger.info(f"Backfill skipped for PDF {pdf_page} (would be {expected})")
            continue

        result[pdf_page] = _range_from(expected, double_sided)
        logger.info(f"Backfill PDF {pdf_page}: 0 -> {expected}")

    return result


def post_process(
    page_map: PageRangeMap,
    outlier_threshold: int = DEFAULT_OUTLIER_THRESHOLD,
    min_sequence_length: int = DEFAULT_MIN_SEQUENCE_LENGTH,
    min_backfill_pages: int = DEFAULT_MIN_BACKFILL_PAGES
) -> PageRangeMap:

    result = normalize_negatives(page_map)
    result = detect_outliers(result, outlier_threshold, min_sequence_length)
    result = handle_drops(result)
    result = backfill_failed_pages(result, min_backfill_pages)
    return result
