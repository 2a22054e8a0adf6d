"""
Page Range Parser (Vision LLM sampling + pattern detection)

Maps every physical PDF page to the printed page number(s) on it.

1. Group consecutive pages with the same size.
2. Groups of <= 3 pages: one vision call, mapped directly.
   Larger groups: sample 3 pages, detect the numbering pattern,
   apply it to the whole group. Retry with fresh samples on
   partial or inconsistent answers.
3. Post-process the merged map (negatives, outliers, drops, backfill).
"""

import os
import random
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Tuple

from langchain_core.messages import HumanMessage, SystemMessage

from docstruct.config.system_loader import get_model_config, get_prompt_config, get_system_config
from docstruct.errors import OperationAbortedError, PageRangeParseError
from docstruct.models import PageRange, TokenUsage
from docstruct.pages.pattern import (
    DEFAULT_OFFSET_TOLERANCE,
    PagePattern,
    SampleOutcome,
    SampleResult,
    apply_pattern,
    classify_samples,
    detect_pattern,
    samples_to_map,
)
from docstruct.pages.post_processing import (
    DEFAULT_MIN_BACKFILL_PAGES,
    DEFAULT_MIN_SEQUENCE_LENGTH,
    DEFAULT_OUTLIER_THRESHOLD,
    post_process,
)
from docstruct.pages.schemas import PageNumberExtraction
from docstruct.pdf.renderer import image_to_data_uri
from docstruct.utils.logging_utils import get_component_logger

COMPONENT_NAME = "PageRangeParser"
SAMPLE_SIZE = 3
MAX_PATTERN_RETRIES = 6
SIZE_TOLERANCE = 0.5
MAX_WORKERS = 2


# =====================================================
# LOGGER SETUP
# =====================================================

logger = get_component_logger("PageRangeParser", component="pages")


class PageRangeParser:

    def __init__(
        self,
        vision_caller,
        output_path: str,
        primary_model: str,
        fallback_model: Optional[str] = None,
        max_retries: int = 3,
        abort_event: Optional[threading.Event] = None,
        sample_size: int = SAMPLE_SIZE,
        max_pattern_retries: int = MAX_PATTERN_RETRIES,
        size_tolerance: float = SIZE_TOLERANCE,
        offset_tolerance: int = DEFAULT_OFFSET_TOLERANCE,
        outlier_threshold: int = DEFAULT_OUTLIER_THRESHOLD,
        min_sequence_length: int = DEFAULT_MIN_SEQUENCE_LENGTH,
        min_backfill_pages: int = DEFAULT_MIN_BACKFILL_PAGES,
        max_workers: int = MAX_WORKERS,
        prompts: Optional[Dict[str, str]] = None,
        rng: Optional[random.Random] = None
    ):
        self.vision_caller = vision_caller
        self.output_path = output_path
        self.primary_model = primary_model
        self.fallback_model = fallback_model
        self.max_retries = max_retries
        self.abort_event = abort_event
        self.sample_size = sample_size
        self.max_pattern_retries = max_pattern_retries
        self.size_tolerance = size_tolerance
        self.offset_tolerance = offset_tolerance
        self.outlier_threshold = outlier_threshold
        self.min_sequence_length = min_sequence_length
        self.min_backfill_pages = min_backfill_pages
        self.max_workers = max_workers
        self.prompts = prompts or get_prompt_config()["page_range"]
        self.rng = rng or random.Random()
        self._stop_event = threading.Event()
        self._failure_lock = threading.Lock()
        self._first_failure = None

    @classmethod
    def from_config(
        cls,
        vision_caller,
        output_path: str,
        abort_event: Optional[threading.Event] = None
    ) -> "PageRangeParser":
        settings = get_system_config().get("page_range", {})
        vision = get_model_config().get("vision", {})

        return cls(
            vision_caller,
            output_path,
            primary_model=vision["primary_model"],
            fallback_model=vision.get("fallback_model"),
            max_retries=vision.get("max_retries", 3),
            abort_event=abort_event,
            sample_size=settings.get("sample_size", SAMPLE_SIZE),
            max_pattern_retries=settings.get("max_pattern_retries", MAX_PATTERN_RETRIES),
            size_tolerance=settings.get("size_tolerance", SIZE_TOLERANCE),
            offset_tolerance=settings.get("offset_tolerance", DEFAULT_OFFSET_TOLERANCE),
            outlier_threshold=settings.get("outlier_threshold", DEFAULT_OUTLIER_THRESHOLD),
            min_sequence_length=settings.get("min_sequence_length", DEFAULT_MIN_SEQUENCE_LENGTH),
            min_backfill_pages=settings.get("min_backfill_pages", DEFAULT_MIN_BACKFILL_PAGES),
            max_workers=settings.get("max_workers", MAX_WORKERS),
        )

    # -------------------------------------------------
    # PUBLIC ENTRY POINT
    # -------------------------------------------------
    def parse(self, document: Dict[str, Any]) -> Dict[str, Any]:

        logger.info("[STEP 1] Extracting page image set...")

        pages = self.extract_pages(document)
        if not pages:
            logger.warning("No pages found")
            return {
                "page_range_map": {},
                "usage": [self.create_empty_usage("sampling")],
            }

        groups = self.analyze_sizes(pages)
        logger.info(f"Found {len(groups)} size group(s), total {len(pages)} pages")

        logger.info("[STEP 2] Processing size groups...")

        pages_by_no = {p["page_no"]: p for p in pages}
        page_range_map: Dict[int, PageRange] = {}
        usage: List[TokenUsage] = []

        self._stop_event = threading.Event()
        self._first_failure = None
        workers = max(1, min(self.max_workers, len(groups)))
        executor = ThreadPoolExecutor(max_workers=workers)

        try:
            futures = [
                executor.submit(self._run_group, pages_by_no, group, i + 1, len(groups))
                for i, group in enumerate(groups)
            ]

            for future in futures:
                group_map, group_usage = future.result()
                page_range_map.update(group_map)
                usage.extend(group_usage)

        except BaseException as e:
            self._stop_event.set()
            executor.shutdown(wait=False, cancel_futures=True)
            failure = self._first_failure
            if failure is not None and failure is not e:
                raise failure
            raise

        executor.shutdown(wait=True)

        logger.info("[STEP 3] Post-processing page range map...")

        page_range_map = post_process(
            page_range_map,
            outlier_threshold=self.outlier_threshold,
            min_sequence_length=self.min_sequence_length,
            min_backfill_pages=self.min_backfill_pages,
        )

        failed = sum(1 for r in page_range_map.values() if r.failed)
        logger.info(f"Completed: {len(page_range_map)} pages mapped ({failed} undetermined)")

        return {"page_range_map": page_range_map, "usage": usage}

    # -------------------------------------------------
    # Page grouping
    # -------------------------------------------------
    def extract_pages(self, document: Dict[str, Any]) -> List[Dict[str, Any]]:
        pages = []

        for key, page in (document.get("pages") or {}).items():
            if not str(key).isdigit():
                continue
            page = dict(page)
            page.setdefault("page_no", int(key))
            pages.append(page)

        return sorted(pages, key=lambda p: p["page_no"])

    def analyze_sizes(self, pages: List[Dict[str, Any]]) -> List[List[int]]:
        """Maximal runs of consecutive pages whose width/height match within tolerance."""
        groups: List[List[int]] = []
        reference = None

        for page in pages:
            size = page.get("size") or {}
            width = float(size.get("width", 0))
            height = float(size.get("height", 0))

            if (
                reference is None
                or abs(width - reference[0]) > self.size_tolerance
                or abs(height - reference[1]) > self.size_tolerance
            ):
                groups.append([])
                reference = (width, height)

            groups[-1].append(page["page_no"])

        return groups

    # -------------------------------------------------
    # Group processing
    # -------------------------------------------------
    def _run_group(self, pages_by_no, page_nos, group_index, group_count):
        try:
            return self.process_group(pages_by_no, page_nos, group_index, group_count)
        except Exception as e:
            with self._failure_lock:
                if self._first_failure is None:
                    self._first_failure = e
            self._stop_event.set()
            raise

    def process_group(
        self,
        pages_by_no: Dict[int, Dict[str, Any]],
        page_nos: List[int],
        group_index: int = 1,
        group_count: int = 1
    ) -> Tuple[Dict[int, PageRange], List[TokenUsage]]:

        logger.info(f"Processing group {group_index}/{group_count}: {len(page_nos)} pages")
        usage: List[TokenUsage] = []

        if len(page_nos) <= self.sample_size:
            logger.info(f"Small group ({len(page_nos)} pages), extracting all at once")
            samples, call_usage = self.extract_multiple_pages(pages_by_no, page_nos)
            usage.append(call_usage)
            return samples_to_map(samples, page_nos), usage

        sampled = set()
        attempts = self.max_pattern_retries + 1

        for attempt in range(1, attempts + 1):
            sample_page_nos = self.select_random_samples(page_nos, self.sample_size, sampled)
            sampled.update(sample_page_nos)

            logger.info(
                f"Attempt {attempt}/{attempts}: sampling pages "
                f"{', '.join(str(p) for p in sample_page_nos)}"
            )

            samples, call_usage = self.extract_multiple_pages(pages_by_no, sample_page_nos)
            usage.append(call_usage)

            outcome = classify_samples(samples, sample_page_nos)
            if outcome == SampleOutcome.PARTIAL and attempt < attempts:
                logger.warning(f"Partial sample (unreadable pages), attempt {attempt}/{attempts}")
                continue

            analysis = detect_pattern(samples, self.offset_tolerance)
            if analysis.pattern != PagePattern.UNKNOWN:
                logger.info(
                    f"Pattern detected: {analysis.pattern.value} "
                    f"(offset={analysis.offset}, increment={analysis.increment})"
                )
                return apply_pattern(page_nos, analysis), usage

            logger.warning(f"Pattern detection failed, attempt {attempt}/{attempts}")

        raise PageRangeParseError(
            f"Failed to detect page pattern after {attempts} attempts "
            f"for size group with {len(page_nos)} pages"
        )

    def select_random_samples(self, page_nos: List[int], count: int, exclude=frozenset()) -> List[int]:
        available = [p for p in page_nos if p not in exclude]
        pool = available if len(available) >= count else list(page_nos)
        return sorted(self.rng.sample(pool, min(count, len(pool))))

    # -------------------------------------------------
    # Vision LLM call
    # -------------------------------------------------
    def extract_multiple_pages(
        self,
        pages_by_no: Dict[int, Dict[str, Any]],
        page_nos: List[int]
    ) -> Tuple[List[SampleResult], TokenUsage]:

        if self.abort_event is not None and self.abort_event.is_set():
            raise OperationAbortedError("Page range parsing aborted")

        if self._stop_event.is_set():
            raise OperationAbortedError("Page range parsing stopped after a group failed")

        logger.info(f"Extracting {len(page_nos)} pages in single LLM call")

        try:
            content = [{"type": "text", "text": self.build_user_prompt(page_nos)}]
            for page_no in page_nos:
                image = pages_by_no[page_no].get("image") or {}
                image_path = image.get("uri", "")
                if not os.path.isabs(image_path):
                    image_path = os.path.join(self.output_path, image_path)
                content.append({
                    "type": "image_url",
                    "image_url": {
                        "url": image_to_data_uri(image_path, image.get("mimetype") or "image/png")
                    },
                })

            result = self.vision_caller.call_vision(
                schema=PageNumberExtraction,
                messages=[
                    SystemMessage(content=self.prompts["system"]),
                    HumanMessage(content=content),
                ],
                primary_model=self.primary_model,
                fallback_model=self.fallback_model,
                max_retries=self.max_retries,
                abort_event=self.abort_event,
                component=COMPONENT_NAME,
                phase="sampling",
            )

        except OperationAbortedError:
            raise
        except Exception as e:
            logger.exception("Multi-image extraction failed")
            raise PageRangeParseError.from_error("Multi-image extraction failed", e) from e

        samples = []
        for item in result.output.pages:
            if 0 <= item.image_index < len(page_nos):
                samples.append(SampleResult(
                    pdf_page_no=page_nos[item.image_index],
                    start_page_no=item.start_page_no,
                    end_page_no=item.end_page_no,
                ))

        return samples, result.usage

    def build_user_prompt(self, page_nos: List[int]) -> str:
        return self.prompts["user"].format(
            count=len(page_nos),
            page_list=", ".join(str(p) for p in page_nos),
        )

    def create_empty_usage(self, phase: str) -> TokenUsage:
        return TokenUsage(
            component=COMPONENT_NAME,
            phase=phase,
            model="primary",
            model_name=self.primary_model,
        )
