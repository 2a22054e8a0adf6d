"""
DOCSTRUCT — STRUCTURE ORCHESTRATOR

Flow:
Docling JSON (+ optional source PDF)
   ↓
TOCFinder          → TOC area (refs + page span)
   ↓
PageRangeParser    → physical page → printed page map
   ↓
TOCValidator       → optional check of extracted TOC entries
   ↓
structure_final.json
"""

import os
import sys
import argparse
import threading
from typing import Any, Dict, Optional

from docstruct.config.system_loader import get_system_config
from docstruct.errors import TocExtractError, TocNotFoundError, TocValidationError
from docstruct.llm.vision_caller import VisionLLMCaller
from docstruct.pages.page_range_parser import PageRangeParser
from docstruct.pdf.renderer import PDFRenderer
from docstruct.toc.finder import TOCFinder
from docstruct.toc.validator import DEFAULT_MAX_TITLE_LENGTH, TOCValidator
from docstruct.utils.document_io import load_document, load_toc_entries, save_json
from docstruct.utils.logging_utils import get_component_logger
from docstruct.utils.ref_resolver import RefResolver


# =====================================================
# LOGGER SETUP
# =====================================================

logger = get_component_logger("StructureOrchestrator", component="pipeline")


class StructureOrchestrator:

    def __init__(
        self,
        document_path: str,
        output_path: Optional[str] = None,
        pdf_path: Optional[str] = None,
        toc_entries_path: Optional[str] = None,
        vision_caller=None,
        abort_event: Optional[threading.Event] = None,
        settings: Optional[Dict[str, Any]] = None
    ):
        self.document_path = document_path
        self.output_path = output_path or os.path.dirname(os.path.abspath(document_path))
        self.pdf_path = pdf_path
        self.toc_entries_path = toc_entries_path
        self.vision_caller = vision_caller
        self.abort_event = abort_event
        self.settings = settings if settings is not None else get_system_config()

        self.document = None
        self.toc_area = None
        self.page_range_map = {}
        self.usage = []
        self.validation = None

    # -------------------------------------------------
    # STEP 1: Load document
    # -------------------------------------------------
    def load(self):
        logger.info("[STEP 1] Loading document...")
        self.document = load_document(self.document_path)

        if not self.document.get("pages") and self.pdf_path:
            logger.info("Document has no page images → rendering from PDF")
            renderer = PDFRenderer(self.pdf_path)
            try:
                self.document["pages"] = renderer.build_page_image_set(self.output_path)
            finally:
                renderer.close()

    # -------------------------------------------------
    # STEP 2: Locate TOC
    # -------------------------------------------------
    def locate_toc(self):
        logger.info("[STEP 2] Locating table of contents...")

        toc_settings = self.settings.get("toc", {})
        finder = TOCFinder(
            RefResolver(self.document),
            max_search_pages=toc_settings.get("max_search_pages", 10),
            additional_keywords=toc_settings.get("additional_keywords") or [],
        )

        try:
            self.toc_area = finder.find(self.document)
        except TocNotFoundError:
            logger.warning("No TOC located; continuing without it")
            self.toc_area = None
        except Exception as e:
            logger.exception("TOC search crashed")
            raise TocExtractError.from_error("TOC search failed", e) from e

    # -------------------------------------------------
    # STEP 3: Page ranges
    # -------------------------------------------------
    def parse_page_ranges(self):
        logger.info("[STEP 3] Parsing page ranges...")

        if self.vision_caller is None:
            self.vision_caller = VisionLLMCaller.from_config()

        parser = PageRangeParser.from_config(
            self.vision_caller,
            self.output_path,
            abort_event=self.abort_event,
        )
        result = parser.parse(self.document)

        self.page_range_map = result["page_range_map"]
        self.usage = result["usage"]

    # -------------------------------------------------
    # STEP 4: Validate TOC entries (optional)
    # -------------------------------------------------
    def validate_toc_entries(self):
        if not self.toc_entries_path:
            return

        logger.info("[STEP 4] Validating TOC entries...")

        entries = load_toc_entries(self.toc_entries_path)
        validator = TOCValidator(
            total_pages=len(self.page_range_map) or None,
            max_title_length=self.settings.get("validator", {}).get(
                "max_title_length", DEFAULT_MAX_TITLE_LENGTH
            ),
        )

        try:
            self.validation = validator.validate_or_raise(entries)
            logger.info("TOC entries are structurally valid")
        except TocValidationError as e:
            logger.warning(e.get_summary())
            self.validation = e.validation_result

    # -------------------------------------------------
    # RUN FULL PIPELINE
    # -------------------------------------------------
    def run(self) -> Dict[str, Any]:

        logger.info("=" * 100)
        logger.info("DOCSTRUCT — STRUCTURE ORCHESTRATOR STARTED")
        logger.info(f"Document: {self.document_path}")
        logger.info("=" * 100)

        self.load()
        self.locate_toc()
        self.parse_page_ranges()
        self.validate_toc_entries()

        final_output = {
            "toc_area": self.toc_area.to_dict() if self.toc_area else None,
            "total_pages": len(self.page_range_map),
            "page_range_map": {
                str(k): v.to_dict() for k, v in sorted(self.page_range_map.items())
            },
            "usage": [u.to_dict() for u in self.usage],
        }

        if self.validation is not None:
            final_output["toc_validation"] = {
                "valid": self.validation.valid,
                "error_count": self.validation.error_count,
                "issues": [
                    {"code": i.code, "message": i.message, "path": i.path}
                    for i in self.validation.issues
                ],
            }

        result_file = self.settings.get("output", {}).get("result_file", "structure_final.json")
        save_json(final_output, os.path.join(self.output_path, result_file))

        logger.info("=" * 100)
        logger.info("DOCSTRUCT — STRUCTURE ORCHESTRATOR COMPLETED")
        logger.info("=" * 100)

        return final_output


# ============================================================
# STANDALONE RUNNER
# ============================================================

def main():
    parser = argparse.ArgumentParser(
        description="Recover TOC location and printed page numbers from a parsed document"
    )
    parser.add_argument("document", help="Docling JSON document")
    parser.add_argument("--output", "-o", help="Output directory (default: document directory)")
    parser.add_argument("--pdf", help="Source PDF, used to render page images when missing")
    parser.add_argument("--toc-entries", help="Extracted TOC entries JSON to validate")

    args = parser.parse_args()

    try:
        orchestrator = StructureOrchestrator(
            args.document,
            output_path=args.output,
            pdf_path=args.pdf,
            toc_entries_path=args.toc_entries,
        )
        orchestrator.run()
    except Exception:
        logger.exception("Structure orchestrator crashed")
        sys.exit(1)


if __name__ == "__main__":
    main()
