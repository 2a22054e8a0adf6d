"""
TOC Structural Validator

Checks an extracted TOC entry tree for consistency. It only reports;
nothing is repaired.

Rules:
- V001 : page number decreased against the previous sibling
- V002 : page number out of range (< 1 or > total pages)
- V003 : empty title
- V004 : title too long
- V005 : child page before its parent page
- V006 : duplicate (title, page) pair anywhere in the tree

This file CAN be run standalone.
"""

import sys
from typing import List, Optional, Set

from docstruct.errors import TocValidationError, TocValidationIssue, TocValidationResult
from docstruct.models import TocEntry
from docstruct.utils.document_io import load_toc_entries
from docstruct.utils.logging_utils import get_component_logger

DEFAULT_MAX_TITLE_LENGTH = 200

logger = get_component_logger("TOCValidator", component="toc")


class TOCValidator:

    def __init__(
        self,
        total_pages: Optional[int] = None,
        max_title_length: int = DEFAULT_MAX_TITLE_LENGTH
    ):
        self.total_pages = total_pages
        self.max_title_length = max_title_length
        self.issues: List[TocValidationIssue] = []

    # -------------------------------------------------
    def validate(self, entries: List[TocEntry]) -> TocValidationResult:
        self.issues = []

        self._validate_entries(entries, "", None, set())

        error_count = len(self.issues)
        return TocValidationResult(
            valid=error_count == 0,
            error_count=error_count,
            issues=list(self.issues),
        )

    def validate_or_raise(self, entries: List[TocEntry]) -> TocValidationResult:
        result = self.validate(entries)

        if not result.valid:
            logger.warning(f"TOC validation failed with {result.error_count} error(s)")
            raise TocValidationError(result)

        return result

    # -------------------------------------------------
    def _validate_entries(
        self,
        entries: List[TocEntry],
        parent_path: str,
        parent: Optional[TocEntry],
        seen_keys: Set[tuple]
    ):
        prev_page_no = None

        for i, entry in enumerate(entries):
            path = f"{parent_path}.children[{i}]" if parent_path else f"[{i}]"

            self._check_title(entry, path)
            self._check_page_range(entry, path)

            # V001
            if prev_page_no is not None and entry.page_no < prev_page_no:
                self._add("V001", f"Page number decreased from {prev_page_no} to {entry.page_no}", path, entry)
            prev_page_no = entry.page_no

            # V005
            if parent is not None and entry.page_no < parent.page_no:
                self._add(
                    "V005",
                    f"Child page ({entry.page_no}) is before parent page ({parent.page_no})",
                    path,
                    entry,
                )

            # V006
            key = (entry.title, entry.page_no)
            if key in seen_keys:
                self._add("V006", f'Duplicate entry: "{entry.title}" at page {entry.page_no}', path, entry)
            seen_keys.add(key)

            if entry.children:
                self._validate_entries(entry.children, path, entry, seen_keys)

    def _check_title(self, entry: TocEntry, path: str):
        title = entry.title or ""

        # V003
        if not title.strip():
            self._add("V003", "Title is empty or contains only whitespace", path, entry)

        # V004
        if len(title) > self.max_title_length:
            self._add(
                "V004",
                f"Title exceeds {self.max_title_length} characters ({len(title)})",
                path,
                entry,
            )

    def _check_page_range(self, entry: TocEntry, path: str):
        # V002
        if entry.page_no < 1:
            self._add("V002", f"Page number must be >= 1, got {entry.page_no}", path, entry)

        if self.total_pages is not None and entry.page_no > self.total_pages:
            self._add(
                "V002",
                f"Page number {entry.page_no} exceeds document total pages ({self.total_pages})",
                path,
                entry,
            )

    def _add(self, code: str, message: str, path: str, entry: TocEntry):
        self.issues.append(TocValidationIssue(code=code, message=message, path=path, entry=entry))


# ============================================================
# STANDALONE RUNNER
# ============================================================

def main():

    if len(sys.argv) < 2:
        print("Usage:")
        print("  python -m docstruct.toc.validator <toc_json_file> [total_pages]")
        sys.exit(1)

    toc_file = sys.argv[1]
    total_pages = int(sys.argv[2]) if len(sys.argv) > 2 else None

    print("=" * 90)
    print("TOC VALIDATOR STARTED")
    print(f"Input TOC file: {toc_file}")
    print("=" * 90)

    entries = load_toc_entries(toc_file)
    validator = TOCValidator(total_pages=total_pages)

    try:
        validator.validate_or_raise(entries)
        print("[RESULT] TOC is structurally valid")
    except TocValidationError as e:
        print(e.get_summary())
        sys.exit(1)

    print("=" * 90)
    print("TOC VALIDATOR COMPLETED")
    print("=" * 90)


if __name__ == "__main__":
    main()
