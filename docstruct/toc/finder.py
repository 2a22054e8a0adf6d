"""
TOC Finder (Keyword Search + Structural Scoring + Multi-page Expansion)

Locates the table-of-contents region of a Docling document tree:

1. Keyword search over text items ("목차", "Contents", ...), then the
   enclosing group/table via an ancestor walk, or the first container
   following a loose heading (sibling search).
2. Structural analysis: every group/table is scored as a TOC candidate.
   Resource indexes (drawing/photo plate lists) are penalised.
3. The winner is expanded backward and forward over consecutive pages that
   still carry TOC-like content.
"""

import re
import sys
import json
from typing import Any, Dict, Iterable, List, Optional

from docstruct.errors import TocNotFoundError
from docstruct.models import TocAreaResult
from docstruct.utils.document_io import load_document
from docstruct.utils.logging_utils import get_component_logger
from docstruct.utils.ref_resolver import RefResolver, child_ref, parent_ref

DEFAULT_MAX_SEARCH_PAGES = 10
MIN_PAGE_NUMBER_CHILDREN = 3
MIN_TABLE_ROWS = 3
MIN_TABLE_COLS = 2
RESOURCE_INDEX_PENALTY = 1000
MAX_ANCESTOR_DEPTH = 64

TOC_KEYWORDS = [
    "목차",
    "차례",
    "목 차",
    "목차(계속)",
    "目录",
    "目 录",
    "内容",
    "內容",
    "目次",
    "目 次",
    "Contents",
    "Table of Contents",
    "TABLE OF CONTENTS",
    "CONTENTS",
]

CONTINUATION_MARKERS = [
    "목차(계속)",
    "목차 (계속)",
    "(계속)",
    "目录(续)",
    "目录 (续)",
    "(续)",
    "续表",
    "目次(続)",
    "目次 (続)",
    "(続)",
    "(continued)",
    "continued",
]

# "Chapter 1 ..... 10", "Introduction … 1", "제1장 개요  3"
PAGE_NUMBER_PATTERN = re.compile(
    r"(?:\.{2,}|…+|[·・]{2,})\s*\d+\s*$|\s+\d+\s*$"
)

RESOURCE_INDEX_PATTERNS = [
    re.compile(r"^\s*\[\s*(?:도면|사진|도판|그림|표)\s*\d+"),
    re.compile(r"^\s*(?:fig\.?|figure|photo|plate|map)\s*\d+", re.IGNORECASE),
]


# =====================================================
# LOGGER SETUP
# =====================================================

logger = get_component_logger("TOCFinder", component="toc")


def matches_page_number_pattern(text: Optional[str]) -> bool:
    return bool(text) and PAGE_NUMBER_PATTERN.search(text) is not None


def _first_prov_page(node: Dict[str, Any]) -> Optional[int]:
    prov = node.get("prov") or []
    if prov:
        return prov[0].get("page_no")
    return None


def _cell_text(cell) -> str:
    if isinstance(cell, dict):
        return (cell.get("text") or "").strip()
    return ""


class TOCFinder:

    def __init__(
        self,
        ref_resolver: RefResolver,
        max_search_pages: int = DEFAULT_MAX_SEARCH_PAGES,
        additional_keywords: Optional[Iterable[str]] = None
    ):
        self.ref_resolver = ref_resolver
        self.max_search_pages = max_search_pages
        self.keywords = TOC_KEYWORDS + list(additional_keywords or [])
        self._keywords_lower = [k.lower() for k in self.keywords]
        self._markers_lower = [m.lower() for m in CONTINUATION_MARKERS]

    # -------------------------------------------------
    # PUBLIC ENTRY POINT
    # -------------------------------------------------
    def find(self, document: Dict[str, Any]) -> TocAreaResult:

        logger.info(
            f"Starting TOC search (max_search_pages={self.max_search_pages})"
        )

        result = self.find_by_keywords(document)
        if result:
            result = self.expand_to_consecutive_pages(document, result)
            logger.info(
                f"TOC FOUND by keyword search | "
                f"pages {result.start_page}-{result.end_page} | "
                f"refs={len(result.item_refs)}"
            )
            return result

        logger.info("Keyword search failed → switching to structural analysis")

        result = self.find_by_structure(document)
        if result:
            result = self.expand_to_consecutive_pages(document, result)
            logger.info(
                f"TOC FOUND by structure analysis | "
                f"pages {result.start_page}-{result.end_page} | "
                f"refs={len(result.item_refs)}"
            )
            return result

        logger.warning("NO TOC FOUND")
        raise TocNotFoundError()

    # -------------------------------------------------
    # STAGE 1: Keyword search
    # -------------------------------------------------
    def find_by_keywords(self, document: Dict[str, Any]) -> Optional[TocAreaResult]:

        logger.info("[STAGE 1] Keyword search...")

        for text in document.get("texts") or []:
            if not self.contains_toc_keyword(text.get("text")):
                continue

            page_no = _first_prov_page(text)
            if page_no is None or page_no > self.max_search_pages:
                continue

            logger.info(f'TOC keyword "{text.get("text")}" on page {page_no}')

            ref = parent_ref(text)
            if ref is None or RefResolver.is_root(ref):
                container = self.find_sibling_container(document, text, page_no)
                if container is None:
                    logger.info("Loose heading without following container")
                    continue
            else:
                container = self.find_toc_container(ref)
                if container is None or not self._has_page_number_content(container):
                    logger.info("Keyword is not inside a TOC-like container")
                    continue

            return TocAreaResult(
                item_refs=[container["self_ref"]],
                start_page=page_no,
                end_page=page_no,
            )

        return None

    def find_toc_container(self, ref: Optional[str], depth: int = 0) -> Optional[Dict[str, Any]]:
        """Walk up the parent chain until a group or table is reached."""
        if ref is None or RefResolver.is_root(ref) or depth > MAX_ANCESTOR_DEPTH:
            return None

        group = self.ref_resolver.resolve_group(ref)
        if group:
            return group

        table = self.ref_resolver.resolve_table(ref)
        if table:
            return table

        item = self.ref_resolver.resolve(ref)
        if item is None:
            return None

        return self.find_toc_container(parent_ref(item), depth + 1)

    def find_sibling_container(
        self,
        document: Dict[str, Any],
        text: Dict[str, Any],
        page_no: int
    ) -> Optional[Dict[str, Any]]:
        """First group / document_index table after a loose heading on the same page."""
        body_children = [
            child_ref(c) for c in (document.get("body") or {}).get("children") or []
        ]

        try:
            position = body_children.index(text.get("self_ref"))
        except ValueError:
            return None

        for ref in body_children[position + 1:]:
            node = self.ref_resolver.resolve(ref)
            if node is None:
                continue

            node_page = self.node_page(node)
            if node_page is not None and node_page != page_no:
                break

            if self.ref_resolver.resolve_group(ref) and node_page is not None:
                logger.info(f"Sibling search found group {ref}")
                return node

            if self.ref_resolver.resolve_table(ref) and node.get("label") == "document_index":
                logger.info(f"Sibling search found document index {ref}")
                return node

        return None

    # -------------------------------------------------
    # STAGE 2: Structural analysis
    # -------------------------------------------------
    def find_by_structure(self, document: Dict[str, Any]) -> Optional[TocAreaResult]:

        logger.info("[STAGE 2] Structural analysis...")

        candidates = []

        for group in document.get("groups") or []:
            page_no = self.group_first_page(group)
            if page_no is None or page_no > self.max_search_pages:
                continue

            if self.is_group_toc_like(group):
                candidates.append({
                    "ref": group["self_ref"],
                    "page": page_no,
                    "score": self.calculate_group_score(group, page_no),
                    "resource_index": False,
                })

        for table in document.get("tables") or []:
            page_no = _first_prov_page(table)
            if page_no is None or page_no > self.max_search_pages:
                continue

            if self.is_table_toc_like(table):
                resource_index = self.is_resource_index_table(table)
                candidates.append({
                    "ref": table["self_ref"],
                    "page": page_no,
                    "score": self.calculate_table_score(table, page_no, resource_index),
                    "resource_index": resource_index,
                })

        if not candidates:
            logger.info("No structural TOC candidates")
            return None

        candidates.sort(key=lambda c: (-c["score"], c["page"]))

        for c in candidates:
            logger.info(
                f"Candidate {c['ref']} | page={c['page']} | score={c['score']}"
                + (" | resource index" if c["resource_index"] else "")
            )

        best = candidates[0]
        return TocAreaResult(
            item_refs=[best["ref"]],
            start_page=best["page"],
            end_page=best["page"],
        )

    def is_group_toc_like(self, group: Dict[str, Any]) -> bool:
        if group.get("name") not in ("list", "group"):
            return False
        return self._count_page_number_children(group) >= MIN_PAGE_NUMBER_CHILDREN

    def is_table_toc_like(self, table: Dict[str, Any]) -> bool:
        num_rows, num_cols, grid = self._table_shape(table)

        if num_rows < MIN_TABLE_ROWS or num_cols < MIN_TABLE_COLS:
            return False

        if table.get("label") == "document_index":
            return True

        data_rows = grid[1:]
        if not data_rows:
            return False

        numeric = 0
        for row in data_rows:
            if len(row) >= num_cols and _cell_text(row[num_cols - 1]).isdigit():
                numeric += 1

        return numeric / len(data_rows) > 0.5

    def is_resource_index_table(self, table: Dict[str, Any]) -> bool:
        """Drawing/photo plate lists look like a TOC but index resources."""
        _, _, grid = self._table_shape(table)
        data_rows = grid[1:]
        if not data_rows:
            return False

        hits = 0
        for row in data_rows:
            first = _cell_text(row[0]) if row else ""
            if any(p.search(first) for p in RESOURCE_INDEX_PATTERNS):
                hits += 1

        return hits / len(data_rows) > 0.5

    def calculate_group_score(self, group: Dict[str, Any], page_no: int) -> int:
        score = (self.max_search_pages - page_no + 1) * 10
        score += len(group.get("children") or []) * 2
        score += self._count_page_number_children(group) * 5
        return score

    def calculate_table_score(
        self,
        table: Dict[str, Any],
        page_no: int,
        resource_index: bool = False
    ) -> int:
        num_rows, _, _ = self._table_shape(table)

        score = (self.max_search_pages - page_no + 1) * 10
        score += num_rows * 2

        if table.get("label") == "document_index":
            score += 50

        if resource_index:
            score -= RESOURCE_INDEX_PENALTY

        return score

    # -------------------------------------------------
    # STAGE 3: Multi-page expansion
    # -------------------------------------------------
    def expand_to_consecutive_pages(
        self,
        document: Dict[str, Any],
        initial: TocAreaResult
    ) -> TocAreaResult:

        item_refs = list(initial.item_refs)
        seen = set(item_refs)
        start_page = initial.start_page
        end_page = initial.end_page

        backward: List[str] = []
        page_no = initial.start_page - 1
        while page_no >= 1:
            refs = self.find_continuation_on_page(document, page_no)
            if not refs:
                break

            new_refs = [r for r in refs if r not in seen]
            seen.update(new_refs)
            backward = new_refs + backward
            start_page = page_no
            logger.info(f"Expanded TOC backward to page {page_no}")
            page_no -= 1

        forward: List[str] = []
        last_page = min(self.document_last_page(document), self.max_search_pages)
        page_no = initial.end_page + 1
        while page_no <= last_page:
            refs = self.find_continuation_on_page(document, page_no)
            if not refs:
                break

            new_refs = [r for r in refs if r not in seen]
            seen.update(new_refs)
            forward.extend(new_refs)
            end_page = page_no
            logger.info(f"Expanded TOC forward to page {page_no}")
            page_no += 1

        return TocAreaResult(
            item_refs=backward + item_refs + forward,
            start_page=start_page,
            end_page=end_page,
        )

    def find_continuation_on_page(self, document: Dict[str, Any], page_no: int) -> List[str]:
        """TOC refs continuing on page_no; an empty list halts expansion."""
        refs: List[str] = []
        marker_seen = False

        for text in document.get("texts") or []:
            if _first_prov_page(text) != page_no:
                continue
            if not self.has_continuation_marker(text.get("text")):
                continue

            marker_seen = True
            ref = parent_ref(text)

            group = self.ref_resolver.resolve_group(ref)
            table = None if group else self.ref_resolver.resolve_table(ref)
            container = group or table

            if container is None:
                logger.info(f"Continuation marker on page {page_no} has no container")
                return []

            if table and self.is_resource_index_table(table):
                return []

            if not self._has_page_number_content(container):
                return []

            if container["self_ref"] not in refs:
                refs.append(container["self_ref"])

        if marker_seen:
            return refs

        for group in document.get("groups") or []:
            if self.group_first_page(group) != page_no:
                continue
            if self.is_group_toc_like(group) and group["self_ref"] not in refs:
                refs.append(group["self_ref"])

        for table in document.get("tables") or []:
            if _first_prov_page(table) != page_no:
                continue
            if not self.is_table_toc_like(table):
                continue
            if self.is_resource_index_table(table):
                logger.info(f"Resource index on page {page_no} ends the TOC")
                return []
            if table["self_ref"] not in refs:
                refs.append(table["self_ref"])

        return refs

    # -------------------------------------------------
    # HELPERS
    # -------------------------------------------------
    def contains_toc_keyword(self, text: Optional[str]) -> bool:
        if not text:
            return False
        normalized = text.strip().lower()
        return any(k in normalized for k in self._keywords_lower)

    def has_continuation_marker(self, text: Optional[str]) -> bool:
        if not text:
            return False
        normalized = text.strip().lower()
        return any(m in normalized for m in self._markers_lower)

    def node_page(self, node: Dict[str, Any]) -> Optional[int]:
        page_no = _first_prov_page(node)
        if page_no is None and "children" in node:
            page_no = self.group_first_page(node)
        return page_no

    def group_first_page(self, group: Dict[str, Any], depth: int = 0) -> Optional[int]:
        if depth > MAX_ANCESTOR_DEPTH:
            return None

        for child in self.ref_resolver.resolve_many(group.get("children")):
            if child is None:
                continue
            page_no = _first_prov_page(child)
            if page_no is not None:
                return page_no
            if "children" in child:
                page_no = self.group_first_page(child, depth + 1)
                if page_no is not None:
                    return page_no

        return None

    def document_last_page(self, document: Dict[str, Any]) -> int:
        pages = [int(k) for k in (document.get("pages") or {}) if str(k).isdigit()]

        for collection in ("texts", "tables"):
            for item in document.get(collection) or []:
                page_no = _first_prov_page(item)
                if page_no is not None:
                    pages.append(page_no)

        return max(pages) if pages else 0

    def _count_page_number_children(self, group: Dict[str, Any]) -> int:
        count = 0
        for c in group.get("children") or []:
            text = self.ref_resolver.resolve_text(child_ref(c))
            if text and matches_page_number_pattern(text.get("text")):
                count += 1
        return count

    def _has_page_number_content(self, container: Dict[str, Any], depth: int = 0) -> bool:
        if self.ref_resolver.resolve_table(container.get("self_ref")):
            return True

        if depth > MAX_ANCESTOR_DEPTH:
            return False

        for c in container.get("children") or []:
            ref = child_ref(c)
            text = self.ref_resolver.resolve_text(ref)
            if text and matches_page_number_pattern(text.get("text")):
                return True
            group = self.ref_resolver.resolve_group(ref)
            if group and self._has_page_number_content(group, depth + 1):
                return True

        return False

    @staticmethod
    def _table_shape(table: Dict[str, Any]):
        data = table.get("data") or {}
        grid = data.get("grid") or []
        num_rows = data.get("num_rows", len(grid))
        num_cols = data.get("num_cols", max((len(r) for r in grid), default=0))
        return num_rows, num_cols, grid


# ============================================================
# STANDALONE RUNNER
# ============================================================

def main():

    if len(sys.argv) < 2:
        logger.warning("Usage: python -m docstruct.toc.finder <docling_json>")
        sys.exit(1)

    document_path = sys.argv[1]

    logger.info("=" * 80)
    logger.info("TOC FINDER STARTED")
    logger.info(f"Document: {document_path}")
    logger.info("=" * 80)

    try:
        document = load_document(document_path)
        finder = TOCFinder(RefResolver(document))
        result = finder.find(document)

        logger.info("FINAL OUTPUT:")
        logger.info(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))

    except TocNotFoundError:
        logger.warning("No table of contents found")
        sys.exit(2)
    except Exception:
        logger.exception("Standalone TOC finder crashed")
        sys.exit(1)

    logger.info("=" * 80)
    logger.info("TOC FINDER COMPLETED")
    logger.info("=" * 80)


if __name__ == "__main__":
    main()
