"""
Docling document / TOC entry loading helpers.
"""

import json
import os
from typing import Any, Dict, List

from docstruct.models import TocEntry
from docstruct.utils.logging_utils import get_component_logger

logger = get_component_logger("DocumentIO", component="pipeline")


def _read_json(path: str):
    if not os.path.exists(path):
        raise FileNotFoundError(f"File not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except UnicodeDecodeError:
        logger.warning("UTF-8 decode failed, trying UTF-16...")
        with open(path, "r", encoding="utf-16") as f:
            return json.load(f)


def load_document(path: str) -> Dict[str, Any]:
    document = _read_json(path)

    if not isinstance(document, dict):
        raise ValueError(f"Not a Docling document (expected object): {path}")

    logger.info(
        f"Loaded document {path} | "
        f"texts={len(document.get('texts') or [])}, "
        f"groups={len(document.get('groups') or [])}, "
        f"tables={len(document.get('tables') or [])}, "
        f"pages={len(document.get('pages') or {})}"
    )
    return document


def load_toc_entries(path: str) -> List[TocEntry]:
    data = _read_json(path)

    if isinstance(data, dict):
        data = data.get("entries") or data.get("toc_entries") or []

    entries = [TocEntry.from_dict(e) for e in data]
    logger.info(f"Loaded {len(entries)} top-level TOC entries from {path}")
    return entries


def save_json(data: Any, path: str):
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    logger.info(f"Saved → {path}")
