"""
Reference Resolver

Docling documents link nodes with JSON references ("#/texts/0",
"#/groups/3", ...). The resolver indexes every collection once and answers
lookups without touching the document again.
"""

import re
from typing import Any, Dict, Iterable, List, Optional

from docstruct.utils.logging_utils import get_component_logger

logger = get_component_logger("RefResolver", component="toc")

ROOT_REFS = ("#/body", "#/furniture")
COLLECTIONS = ("texts", "pictures", "tables", "groups")

_REF_PATTERN = re.compile(r"^#/(\w+)/")


def child_ref(child) -> Optional[str]:
    """Return the ref string of a {"$ref": ...} link (or a bare string)."""
    if isinstance(child, str):
        return child
    if isinstance(child, dict):
        return child.get("$ref")
    return None


def parent_ref(node: Dict[str, Any]) -> Optional[str]:
    return child_ref(node.get("parent"))


class RefResolver:

    def __init__(self, document: Dict[str, Any]):
        self._index: Dict[str, Dict[str, Dict[str, Any]]] = {}

        for collection in COLLECTIONS:
            self._index[collection] = {
                item["self_ref"]: item
                for item in document.get(collection) or []
                if item.get("self_ref")
            }

        logger.info(
            "Indexed %d texts, %d pictures, %d tables, %d groups",
            len(self._index["texts"]),
            len(self._index["pictures"]),
            len(self._index["tables"]),
            len(self._index["groups"]),
        )

    # -------------------------------------------------
    @staticmethod
    def is_root(ref: Optional[str]) -> bool:
        return ref in ROOT_REFS

    @staticmethod
    def collection_of(ref: Optional[str]) -> Optional[str]:
        if not ref:
            return None
        match = _REF_PATTERN.match(ref)
        return match.group(1) if match else None

    # -------------------------------------------------
    def resolve(self, ref: Optional[str]) -> Optional[Dict[str, Any]]:
        collection = self.collection_of(ref)

        if collection is None:
            if not self.is_root(ref):
                logger.warning(f"Invalid reference format: {ref}")
            return None

        if collection not in self._index:
            logger.warning(f"Unknown collection type: {collection}")
            return None

        item = self._index[collection].get(ref)
        if item is None:
            logger.warning(f"Reference not found: {ref}")
        return item

    def resolve_text(self, ref: Optional[str]) -> Optional[Dict[str, Any]]:
        return self._index["texts"].get(ref)

    def resolve_picture(self, ref: Optional[str]) -> Optional[Dict[str, Any]]:
        return self._index["pictures"].get(ref)

    def resolve_table(self, ref: Optional[str]) -> Optional[Dict[str, Any]]:
        return self._index["tables"].get(ref)

    def resolve_group(self, ref: Optional[str]) -> Optional[Dict[str, Any]]:
        return self._index["groups"].get(ref)

    def resolve_many(self, children: Iterable) -> List[Optional[Dict[str, Any]]]:
        return [self.resolve(child_ref(c)) for c in children or []]
