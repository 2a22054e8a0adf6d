"""
Pytest configuration and fixtures
"""

import os
import re
import tempfile

# Keep rotating log files out of the working tree
os.environ.setdefault("DOCSTRUCT_LOG_DIR", os.path.join(tempfile.gettempdir(), "docstruct-test-logs"))

import pytest

from docstruct.errors import OperationAbortedError
from docstruct.llm.vision_caller import VisionCallResult
from docstruct.models import TokenUsage
from docstruct.pages.schemas import PageNumberItem


class DocBuilder:
    """Builds Docling-shaped documents for tests."""

    def __init__(self):
        self.doc = {
            "texts": [],
            "groups": [],
            "tables": [],
            "pictures": [],
            "body": {"self_ref": "#/body", "children": []},
            "furniture": {"self_ref": "#/furniture", "children": []},
            "pages": {},
        }

    def _attach(self, ref, parent):
        if parent is None:
            return
        if parent == "#/body":
            self.doc["body"]["children"].append({"$ref": ref})
            return
        for collection in ("groups", "texts", "tables", "pictures"):
            for node in self.doc[collection]:
                if node["self_ref"] == parent:
                    node.setdefault("children", []).append({"$ref": ref})
                    return

    def text(self, text, page, parent="#/body", label="text"):
        ref = f"#/texts/{len(self.doc['texts'])}"
        node = {
            "self_ref": ref,
            "label": label,
            "text": text,
            "orig": text,
            "prov": [{
                "page_no": page,
                "bbox": {"l": 50.0, "t": 700.0, "r": 500.0, "b": 680.0},
                "charspan": [0, len(text)],
            }],
        }
        if parent is not None:
            node["parent"] = {"$ref": parent}
        self.doc["texts"].append(node)
        self._attach(ref, parent)
        return ref

    def group(self, name="list", parent="#/body"):
        ref = f"#/groups/{len(self.doc['groups'])}"
        self.doc["groups"].append({
            "self_ref": ref,
            "parent": {"$ref": parent},
            "name": name,
            "label": "list" if name == "list" else "unspecified",
            "children": [],
        })
        self._attach(ref, parent)
        return ref

    def table(self, rows, page, label="table", parent="#/body"):
        ref = f"#/tables/{len(self.doc['tables'])}"
        grid = [[{"text": c} for c in row] for row in rows]
        self.doc["tables"].append({
            "self_ref": ref,
            "parent": {"$ref": parent},
            "label": label,
            "prov": [{"page_no": page, "bbox": {}, "charspan": [0, 0]}],
            "data": {
                "num_rows": len(rows),
                "num_cols": max((len(r) for r in rows), default=0),
                "grid": grid,
            },
        })
        self._attach(ref, parent)
        return ref

    def picture(self, page, parent="#/body"):
        ref = f"#/pictures/{len(self.doc['pictures'])}"
        self.doc["pictures"].append({
            "self_ref": ref,
            "parent": {"$ref": parent},
            "label": "picture",
            "prov": [{"page_no": page, "bbox": {}, "charspan": [0, 0]}],
            "children": [],
        })
        self._attach(ref, parent)
        return ref

    def page(self, page_no, width=595.0, height=842.0, uri=None):
        self.doc["pages"][str(page_no)] = {
            "page_no": page_no,
            "size": {"width": width, "height": height},
            "image": {"uri": uri or f"pages/page_{page_no}.png", "mimetype": "image/png"},
        }

    def build(self):
        return self.doc


class FakeVisionCaller:
    """Answers page number requests from a pdf_page -> (start, end) function."""

    def __init__(self, mapping, error=None):
        self.mapping = mapping
        self.error = error
        self.calls = []

    def call_vision(self, schema, messages, primary_model, fallback_model=None,
                    max_retries=3, abort_event=None, component="", phase=""):
        if abort_event is not None and abort_event.is_set():
            raise OperationAbortedError("aborted")
        if self.error is not None:
            raise self.error

        prompt = messages[-1].content[0]["text"]
        page_nos = [int(p) for p in re.search(r"PDF pages: ([\d, ]+)\.", prompt).group(1).split(",")]
        self.calls.append(page_nos)

        items = []
        for index, pdf_page in enumerate(page_nos):
            start, end = self.mapping(pdf_page)
            items.append(PageNumberItem(image_index=index, start_page_no=start, end_page_no=end))

        return VisionCallResult(
            output=schema(pages=items),
            usage=TokenUsage(component, phase, "primary", primary_model, 100, 20, 120),
            used_fallback=False,
        )


class FirstSamples:
    """Deterministic stand-in for random.Random.sample."""

    def sample(self, population, k):
        return list(population)[:k]


@pytest.fixture
def builder():
    return DocBuilder()


@pytest.fixture
def page_images(tmp_path):
    """Writes placeholder page images and returns a DocBuilder with pages 1..n."""

    def _make(count, sizes=None):
        b = DocBuilder()
        (tmp_path / "pages").mkdir(exist_ok=True)
        for page_no in range(1, count + 1):
            (tmp_path / "pages" / f"page_{page_no}.png").write_bytes(b"\x89PNG fake image")
            width, height = (sizes or {}).get(page_no, (595.0, 842.0))
            b.page(page_no, width, height)
        return b

    return _make
