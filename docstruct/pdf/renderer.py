"""
PDF Renderer Module

Responsibilities:
- Render PDF pages into images
- Build the page image set (size + image locator per physical page)
- Base64 / data-URI conversion for vision LLM messages
"""

import os
import base64
from typing import Any, Dict

import fitz  # PyMuPDF

from docstruct.utils.logging_utils import get_component_logger

logger = get_component_logger("PDFRenderer", component="pages")


def image_to_base64(image_path: str) -> str:
    with open(image_path, "rb") as img_file:
        return base64.b64encode(img_file.read()).decode("utf-8")


def image_to_data_uri(image_path: str, mimetype: str = "image/png") -> str:
    return f"data:{mimetype};base64,{image_to_base64(image_path)}"


class PDFRenderer:
    def __init__(self, pdf_path: str, dpi: int = 144):
        self.pdf_path = pdf_path
        self.dpi = dpi
        self.doc = None  # Lazy loaded document

    # -------------------------------------------------
    # Internal Lazy Loader (Load Only Once)
    # -------------------------------------------------
    def _ensure_loaded(self):
        if self.doc is None:
            logger.info("Lazy loading PDF for rendering...")
            try:
                self.doc = fitz.open(self.pdf_path)
                logger.info(f"PDF loaded successfully. Total pages: {self.doc.page_count}")
            except Exception as e:
                logger.exception(f"Failed during lazy loading: {e}")
                raise

    # -------------------------------------------------
    # Render Page to Image
    # -------------------------------------------------
    def render_page(self, page_index: int, output_dir: str, image_subdir: str = "pages") -> str:
        self._ensure_loaded()

        if page_index < 0 or page_index >= self.doc.page_count:
            raise IndexError(f"Invalid page index: {page_index}")

        image_dir = os.path.join(output_dir, image_subdir)
        os.makedirs(image_dir, exist_ok=True)

        page = self.doc.load_page(page_index)
        pix = page.get_pixmap(dpi=self.dpi)

        relative_path = os.path.join(image_subdir, f"page_{page_index + 1}.png")
        pix.save(os.path.join(output_dir, relative_path))
        logger.info(f"Rendered page {page_index + 1} → {relative_path}")

        return relative_path

    # -------------------------------------------------
    # Page image set
    # -------------------------------------------------
    def build_page_image_set(self, output_dir: str) -> Dict[str, Dict[str, Any]]:
        self._ensure_loaded()

        pages = {}
        for page_index in range(self.doc.page_count):
            page = self.doc.load_page(page_index)
            uri = self.render_page(page_index, output_dir)
            page_no = page_index + 1

            pages[str(page_no)] = {
                "page_no": page_no,
                "size": {"width": page.rect.width, "height": page.rect.height},
                "image": {"uri": uri, "mimetype": "image/png", "dpi": self.dpi},
            }

        logger.info(f"Page image set built ({len(pages)} pages)")
        return pages

    def close(self):
        if self.doc is not None:
            self.doc.close()
            self.doc = None
