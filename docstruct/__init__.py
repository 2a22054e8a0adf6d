"""
DocStruct — document structure recovery for scanned report PDFs.

This package contains the structure inference logic that sits on top of
an OCR/VLM-parsed Docling document:
- Reference resolution over the document tree
- TOC location (keyword, structural, multi-page)
- TOC entry structural validation
- Physical → printed page number mapping
"""

__version__ = "0.1.0"
