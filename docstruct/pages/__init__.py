from docstruct.pages.page_range_parser import PageRangeParser
from docstruct.pages.pattern import PagePattern

__all__ = ["PageRangeParser", "PagePattern"]
