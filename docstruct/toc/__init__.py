from docstruct.toc.finder import TOCFinder
from docstruct.toc.validator import TOCValidator

__all__ = ["TOCFinder", "TOCValidator"]
