from typing import List, Optional
from pydantic import BaseModel, Field


class PageNumberItem(BaseModel):
    """Printed page number(s) read from one page image."""

    image_index: int = Field(description="0-based index of the image in the request")
    start_page_no: Optional[int] = Field(
        default=None, description="Start page number (null if not found)"
    )
    end_page_no: Optional[int] = Field(
        default=None,
        description="End page number for double-sided scans (null for single page)",
    )


class PageNumberExtraction(BaseModel):
    pages: List[PageNumberItem] = Field(
        default_factory=list, description="Extracted page numbers for each image"
    )
