"""
Shared result types for the structure recovery engine.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List


@dataclass
class TocAreaResult:
    """Location of the table of contents inside a document tree."""
    item_refs: List[str]
    start_page: int
    end_page: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TocEntry:
    title: str
    level: int
    page_no: int
    children: List["TocEntry"] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TocEntry":
        page_no = data.get("page_no", data.get("pageNo", 0))
        return cls(
            title=data.get("title") or "",
            level=int(data.get("level", 1)),
            page_no=int(page_no),
            children=[cls.from_dict(c) for c in data.get("children") or []],
        )


@dataclass(frozen=True)
class PageRange:
    """Printed page numbers covered by one physical page (0 = unknown)."""
    start_page_no: int
    end_page_no: int

    @property
    def failed(self) -> bool:
        return self.start_page_no == 0

    @property
    def is_double_sided(self) -> bool:
        return self.end_page_no == self.start_page_no + 1

    def to_dict(self) -> Dict[str, int]:
        return {"start_page_no": self.start_page_no, "end_page_no": self.end_page_no}


FAILED_PAGE = PageRange(0, 0)


@dataclass
class TokenUsage:
    component: str
    phase: str
    model: str
    model_name: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
