"""
Data Models for the Page Translator

This module defines the data structures used throughout the pipeline.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Dict, Sequence


@dataclass
class BoundingBox:
    """Axis-aligned box in page pixel coordinates."""
    x: int
    y: int
    width: int
    height: int

    @property
    def x2(self) -> int:
        return self.x + self.width

    @property
    def y2(self) -> int:
        return self.y + self.height

    @property
    def area(self) -> int:
        return max(0, self.width) * max(0, self.height)

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def to_list(self) -> List[int]:
        return [self.x, self.y, self.width, self.height]

    @classmethod
    def from_list(cls, values: Sequence[int]) -> "BoundingBox":
        x, y, width, height = values
        return cls(int(x), int(y), int(width), int(height))

    def contains(self, other: "BoundingBox") -> bool:
        """Check if another box lies entirely inside this one."""
        return (
            self.x <= other.x
            and self.y <= other.y
            and other.x2 <= self.x2
            and other.y2 <= self.y2
        )

    def intersection(self, other: "BoundingBox") -> Optional["BoundingBox"]:
        """Calculate intersection with another bounding box."""
        x1 = max(self.x, other.x)
        y1 = max(self.y, other.y)
        x2 = min(self.x2, other.x2)
        y2 = min(self.y2, other.y2)

        if x1 < x2 and y1 < y2:
            return BoundingBox(x1, y1, x2 - x1, y2 - y1)
        return None

    def iou(self, other: "BoundingBox") -> float:
        """Calculate Intersection over Union with another box."""
        intersection = self.intersection(other)
        if intersection is None:
            return 0.0

        intersection_area = intersection.area
        union_area = self.area + other.area - intersection_area
        return intersection_area / union_area if union_area > 0 else 0.0

    def inflate(self, padding: int) -> "BoundingBox":
        """Grow the box by `padding` pixels on every side."""
        return BoundingBox(
            self.x - padding,
            self.y - padding,
            self.width + 2 * padding,
            self.height + 2 * padding,
        )

    def clamp(self, page_width: int, page_height: int) -> "BoundingBox":
        """
        Clip the box to [0, page_width) x [0, page_height).

        The result may be empty when the box lies outside the page.
        """
        x1 = min(max(self.x, 0), page_width)
        y1 = min(max(self.y, 0), page_height)
        x2 = min(max(self.x2, 0), page_width)
        y2 = min(max(self.y2, 0), page_height)
        return BoundingBox(x1, y1, max(0, x2 - x1), max(0, y2 - y1))


@dataclass
class Detection:
    """Raw detector output for one candidate text region."""
    box: BoundingBox
    confidence: float
    class_id: int = 0


@dataclass
class TextRegion:
    """A kept text region with its geometry and text."""
    id: int
    raw_box: BoundingBox
    padded_box: BoundingBox
    source_text: Optional[str] = None
    translated_text: Optional[str] = None

    @property
    def has_translation(self) -> bool:
        return bool(self.translated_text)


@dataclass
class PageRecord:
    """
    All regions of one page.

    Regions form an arena keyed by their dense integer id, so persistence
    and reload never depend on object identity.
    """
    source_path: str
    width: int
    height: int
    regions: List[TextRegion] = field(default_factory=list)

    def region_ids(self) -> List[int]:
        return [region.id for region in self.regions]

    def by_id(self) -> Dict[int, TextRegion]:
        return {region.id: region for region in self.regions}

    @property
    def page_box(self) -> BoundingBox:
        return BoundingBox(0, 0, self.width, self.height)


@dataclass
class PageResult:
    """Outcome of one successful page run."""
    source_path: str
    region_count: int = 0
    outputs: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def get_summary(self) -> Dict[str, object]:
        return {
            "source_path": self.source_path,
            "region_count": self.region_count,
            "outputs": list(self.outputs),
            "warnings": len(self.warnings),
        }
