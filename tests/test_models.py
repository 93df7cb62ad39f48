"""
Unit tests for the data models.

Run with: pytest tests/ -v
"""

import os
import sys
import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from page_translator.errors import ConfigError, LayoutOverflow, PipelineError, SchemaMismatchError
from page_translator.models import BoundingBox, PageRecord, PageResult, TextRegion


class TestBoundingBox:
    """Tests for BoundingBox data structure."""

    def test_bbox_dimensions(self):
        """Test edges and area."""
        bbox = BoundingBox(x=10, y=20, width=90, height=60)
        assert bbox.x2 == 100
        assert bbox.y2 == 80
        assert bbox.area == 90 * 60
        assert not bbox.is_empty

    def test_bbox_iou(self):
        """Test Intersection over Union calculation."""
        bbox1 = BoundingBox(0, 0, 100, 100)
        bbox2 = BoundingBox(50, 50, 100, 100)

        iou = bbox1.iou(bbox2)
        # Intersection: 50x50 = 2500
        # Union: 10000 + 10000 - 2500 = 17500
        assert iou == pytest.approx(2500 / 17500)

    def test_bbox_no_intersection(self):
        """Test IOU with no intersection, including touching edges."""
        assert BoundingBox(0, 0, 50, 50).iou(BoundingBox(100, 100, 50, 50)) == 0.0
        assert BoundingBox(0, 0, 50, 50).iou(BoundingBox(50, 0, 50, 50)) == 0.0

    def test_bbox_inflate(self):
        """Test padding grows every side."""
        assert BoundingBox(10, 10, 20, 30).inflate(5) == BoundingBox(5, 5, 30, 40)

    def test_bbox_clamp_inside(self):
        """A box inside the page is unchanged by clamping."""
        bbox = BoundingBox(10, 10, 20, 20)
        assert bbox.clamp(100, 100) == bbox

    def test_bbox_clamp_partial(self):
        """A box crossing the page edge is clipped to it."""
        assert BoundingBox(-10, 90, 30, 30).clamp(100, 100) == BoundingBox(0, 90, 20, 10)

    def test_bbox_clamp_outside(self):
        """A box entirely outside the page clamps to an empty box."""
        assert BoundingBox(150, 150, 20, 20).clamp(100, 100).is_empty

    def test_bbox_contains(self):
        """Test box containment check."""
        outer = BoundingBox(0, 0, 100, 100)
        assert outer.contains(BoundingBox(10, 10, 20, 20))
        assert outer.contains(outer)
        assert not outer.contains(BoundingBox(90, 90, 20, 20))

    def test_bbox_list_conversion(self):
        """Test conversion to and from the [x, y, w, h] form."""
        bbox = BoundingBox.from_list([1, 2, 3, 4])
        assert bbox.to_list() == [1, 2, 3, 4]


class TestPageRecord:
    """Tests for PageRecord and PageResult."""

    def test_region_lookup(self):
        """Test id listing and lookup."""
        regions = [
            TextRegion(id=0, raw_box=BoundingBox(0, 0, 5, 5), padded_box=BoundingBox(0, 0, 7, 7)),
            TextRegion(id=1, raw_box=BoundingBox(9, 9, 5, 5), padded_box=BoundingBox(8, 8, 7, 7)),
        ]
        record = PageRecord(source_path="page.png", width=20, height=20, regions=regions)

        assert record.region_ids() == [0, 1]
        assert record.by_id()[1] is regions[1]
        assert record.page_box == BoundingBox(0, 0, 20, 20)

    def test_has_translation(self):
        """Empty or missing translations are not rendered."""
        region = TextRegion(id=0, raw_box=BoundingBox(0, 0, 1, 1), padded_box=BoundingBox(0, 0, 1, 1))
        assert not region.has_translation
        region.translated_text = ""
        assert not region.has_translation
        region.translated_text = "Hello"
        assert region.has_translation

    def test_result_summary(self):
        """Test the per-page summary."""
        result = PageResult(source_path="page.png", region_count=3, outputs=["a.json"], warnings=["w"])
        summary = result.get_summary()
        assert summary["region_count"] == 3
        assert summary["warnings"] == 1


class TestErrors:
    """Tests for the error taxonomy."""

    def test_kind_is_class_name(self):
        """Every pipeline error reports its kind."""
        assert ConfigError("x").kind == "ConfigError"
        assert isinstance(SchemaMismatchError("x"), PipelineError)

    def test_layout_overflow_message(self):
        """Test overflow warning fields."""
        warning = LayoutOverflow(region_id=4, font_size=8, lines_dropped=2)
        assert warning.region_id == 4
        assert "Region 4" in str(warning)
        assert isinstance(warning, UserWarning)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
