"""
Interchange Store

Reads and writes the per-page JSON document that carries region geometry and
text between an extract run and a later replace run.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

from .errors import IoError, SchemaMismatchError
from .models import BoundingBox, PageRecord, TextRegion

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


def _parse_box(value: Any, field_name: str, region_id: Any) -> BoundingBox:
    if (
        not isinstance(value, list)
        or len(value) != 4
        or not all(isinstance(v, int) and not isinstance(v, bool) for v in value)
    ):
        raise SchemaMismatchError(
            f"Region {region_id}: '{field_name}' must be four integers [x, y, w, h]"
        )
    return BoundingBox.from_list(value)


def _parse_text(value: Any, field_name: str, region_id: Any) -> Optional[str]:
    if value is not None and not isinstance(value, str):
        raise SchemaMismatchError(f"Region {region_id}: '{field_name}' must be a string or null")
    return value


class InterchangeStore:
    """Serializes PageRecords to and from interchange documents."""

    def __init__(self, indent: int = 2):
        self.indent = indent

    def to_document(self, record: PageRecord) -> Dict[str, Any]:
        return {
            "version": SCHEMA_VERSION,
            "source_path": record.source_path,
            "width": record.width,
            "height": record.height,
            "regions": [
                {
                    "id": region.id,
                    "box": region.raw_box.to_list(),
                    "padded_box": region.padded_box.to_list(),
                    "source_text": region.source_text,
                    "translated_text": region.translated_text,
                }
                for region in record.regions
            ],
        }

    def from_document(self, data: Any) -> PageRecord:
        """
        Build a PageRecord from a parsed document.

        Raises:
            SchemaMismatchError: if the document is malformed or of an
                unsupported version
        """
        if not isinstance(data, dict):
            raise SchemaMismatchError("Interchange document must be a JSON object")

        version = data.get("version", SCHEMA_VERSION)
        if version != SCHEMA_VERSION:
            raise SchemaMismatchError(
                f"Unsupported interchange version {version!r} (expected {SCHEMA_VERSION})"
            )

        width, height = data.get("width"), data.get("height")
        if not isinstance(width, int) or not isinstance(height, int):
            raise SchemaMismatchError("Interchange document needs integer 'width' and 'height'")

        raw_regions = data.get("regions")
        if not isinstance(raw_regions, list):
            raise SchemaMismatchError("Interchange document needs a 'regions' list")

        regions: List[TextRegion] = []
        seen = set()
        for entry in raw_regions:
            if not isinstance(entry, dict):
                raise SchemaMismatchError("Every region must be a JSON object")
            region_id = entry.get("id")
            if not isinstance(region_id, int) or isinstance(region_id, bool) or region_id < 0:
                raise SchemaMismatchError(f"Invalid region id: {region_id!r}")
            if region_id in seen:
                raise SchemaMismatchError(f"Duplicate region id: {region_id}")
            seen.add(region_id)

            regions.append(TextRegion(
                id=region_id,
                raw_box=_parse_box(entry.get("box"), "box", region_id),
                padded_box=_parse_box(entry.get("padded_box"), "padded_box", region_id),
                source_text=_parse_text(entry.get("source_text"), "source_text", region_id),
                translated_text=_parse_text(
                    entry.get("translated_text"), "translated_text", region_id
                ),
            ))

        return PageRecord(
            source_path=str(data.get("source_path", "")),
            width=width,
            height=height,
            regions=regions,
        )

    def write(self, record: PageRecord, path: str) -> str:
        """Write a record, preserving region order and every field."""
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(self.to_document(record), f, ensure_ascii=False, indent=self.indent)
                f.write("\n")
        except OSError as e:
            raise IoError(f"Failed to write interchange document '{path}': {e}") from e

        logger.info(f"Saved {len(record.regions)} regions to {path}")
        return path

    def read(self, path: str) -> PageRecord:
        if not os.path.isfile(path):
            raise IoError(f"Interchange document not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise IoError(f"Failed to read interchange document '{path}': {e}") from e
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise SchemaMismatchError(f"'{path}' is not a valid interchange document: {e}") from e

        record = self.from_document(data)
        logger.info(f"Loaded {len(record.regions)} regions from {path}")
        return record

    @staticmethod
    def verify(document: PageRecord, detected: PageRecord) -> None:
        """
        Check a loaded document against a fresh detection on the same page.

        Raises:
            SchemaMismatchError: if the page size, region count, or id set differ
        """
        if (document.width, document.height) != (detected.width, detected.height):
            raise SchemaMismatchError(
                f"Document is for a {document.width}x{document.height} page, "
                f"but the page is {detected.width}x{detected.height}"
            )

        expected = set(detected.region_ids())
        found = set(document.region_ids())
        if len(document.regions) != len(detected.regions) or found != expected:
            missing = sorted(expected - found)
            extra = sorted(found - expected)
            raise SchemaMismatchError(
                f"Document has {len(document.regions)} regions but detection found "
                f"{len(detected.regions)} (missing ids: {missing}, unexpected ids: {extra})"
            )
