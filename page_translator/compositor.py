"""
Text Compositing Module

Lays translated text out inside each region and renders it onto the
background page with Pillow.
"""

import logging
import os
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from .errors import LayoutOverflow
from .models import BoundingBox, TextRegion

logger = logging.getLogger(__name__)


@dataclass
class TextLayout:
    """Font size and wrapped lines chosen for one region."""
    font_size: int
    lines: List[str]
    line_height: int
    overflow: bool = False
    lines_dropped: int = 0


class Compositor:
    """
    Renders translated text into text regions.

    This class handles:
    - Font discovery and per-thread font caching
    - Greedy word wrapping at the region width
    - Choosing the largest font size whose wrapped text fits the region
    - Drawing the text, clipped to the region
    """

    DEFAULT_FONTS = [
        "./assets/fonts/NotoSans-Regular.ttf",
        "assets/fonts/NotoSans-Regular.ttf",
        "/usr/share/fonts/truetype/noto/NotoSans-Regular.ttf",
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/TTF/DejaVuSans.ttf",
        "/System/Library/Fonts/Supplemental/Arial.ttf",
        "C:\\Windows\\Fonts\\arial.ttf",
    ]

    FONT_DIRS = [
        "/usr/share/fonts",
        "/usr/local/share/fonts",
        os.path.expanduser("~/.fonts"),
        "/System/Library/Fonts",
        "C:\\Windows\\Fonts",
    ]

    def __init__(
        self,
        font_path: Optional[str] = None,
        min_font_size: int = 8,
        max_font_size: int = 48,
        font_color: Tuple[int, int, int] = (0, 0, 0),
        line_spacing: float = 1.15,
        margin: int = 2,
    ):
        """
        Initialize the compositor.

        Args:
            font_path: TrueType font to render with (searched for if None)
            min_font_size: Smallest size tried before clipping
            max_font_size: Largest size tried
            font_color: Text colour (RGB)
            line_spacing: Line height as a multiple of the font size
            margin: Inner margin kept free inside each region (pixels)
        """
        if min_font_size < 1 or max_font_size < min_font_size:
            raise ValueError(
                f"Invalid font size range: {min_font_size}..{max_font_size}"
            )
        self.font_path = font_path or self._find_font()
        self.min_font_size = min_font_size
        self.max_font_size = max_font_size
        self.font_color = tuple(font_color)
        self.line_spacing = line_spacing
        self.margin = margin

        # FreeType faces are not shared between rendering threads
        self._local = threading.local()

        logger.info(f"Compositor initialized with font: {self.font_path or 'Pillow default'}")

    def _find_font(self) -> Optional[str]:
        """Find a usable TrueType font on the system."""
        for font_path in self.DEFAULT_FONTS:
            if os.path.exists(font_path):
                return font_path

        for font_dir in self.FONT_DIRS:
            if not os.path.isdir(font_dir):
                continue
            for root, dirs, files in os.walk(font_dir):
                dirs.sort()
                for file in sorted(files):
                    lower = file.lower()
                    if lower.endswith(".ttf") and any(n in lower for n in ("noto", "dejavu", "liberation")):
                        return os.path.join(root, file)

        logger.warning("No TrueType font found, falling back to Pillow's default font")
        return None

    def _get_font(self, size: int) -> ImageFont.FreeTypeFont:
        """Get a font object for the specified size (cached per thread)."""
        cache: Dict[int, ImageFont.FreeTypeFont] = getattr(self._local, "fonts", None)
        if cache is None:
            cache = self._local.fonts = {}
        if size in cache:
            return cache[size]

        if self.font_path:
            try:
                font = ImageFont.truetype(self.font_path, size)
            except OSError as e:
                logger.error(f"Failed to load font '{self.font_path}': {e}")
                font = ImageFont.load_default(size=size)
        else:
            font = ImageFont.load_default(size=size)

        cache[size] = font
        return font

    @staticmethod
    def _text_width(text: str, font: ImageFont.FreeTypeFont) -> float:
        return font.getlength(text)

    def _line_height(self, size: int) -> int:
        return max(1, int(round(size * self.line_spacing)))

    def wrap(self, text: str, font: ImageFont.FreeTypeFont, max_width: int) -> List[str]:
        """
        Greedy word wrap.

        Words wider than a full line are broken between characters.
        """
        lines: List[str] = []
        current = ""
        for word in text.split():
            candidate = f"{current} {word}" if current else word
            if self._text_width(candidate, font) <= max_width:
                current = candidate
                continue

            if current:
                lines.append(current)
                current = ""

            if self._text_width(word, font) <= max_width:
                current = word
                continue

            for char in word:
                if current and self._text_width(current + char, font) > max_width:
                    lines.append(current)
                    current = char
                else:
                    current += char

        if current:
            lines.append(current)
        return lines

    def fit(self, text: str, box: BoundingBox) -> TextLayout:
        """
        Choose the largest font size at which the wrapped text fits the box.

        If nothing from the minimum size up fits, the minimum size is used
        and trailing lines that do not fit are dropped.
        """
        avail_width = max(1, box.width - 2 * self.margin)
        avail_height = max(1, box.height - 2 * self.margin)

        largest = max(self.min_font_size, min(self.max_font_size, avail_height))
        for size in range(largest, self.min_font_size - 1, -1):
            font = self._get_font(size)
            lines = self.wrap(text, font, avail_width)
            line_height = self._line_height(size)
            fits_height = len(lines) * line_height <= avail_height
            fits_width = all(self._text_width(line, font) <= avail_width for line in lines)
            if fits_height and fits_width:
                return TextLayout(size, lines, line_height)

        size = self.min_font_size
        font = self._get_font(size)
        lines = self.wrap(text, font, avail_width)
        line_height = self._line_height(size)
        max_lines = max(1, avail_height // line_height)
        return TextLayout(
            font_size=size,
            lines=lines[:max_lines],
            line_height=line_height,
            overflow=True,
            lines_dropped=max(0, len(lines) - max_lines),
        )

    def _render_region(self, canvas: Image.Image, region: TextRegion, layout: TextLayout) -> None:
        box = region.padded_box
        tile = canvas.crop((box.x, box.y, box.x2, box.y2))
        draw = ImageDraw.Draw(tile)
        font = self._get_font(layout.font_size)

        block_height = len(layout.lines) * layout.line_height
        y = self.margin if layout.overflow else max(self.margin, (box.height - block_height) // 2)
        for line in layout.lines:
            x = max(self.margin, int((box.width - self._text_width(line, font)) // 2))
            draw.text((x, y), line, font=font, fill=self.font_color)
            y += layout.line_height

        canvas.paste(tile, (box.x, box.y))

    def composite(
        self,
        background: np.ndarray,
        regions: List[TextRegion],
    ) -> Tuple[np.ndarray, List[LayoutOverflow]]:
        """
        Render translated text onto a background page.

        Regions without translated text are left untouched.

        Args:
            background: Cleaned or original page (BGR format)
            regions: Regions with translated_text populated

        Returns:
            (rendered page, overflow warnings)
        """
        to_render = [r for r in regions if r.has_translation and not r.padded_box.is_empty]
        if not to_render:
            return background.copy(), []

        # Convert BGR to RGB for PIL
        canvas = Image.fromarray(cv2.cvtColor(background, cv2.COLOR_BGR2RGB))

        overflows: List[LayoutOverflow] = []
        for region in to_render:
            layout = self.fit(region.translated_text, region.padded_box)
            if layout.overflow:
                warning = LayoutOverflow(region.id, layout.font_size, layout.lines_dropped)
                logger.warning(str(warning))
                overflows.append(warning)
            self._render_region(canvas, region, layout)

        logger.info(f"Rendered {len(to_render)} text regions ({len(overflows)} overflowed)")
        return cv2.cvtColor(np.array(canvas), cv2.COLOR_RGB2BGR), overflows
