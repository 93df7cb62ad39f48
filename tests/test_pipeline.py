"""
End-to-end tests for the page translation pipeline.

The detector, OCR engine and translation service are replaced with fakes,
so these run without a model file, Tesseract or a network.

Run with: pytest tests/ -v
"""

import json
import os
import sys
import pytest
import numpy as np

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from page_translator.cli import main
from page_translator.config import Mode, RunOptions
from page_translator.detector import Detector
from page_translator.errors import ConfigError
from page_translator.image_io import load_image, save_image
from page_translator.pipeline import PageTranslationPipeline, create_pipeline
from page_translator.translator import Translator

from helpers import FakeNet, FakeOcr, UpperBackend, detection_row, draw_text_blocks, make_page

BOXES = [(60, 80, 120, 200), (360, 100, 160, 100)]
ROWS = [detection_row(*BOXES[0], objectness=0.9), detection_row(*BOXES[1], objectness=0.8)]
TEST_CONFIG = {"batch": {"show_progress": False}}


def _write_pages(directory, names):
    paths = []
    for i, name in enumerate(names):
        page = draw_text_blocks(make_page(value=230 - 10 * i), BOXES)
        paths.append(save_image(page, os.path.join(directory, name)))
    return paths


def _pipeline(options, rows=ROWS):
    return PageTranslationPipeline(
        options,
        config=TEST_CONFIG,
        detector=Detector(FakeNet(rows)),
        ocr_factory=FakeOcr,
        translator=Translator(backend=UpperBackend()),
    )


def _read_bytes(path):
    with open(path, "rb") as f:
        return f.read()


@pytest.fixture
def pages(tmp_path):
    return _write_pages(str(tmp_path / "pages"), ["001.png", "002.png", "003.png"])


@pytest.mark.integration
class TestExtractMode:
    """Tests for extracting text into interchange documents."""

    def test_writes_interchange_only(self, pages, tmp_path):
        """Extract writes one JSON per page and no images."""
        out = tmp_path / "texts"
        report = _pipeline(RunOptions(inputs=pages, mode=Mode.EXTRACT, output=str(out))).run()

        assert report.exit_code == 0
        assert sorted(os.listdir(out)) == ["001.json", "002.json", "003.json"]

        with open(out / "001.json", encoding="utf-8") as f:
            data = json.load(f)
        assert data["width"] == 640 and data["height"] == 640
        assert [r["id"] for r in data["regions"]] == [0, 1]
        assert data["regions"][0]["box"] == list(BOXES[0])
        assert data["regions"][0]["padded_box"] == [50, 70, 140, 220]
        assert data["regions"][0]["source_text"].startswith("text block")
        assert data["regions"][0]["translated_text"] is None

    def test_clean_flag_saves_clean_page(self, pages, tmp_path):
        """With clean, the text-free page is saved alongside the document."""
        out = tmp_path / "out"
        options = RunOptions(inputs=pages[:1], mode=Mode.EXTRACT, output=str(out), clean=True)
        _pipeline(options).run()

        assert sorted(os.listdir(out)) == ["001.json", "001_clean.png"]
        clean = load_image(str(out / "001_clean.png"))
        x, y, w, h = BOXES[0]
        assert clean[y + 10:y + h - 10, x + 10:x + w - 10].mean() > 150


@pytest.mark.integration
class TestReplaceMode:
    """Tests for rendering edited interchange documents."""

    def _extract(self, pages, tmp_path):
        texts = tmp_path / "texts"
        _pipeline(RunOptions(inputs=pages, mode=Mode.EXTRACT, output=str(texts))).run()
        return texts

    def test_renders_edited_translations(self, pages, tmp_path):
        """Edited translations are drawn; pixels outside regions are untouched."""
        texts = self._extract(pages, tmp_path)
        doc_path = texts / "001.json"
        data = json.loads(doc_path.read_text(encoding="utf-8"))
        data["regions"][0]["translated_text"] = "Hello there"
        data["regions"][1]["translated_text"] = "Bye"
        doc_path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")

        out = tmp_path / "out"
        options = RunOptions(inputs=pages[:1], mode=Mode.REPLACE, text=str(texts), output=str(out))
        report = _pipeline(options).run()

        assert report.exit_code == 0
        assert os.listdir(out) == ["001_translated.png"]

        original = load_image(pages[0])
        rendered = load_image(str(out / "001_translated.png"))
        outside = np.ones(original.shape[:2], dtype=bool)
        for region in data["regions"]:
            x, y, w, h = region["padded_box"]
            outside[y:y + h, x:x + w] = False
        assert np.array_equal(rendered[outside], original[outside])
        assert not np.array_equal(rendered, original)

    def test_single_document_file(self, pages, tmp_path):
        """A single page may be given its document file directly."""
        texts = self._extract(pages[:1], tmp_path)
        out = tmp_path / "out"
        options = RunOptions(
            inputs=pages[:1], mode=Mode.REPLACE, text=str(texts / "001.json"), output=str(out)
        )
        assert _pipeline(options).run().exit_code == 0
        assert os.path.exists(out / "001_translated.png")

    def test_mismatched_document(self, pages, tmp_path):
        """A document whose regions differ from detection fails that page only."""
        texts = self._extract(pages, tmp_path)
        doc_path = texts / "002.json"
        data = json.loads(doc_path.read_text(encoding="utf-8"))
        data["regions"] = data["regions"][:1]
        doc_path.write_text(json.dumps(data), encoding="utf-8")

        out = tmp_path / "out"
        options = RunOptions(inputs=pages, mode=Mode.REPLACE, text=str(texts), output=str(out))
        report = _pipeline(options).run()

        assert report.exit_code == 1
        assert [(o.source_path, o.error_kind) for o in report.failed] == [
            (pages[1], "SchemaMismatchError")
        ]
        assert sorted(os.listdir(out)) == ["001_translated.png", "003_translated.png"]

    def test_missing_document(self, pages, tmp_path):
        """A page without a document is an I/O failure."""
        texts = self._extract(pages[:1], tmp_path)
        options = RunOptions(
            inputs=pages[:2], mode=Mode.REPLACE, text=str(texts), output=str(tmp_path / "out")
        )
        report = _pipeline(options).run()

        assert [o.error_kind for o in report.failed] == ["IoError"]


@pytest.mark.integration
class TestTranslateMode:
    """Tests for fully automatic translation."""

    def test_translates_and_renders(self, pages, tmp_path):
        """Translate writes the document with translations and the rendered page."""
        out = tmp_path / "out"
        report = _pipeline(RunOptions(inputs=pages[:1], output=str(out))).run()

        assert report.exit_code == 0
        assert sorted(os.listdir(out)) == ["001.json", "001_translated.png"]
        data = json.loads((out / "001.json").read_text(encoding="utf-8"))
        for region in data["regions"]:
            assert region["translated_text"] == region["source_text"].upper()

    def test_page_without_text(self, tmp_path):
        """A page with no detections still produces its outputs."""
        page = save_image(make_page(), str(tmp_path / "blank.png"))
        out = tmp_path / "out"
        report = _pipeline(RunOptions(inputs=[page], output=str(out)), rows=[]).run()

        assert report.exit_code == 0
        data = json.loads((out / "blank.json").read_text(encoding="utf-8"))
        assert data["regions"] == []
        assert np.array_equal(load_image(str(out / "blank_translated.png")), make_page())

    def test_corrupt_page_is_isolated(self, pages, tmp_path):
        """A corrupt page fails alone; the other outputs are unaffected."""
        corrupt = tmp_path / "pages" / "002.png"
        corrupt.write_bytes(b"not an image")

        out_all = tmp_path / "all"
        report = _pipeline(RunOptions(inputs=pages, output=str(out_all), workers=3)).run()
        out_good = tmp_path / "good"
        _pipeline(RunOptions(inputs=[pages[0], pages[2]], output=str(out_good), single=True)).run()

        assert [(o.source_path, o.error_kind) for o in report.failed] == [(pages[1], "IoError")]
        assert sorted(os.listdir(out_all)) == sorted(os.listdir(out_good))
        for name in os.listdir(out_good):
            assert _read_bytes(out_all / name) == _read_bytes(out_good / name)

    def test_parallel_matches_sequential(self, pages, tmp_path):
        """Worker count does not change any output byte."""
        single = tmp_path / "single"
        parallel = tmp_path / "parallel"
        _pipeline(RunOptions(inputs=pages, output=str(single), single=True)).run()
        _pipeline(RunOptions(inputs=pages, output=str(parallel), workers=4)).run()

        names = sorted(os.listdir(single))
        assert len(names) == 6
        assert names == sorted(os.listdir(parallel))
        for name in names:
            assert _read_bytes(single / name) == _read_bytes(parallel / name)


class TestPipelineSetup:
    """Tests for rejecting bad runs before any page is processed."""

    def test_invalid_options_rejected(self, pages, tmp_path):
        """Replace without a document path never starts."""
        options = RunOptions(inputs=pages, mode=Mode.REPLACE, output=str(tmp_path / "out"))
        with pytest.raises(ConfigError):
            create_pipeline(options, detector=Detector(FakeNet(ROWS)))
        assert not os.path.exists(tmp_path / "out")

    def test_invalid_cleaning_method(self, pages):
        """An unknown cleaning method is a configuration error."""
        with pytest.raises(ConfigError):
            PageTranslationPipeline(
                RunOptions(inputs=pages),
                config={"cleaning": {"method": "blur"}},
                detector=Detector(FakeNet(ROWS)),
                translator=Translator(backend=UpperBackend()),
            )

    def test_same_named_pages_rejected(self, tmp_path):
        """Pages from different folders with the same name never share outputs."""
        first = _write_pages(str(tmp_path / "ch1"), ["001.png"])
        second = _write_pages(str(tmp_path / "ch2"), ["001.png"])
        out = tmp_path / "out"

        with pytest.raises(ConfigError, match="001"):
            _pipeline(RunOptions(inputs=first + second, output=str(out)))
        assert not os.path.exists(out)

    def test_output_dir_is_a_file(self, pages, tmp_path):
        """An output path that cannot be a directory fails at construction."""
        out = tmp_path / "out"
        out.write_bytes(b"")

        with pytest.raises(ConfigError, match="output directory"):
            _pipeline(RunOptions(inputs=pages, output=str(out)))

    def test_output_dir_created_at_construction(self, pages, tmp_path):
        """The output directory exists before any page runs."""
        out = tmp_path / "nested" / "out"
        _pipeline(RunOptions(inputs=pages, mode=Mode.EXTRACT, output=str(out)))
        assert os.path.isdir(out)

    def test_cli_config_error_exit_code(self, pages, tmp_path):
        """The command line exits with 2 on a configuration error."""
        model = tmp_path / "detector.onnx"
        model.write_bytes(b"onnx")
        assert main(["-r", "-i", pages[0], "-m", str(model)]) == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
