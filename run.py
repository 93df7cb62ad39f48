#!/usr/bin/env python3
"""
Page Translator

Main entry point for the translation system.

Usage:
    python run.py --input <image or directory> --model <detector.onnx> [options]
    python run.py --help
"""

import sys
from pathlib import Path

# Allow running from a source checkout
sys.path.insert(0, str(Path(__file__).parent))

from page_translator.cli import main


if __name__ == "__main__":
    sys.exit(main())
