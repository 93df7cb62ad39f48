"""
Configuration and Run Modes

Holds the default settings, the YAML loader that merges a config file over
them, the run options gathered from the command line, and the stage plans
that decide which components each mode invokes.
"""

import copy
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)


TESSDATA_ENV_VAR = "TESSDATA_PREFIX"

DEFAULT_CONFIG: Dict[str, Any] = {
    "general": {
        "output_dir": "./output",
    },
    "detection": {
        "input_size": 640,
        "confidence_threshold": 0.4,
        "score_threshold": 0.25,
        "iou_threshold": 0.45,
    },
    "extraction": {
        "padding": 10,
    },
    "ocr": {
        "lang": "jpn_vert",
        "psm": 5,
        "oem": None,
        "tesseract_cmd": None,
    },
    "translation": {
        "service": "sugoi",
        "url": "http://localhost:14366",
        "source_language": "ja",
        "target_language": "en",
        "timeout": 60.0,
        "batch_size": 50,
        "api_key": None,
    },
    "cleaning": {
        "method": "telea",
        "radius": 3,
        "ring": 3,
    },
    "rendering": {
        "font_path": None,
        "min_font_size": 8,
        "max_font_size": 48,
        "font_color": [0, 0, 0],
        "line_spacing": 1.15,
        "margin": 2,
        "inpaint_background": True,
    },
    "batch": {
        "workers": None,
        "show_progress": True,
    },
    "server": {
        "host": "127.0.0.1",
        "port": 8000,
    },
}


def merge_config(base: Dict[str, Any], overrides: Mapping[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    config_path: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Load configuration.

    Args:
        config_path: Path to YAML configuration file (ignored if missing)
        overrides: Nested dictionary applied on top of the file

    Returns:
        Complete configuration dictionary
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path and os.path.exists(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid configuration file '{config_path}': {e}") from e
        if not isinstance(loaded, Mapping):
            raise ConfigError(f"Configuration file '{config_path}' must contain a mapping")
        config = merge_config(config, loaded)
        logger.info(f"Loaded configuration from {config_path}")

    if overrides:
        config = merge_config(config, overrides)

    return config


def output_stem(image_path: str) -> str:
    """Base name, without extension, that every output of a page is named after."""
    return os.path.splitext(os.path.basename(image_path))[0]


def resolve_tessdata_dir(
    data_dir: Optional[str],
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """Explicit data directory first, then the TESSDATA_PREFIX variable."""
    if data_dir:
        return data_dir
    environ = os.environ if environ is None else environ
    return environ.get(TESSDATA_ENV_VAR) or None


class Mode(Enum):
    EXTRACT = "extract"
    REPLACE = "replace"
    TRANSLATE = "translate"


class Stage(Enum):
    DETECT = "detect"
    OCR = "ocr"
    WRITE_TEXT = "write_text"
    READ_TEXT = "read_text"
    TRANSLATE = "translate"
    CLEAN = "clean"
    COMPOSITE = "composite"
    SAVE_CLEAN = "save_clean"


_MODE_STAGES: Dict[Mode, FrozenSet[Stage]] = {
    Mode.EXTRACT: frozenset({Stage.DETECT, Stage.OCR, Stage.WRITE_TEXT}),
    Mode.REPLACE: frozenset({Stage.DETECT, Stage.READ_TEXT, Stage.COMPOSITE}),
    Mode.TRANSLATE: frozenset({
        Stage.DETECT, Stage.OCR, Stage.WRITE_TEXT, Stage.TRANSLATE, Stage.COMPOSITE,
    }),
}


@dataclass(frozen=True)
class PipelinePlan:
    """The exact set of stages one run executes for every page."""
    mode: Mode
    stages: FrozenSet[Stage]

    def has(self, stage: Stage) -> bool:
        return stage in self.stages

    @property
    def composites_on_clean(self) -> bool:
        return self.has(Stage.COMPOSITE) and self.has(Stage.CLEAN)


def build_plan(mode: Mode, clean: bool = False, inpaint_background: bool = True) -> PipelinePlan:
    """
    Build the stage plan for a mode.

    Args:
        mode: Extract, replace or translate
        clean: Also emit the cleaned background as an output
        inpaint_background: Composite onto the cleaned page instead of the original
    """
    stages = set(_MODE_STAGES[mode])
    if Stage.COMPOSITE in stages and inpaint_background:
        stages.add(Stage.CLEAN)
    if clean:
        stages.update({Stage.CLEAN, Stage.SAVE_CLEAN})
    return PipelinePlan(mode=mode, stages=frozenset(stages))


@dataclass
class RunOptions:
    """Options for one batch run, as supplied by the command line."""
    inputs: List[str]
    mode: Mode = Mode.TRANSLATE
    output: Optional[str] = None
    text: Optional[str] = None
    model: Optional[str] = None
    lang: Optional[str] = None
    data: Optional[str] = None
    padding: Optional[int] = None
    single: bool = False
    clean: bool = False
    workers: Optional[int] = None
    config_path: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def validate(self, require_model: bool = True, require_inputs: bool = True) -> None:
        """Reject invalid combinations before any page is processed."""
        if require_inputs and not self.inputs:
            raise ConfigError("No input pages given")

        owners: Dict[str, str] = {}
        for path in dict.fromkeys(self.inputs):
            stem = output_stem(path)
            if stem in owners:
                raise ConfigError(
                    f"Inputs '{owners[stem]}' and '{path}' would both write outputs named '{stem}'; "
                    f"rename one of them or process them in separate runs"
                )
            owners[stem] = path

        if self.mode is Mode.REPLACE and not self.text:
            raise ConfigError("Replace mode requires an interchange path (--text)")
        if self.mode is not Mode.REPLACE and self.text:
            raise ConfigError("--text is only used in replace mode")

        if self.text and not os.path.isdir(self.text):
            if os.path.splitext(self.text)[1].lower() != ".json":
                raise ConfigError("Text file must be a JSON file.")
            if len(self.inputs) > 1:
                raise ConfigError(
                    "A single interchange file can only be used with a single input page; "
                    "pass a directory of <page>.json files instead"
                )

        if require_model:
            if not self.model:
                raise ConfigError("A detection model must be specified (--model)")
            if os.path.splitext(self.model)[1].lower() != ".onnx":
                raise ConfigError("Model must be an ONNX file.")
            if not os.path.isfile(self.model):
                raise ConfigError(f"Model not found: {self.model}")

        if self.padding is not None and self.padding < 0:
            raise ConfigError(f"Padding must be non-negative, got {self.padding}")
        if self.workers is not None and self.workers < 1:
            raise ConfigError(f"Worker count must be at least 1, got {self.workers}")

    def config_overrides(self) -> Dict[str, Any]:
        """Translate explicit flags into nested config overrides."""
        overrides: Dict[str, Any] = {}
        if self.output:
            overrides.setdefault("general", {})["output_dir"] = self.output
        if self.padding is not None:
            overrides.setdefault("extraction", {})["padding"] = self.padding
        if self.lang:
            overrides.setdefault("ocr", {})["lang"] = self.lang
        if self.workers is not None:
            overrides.setdefault("batch", {})["workers"] = self.workers
        return merge_config(overrides, self.extra)
