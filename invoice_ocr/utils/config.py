"""Configuration management for the OCR engine.

Loads YAML configuration into pydantic models with defaults for the
per-stage switches and thresholds, layout and table model settings, and
model file locations.
"""

import logging
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class OCRConfig(BaseModel):
    """Pipeline stage switches and thresholds."""

    enable_detection: bool = True
    enable_classification: bool = True
    enable_recognition: bool = True
    enable_tables: bool = True
    detection_threshold: float = 0.3
    box_threshold: float = 0.6
    unclip_ratio: float = 1.5
    detection_target_size: int = 960
    classification_threshold: float = 0.9
    # CTC confidences are low in practice, so filtering is opt-in.
    recognition_threshold: float = 0.0


class LayoutConfig(BaseModel):
    """Settings for the document layout detector."""

    model_type: Literal["publaynet", "cdla"] = "publaynet"
    input_width: int = 800
    input_height: int = 608
    confidence_threshold: float = 0.5
    nms_threshold: float = 0.5


class TableConfig(BaseModel):
    """Settings for table structure recognition."""

    input_size: int = 488
    max_length: int = 500


class ModelConfig(BaseModel):
    """Model file names and the inference runtime used to execute them."""

    model_dir: str = "models"
    detection_model: str = "det.onnx"
    classification_model: str = "cls.onnx"
    recognition_model: str = "latin_rec.onnx"
    dictionary: str = "latin_dict.txt"
    layout_model: str = "layout.onnx"
    table_model: str = "table.onnx"
    table_classifier_model: str = "table_cls.onnx"
    backend: Literal["onnxruntime", "reference"] = "onnxruntime"
    num_threads: int = 4


class AppConfig(BaseModel):
    """Top-level application configuration."""

    ocr: OCRConfig = Field(default_factory=OCRConfig)
    layout: LayoutConfig = Field(default_factory=LayoutConfig)
    table: TableConfig = Field(default_factory=TableConfig)
    models: ModelConfig = Field(default_factory=ModelConfig)
    log_level: str = "INFO"


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.
            Defaults to configs/config.yaml.

    Returns:
        Validated application configuration.
    """
    if path is None:
        path = Path("configs/config.yaml")

    if path.exists():
        logger.info("Loading configuration from %s", path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        return AppConfig(**raw)

    logger.info("No config file found at %s, using defaults", path)
    return AppConfig()
