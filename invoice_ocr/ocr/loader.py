"""Assemble an :class:`OcrEngine` from model files on disk."""

from pathlib import Path

from invoice_ocr.inference.backend import InferenceBackend, load_backend
from invoice_ocr.preprocessing.image_preprocessor import ImagePreprocessor
from invoice_ocr.utils.config import AppConfig
from invoice_ocr.utils.logger import get_logger

from .classifier import AngleClassifier
from .detector import TextDetector
from .engine import OcrEngine
from .layout import LayoutDetector, LayoutModelType
from .recognizer import TextRecognizer
from .table import TableClassifier, TableRecognizer

logger = get_logger(__name__)


def create_engine_from_dir(
    model_dir: Path | None = None, config: AppConfig | None = None
) -> OcrEngine:
    """Load every available, enabled model from a directory.

    Missing model files are skipped, so the engine only carries the
    stages whose models are present. The recognizer uses the dictionary
    file when it exists and the built-in Latin dictionary otherwise.

    Args:
        model_dir: Directory holding the model files. Defaults to
            ``config.models.model_dir``.
        config: Application configuration; defaults are used if omitted.

    Returns:
        The assembled engine.

    Raises:
        ModelLoadError: If a present model file fails to load.
    """
    config = config or AppConfig()
    models = config.models
    ocr = config.ocr
    model_dir = Path(model_dir or models.model_dir)

    def load(file_name: str) -> InferenceBackend | None:
        path = model_dir / file_name
        if not path.exists():
            logger.debug("Model not found, skipping: %s", path)
            return None
        backend = load_backend(path, kind=models.backend, num_threads=models.num_threads)
        logger.info("Loaded %s (%s backend)", path, models.backend)
        return backend

    builder = OcrEngine.builder().with_config(ocr)
    preprocessor = ImagePreprocessor(det_target_size=ocr.detection_target_size)

    if ocr.enable_detection and (backend := load(models.detection_model)):
        builder.with_detector(
            TextDetector(
                backend,
                threshold=ocr.detection_threshold,
                box_threshold=ocr.box_threshold,
                unclip_ratio=ocr.unclip_ratio,
                preprocessor=preprocessor,
            )
        )

    if ocr.enable_classification and (backend := load(models.classification_model)):
        builder.with_classifier(
            AngleClassifier(backend, threshold=ocr.classification_threshold)
        )

    if ocr.enable_recognition and (backend := load(models.recognition_model)):
        dict_path = model_dir / models.dictionary
        if dict_path.exists():
            dictionary = TextRecognizer.load_dictionary(dict_path)
        else:
            logger.info("No dictionary at %s, using built-in Latin set", dict_path)
            dictionary = TextRecognizer.default_latin_dictionary()
        builder.with_recognizer(TextRecognizer(backend, dictionary=dictionary))

    if backend := load(models.layout_model):
        builder.with_layout_detector(
            LayoutDetector(
                backend,
                model_type=LayoutModelType(config.layout.model_type),
                input_size=(config.layout.input_width, config.layout.input_height),
                confidence_threshold=config.layout.confidence_threshold,
                nms_threshold=config.layout.nms_threshold,
            )
        )

    if ocr.enable_tables:
        if backend := load(models.table_model):
            size = config.table.input_size
            builder.with_table_recognizer(
                TableRecognizer(
                    backend, input_size=(size, size), max_length=config.table.max_length
                )
            )
        if backend := load(models.table_classifier_model):
            builder.with_table_classifier(TableClassifier(backend))

    return builder.build()
