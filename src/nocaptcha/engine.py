"""
Inference Engines

Wraps one on-disk model artifact per challenge in an executable engine:
- TensorFlow SavedModel directories (``saved_model.pb``, tag ``serve``)
- ONNX models (``model.onnx``)

Every engine exposes the same contract: feed one encoded image to the
``Placeholder`` entry point and read a two-element confidence vector back
from ``scores``. Engines hold mutable runtime state (a TensorFlow session or
an ONNX Runtime session) and are NOT reentrant; callers serialize access
(see ``registry.CaptchaRegistry``).

TensorFlow is imported lazily so that the catalog, the registry and the
serving layer stay importable on machines that only serve ONNX models.
"""

import logging
import os
import threading
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Tuple, Union

import numpy as np

from .errors import EngineLoadError, InferenceError

logger = logging.getLogger(__name__)

SERVE_TAG = "serve"
INPUT_OPERATION = "Placeholder"
OUTPUT_OPERATION = "scores"

_silence_lock = threading.Lock()
_runtime_silenced = False


class ModelFormat(Enum):
    """Supported model artifact formats."""
    SAVED_MODEL = "saved_model"
    ONNX = "onnx"


ARTIFACT_FILES = {
    ModelFormat.SAVED_MODEL: "saved_model.pb",
    ModelFormat.ONNX: "model.onnx",
}


def silence_runtime_logging() -> bool:
    """
    Quiet TensorFlow's C++ diagnostics for the rest of the process.

    Runs once; later calls are no-ops. An operator-provided
    ``TF_CPP_MIN_LOG_LEVEL`` is left untouched.

    Returns:
        True if this call changed the environment
    """
    global _runtime_silenced

    with _silence_lock:
        if _runtime_silenced:
            return False
        _runtime_silenced = True
        if "TF_CPP_MIN_LOG_LEVEL" in os.environ:
            return False
        os.environ["TF_CPP_MIN_LOG_LEVEL"] = "3"
        return True


def detect_format(model_dir: Union[str, Path]) -> Optional[ModelFormat]:
    """Return the format of the artifact inside ``model_dir``, if any."""
    model_dir = Path(model_dir)
    for model_format, filename in ARTIFACT_FILES.items():
        if (model_dir / filename).is_file():
            return model_format
    return None


def _as_bytes(image: Union[str, bytes]) -> bytes:
    if isinstance(image, str):
        return image.encode("utf-8")
    return bytes(image)


def _confidence_pair(scores: Any) -> Tuple[float, float]:
    values = np.asarray(scores, dtype=np.float32).reshape(-1)
    if values.size < 2:
        raise InferenceError(
            f"Expected at least 2 scores from '{OUTPUT_OPERATION}', got {values.size}"
        )
    return float(values[0]), float(values[1])


class InferenceEngine(ABC):
    """One loaded model artifact, ready to score images."""

    model_format: ModelFormat

    def __init__(self, path: Path):
        self.path = Path(path)

    @abstractmethod
    def run(self, image: Union[str, bytes]) -> Tuple[float, float]:
        """
        Score one encoded image.

        Args:
            image: Decoded image payload

        Returns:
            ``(affirmative, negative)`` confidences

        Raises:
            InferenceError: If an entry point is missing or execution fails
        """

    def close(self) -> None:
        """Release runtime resources held by the engine."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(path='{self.path}')"


class SavedModelEngine(InferenceEngine):
    """TensorFlow SavedModel executed through a TF1-compatible session."""

    model_format = ModelFormat.SAVED_MODEL

    def __init__(self, path: Path, session: Any, graph: Any, run_errors: Tuple[type, ...] = ()):
        super().__init__(path)
        self._session = session
        self._graph = graph
        self._run_errors = run_errors + (ValueError, TypeError)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "SavedModelEngine":
        """
        Load the ``serve`` meta graph of a SavedModel directory.

        Raises:
            EngineLoadError: If TensorFlow rejects the artifact
        """
        import tensorflow as tf

        path = Path(path)

        graph = tf.Graph()
        session = tf.compat.v1.Session(graph=graph)
        try:
            with graph.as_default():
                tf.compat.v1.saved_model.load(session, [SERVE_TAG], str(path))
        except Exception as e:
            session.close()
            logger.error(f"TensorFlow rejected SavedModel at {path}: {e}")
            raise EngineLoadError(path.name, str(e)) from e

        return cls(path, session, graph, run_errors=(tf.errors.OpError,))

    def run(self, image: Union[str, bytes]) -> Tuple[float, float]:
        try:
            placeholder = self._graph.get_operation_by_name(INPUT_OPERATION)
            scores = self._graph.get_operation_by_name(OUTPUT_OPERATION)
        except (KeyError, ValueError) as e:
            raise InferenceError(f"Graph at {self.path} is missing an entry point: {e}") from e

        try:
            output = self._session.run(
                scores.outputs[0],
                feed_dict={placeholder.outputs[0]: [_as_bytes(image)]},
            )
        except self._run_errors as e:
            raise InferenceError(f"TensorFlow execution failed: {getattr(e, 'message', e)}") from e

        return _confidence_pair(output)

    def close(self) -> None:
        self._session.close()


class OnnxEngine(InferenceEngine):
    """ONNX model executed through ONNX Runtime."""

    model_format = ModelFormat.ONNX

    PREFERRED_PROVIDERS = ["CUDAExecutionProvider", "CPUExecutionProvider"]

    def __init__(self, path: Path, session: Any):
        super().__init__(path)
        self._session = session

    @classmethod
    def load(cls, path: Union[str, Path]) -> "OnnxEngine":
        """Create an inference session for ``path/model.onnx``."""
        import onnxruntime as ort

        path = Path(path)
        available = ort.get_available_providers()
        providers = [p for p in cls.PREFERRED_PROVIDERS if p in available] or available

        try:
            session = ort.InferenceSession(
                str(path / ARTIFACT_FILES[ModelFormat.ONNX]),
                providers=providers,
            )
        except Exception as e:
            logger.error(f"ONNX Runtime rejected model at {path}: {e}")
            raise EngineLoadError(path.name, str(e)) from e

        return cls(path, session)

    def run(self, image: Union[str, bytes]) -> Tuple[float, float]:
        input_names = {i.name for i in self._session.get_inputs()}
        output_names = {o.name for o in self._session.get_outputs()}

        if INPUT_OPERATION not in input_names:
            raise InferenceError(f"Model at {self.path} has no input '{INPUT_OPERATION}'")
        if OUTPUT_OPERATION not in output_names:
            raise InferenceError(f"Model at {self.path} has no output '{OUTPUT_OPERATION}'")

        feed = np.array([_as_bytes(image)], dtype=object)
        try:
            outputs = self._session.run([OUTPUT_OPERATION], {INPUT_OPERATION: feed})
        except Exception as e:
            raise InferenceError(f"ONNX Runtime execution failed: {e}") from e

        return _confidence_pair(outputs[0])


ENGINE_TYPES = {
    ModelFormat.SAVED_MODEL: SavedModelEngine,
    ModelFormat.ONNX: OnnxEngine,
}


def load_engine(
    model_dir: Union[str, Path],
    model_format: Optional[ModelFormat] = None,
) -> InferenceEngine:
    """
    Load the model artifact stored in ``model_dir``.

    Args:
        model_dir: Challenge model directory
        model_format: Artifact format; detected from the directory if None

    Returns:
        Loaded engine

    Raises:
        FileNotFoundError: If no recognised artifact exists
        EngineLoadError: If the runtime rejects the artifact
    """
    model_dir = Path(model_dir)

    if model_format is None:
        model_format = detect_format(model_dir)
        if model_format is None:
            raise FileNotFoundError(
                f"No model artifact in {model_dir} "
                f"(expected one of {sorted(ARTIFACT_FILES.values())})"
            )

    logger.debug(f"Loading {model_format.value} engine from {model_dir}")
    return ENGINE_TYPES[model_format].load(model_dir)
