"""
reCAPTCHA Challenge Recognition

Serves per-challenge image classifiers loaded from disk:
- Fixed catalog of challenge types
- TensorFlow SavedModel and ONNX inference engines
- Registry with parallel loading and per-challenge locking
- FastAPI serving layer (``nocaptcha.serving``)

Example:
    >>> from nocaptcha import CaptchaRegistry, CaptchaChallenge
    >>> registry = CaptchaRegistry.load_from_models_dir("models/")
    >>> registry.predict(CaptchaChallenge.BUS, image_bytes)
    Prediction(affirmative_confidence=0.93, negative_confidence=0.07)
"""

from .catalog import (
    CaptchaChallenge,
    folder_to_challenge,
    is_valid_name,
    parse,
    to_name,
)

from .engine import (
    InferenceEngine,
    ModelFormat,
    OnnxEngine,
    SavedModelEngine,
    detect_format,
    load_engine,
    silence_runtime_logging,
)

from .errors import (
    ChallengeNameError,
    ChallengeNotLoadedError,
    EngineLoadError,
    EngineUnavailableError,
    InferenceError,
    ModelDirectoryError,
    ModelMissingError,
    NoCaptchaError,
    PredictionError,
    RegistryLoadError,
    UnknownChallengeError,
)

from .registry import CaptchaRegistry, Prediction

# Serving components are imported separately to avoid FastAPI dependency issues
# from .serving import create_app

__all__ = [
    # Catalog
    "CaptchaChallenge",
    "folder_to_challenge",
    "is_valid_name",
    "parse",
    "to_name",
    # Engines
    "InferenceEngine",
    "ModelFormat",
    "OnnxEngine",
    "SavedModelEngine",
    "detect_format",
    "load_engine",
    "silence_runtime_logging",
    # Registry
    "CaptchaRegistry",
    "Prediction",
    # Errors
    "ChallengeNameError",
    "ChallengeNotLoadedError",
    "EngineLoadError",
    "EngineUnavailableError",
    "InferenceError",
    "ModelDirectoryError",
    "ModelMissingError",
    "NoCaptchaError",
    "PredictionError",
    "RegistryLoadError",
    "UnknownChallengeError",
]

__version__ = "1.0.0"
