"""
HTTP serving layer for challenge recognition.

Example:
    >>> from nocaptcha.serving import create_app, ServingSettings
    >>> app = create_app(ServingSettings(models_dir="models/"))
"""

from .config import ServingSettings
from .errors import ApiError
from .schemas import PredictionResponse, RecognitionRequest
from .server import create_app, main

__all__ = [
    "ApiError",
    "PredictionResponse",
    "RecognitionRequest",
    "ServingSettings",
    "create_app",
    "main",
]
