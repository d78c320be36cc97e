"""
Error taxonomy for model loading and prediction.

Loading errors are fatal: the service must not start with a partially
loaded registry. Prediction errors are per request and never affect other
challenges.
"""

from typing import Any, Optional


class NoCaptchaError(Exception):
    """Base class for all errors raised by this package."""
    pass


class UnknownChallengeError(NoCaptchaError, ValueError):
    """A string did not name any challenge in the catalog."""

    def __init__(self, name: Any):
        self.name = name
        super().__init__(f"Unknown challenge: {name!r}")


# ============================================================================
# Loading
# ============================================================================

class RegistryLoadError(NoCaptchaError):
    """The registry could not be loaded from disk."""
    pass


class ModelDirectoryError(RegistryLoadError):
    """The models root directory could not be read."""

    def __init__(self, path: Any, cause: Optional[BaseException] = None):
        self.path = path
        self.cause = cause
        super().__init__(f"Cannot read models directory {path}: {cause}")


class ModelMissingError(RegistryLoadError):
    """A challenge directory exists but holds no recognised model artifact."""

    def __init__(self, challenge: Any, path: Any = None):
        self.challenge = challenge
        self.path = path
        super().__init__(f"No model artifact for challenge '{challenge}' in {path}")


class EngineLoadError(RegistryLoadError):
    """The inference runtime rejected a model artifact."""

    def __init__(self, challenge: Any, details: str):
        self.challenge = challenge
        self.details = details
        super().__init__(f"Failed to load model for challenge '{challenge}': {details}")


class ChallengeNameError(RegistryLoadError):
    """A directory name passed the catalog filter but failed to parse."""
    pass


# ============================================================================
# Prediction
# ============================================================================

class PredictionError(NoCaptchaError):
    """A prediction request could not be served."""
    pass


class ChallengeNotLoadedError(PredictionError):
    """The requested challenge has no model in the registry."""

    def __init__(self, challenge: Any):
        self.challenge = challenge
        super().__init__(f"Challenge '{challenge}' is not loaded")


class EngineUnavailableError(PredictionError):
    """The challenge's engine was closed or left unusable by an earlier fault."""

    def __init__(self, challenge: Any, reason: str = "after an earlier fault"):
        self.challenge = challenge
        super().__init__(f"Engine for challenge '{challenge}' is unavailable {reason}")


class InferenceError(PredictionError):
    """The engine could not run the graph or the graph lacks its entry points."""
    pass
