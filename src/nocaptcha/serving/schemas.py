"""
Request/response models for the recognition API.
"""

import base64
import binascii
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator

from ..catalog import CaptchaChallenge
from ..registry import Prediction

ByteValue = Annotated[int, Field(ge=0, le=255)]


class RecognitionRequest(BaseModel):
    """
    Image recognition request.

    Two payload encodings are accepted:
    1. ``image_type: "base64"`` with a base64 string ``image``
    2. ``image_type: "bytes"`` with ``image`` as an array of byte values
    """
    challenge: CaptchaChallenge
    image_type: Literal["base64", "bytes"]
    image: Union[str, List[ByteValue]]

    @model_validator(mode="after")
    def check_image_matches_type(self) -> "RecognitionRequest":
        if self.image_type == "base64" and not isinstance(self.image, str):
            raise ValueError("image must be a string when image_type is 'base64'")
        if self.image_type == "bytes" and not isinstance(self.image, list):
            raise ValueError("image must be an array of bytes when image_type is 'bytes'")
        return self

    def decode_image(self) -> bytes:
        """
        Decode the payload into raw image bytes.

        Raises:
            ValueError: If a base64 payload is malformed
        """
        if self.image_type == "bytes":
            return bytes(self.image)
        try:
            return base64.b64decode(self.image, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid base64 image: {e}") from e


class PredictionResponse(BaseModel):
    affirmative_confidence: float
    negative_confidence: float

    @classmethod
    def from_prediction(cls, prediction: Prediction) -> "PredictionResponse":
        return cls(**prediction.to_dict())


class ErrorResponse(BaseModel):
    err: str
    meta: Optional[str] = None


class ChallengeStatus(BaseModel):
    challenge: str
    format: str
    path: str
    available: bool


class HealthResponse(BaseModel):
    status: str
    challenges_loaded: List[ChallengeStatus]
    uptime_seconds: float
    version: str
