"""
Challenge Catalog

Closed set of reCAPTCHA challenge types the service can recognise.

Every challenge has exactly one canonical snake_case name. The name is used
as the model directory name on disk, as the ``challenge`` field of a
recognition request and as a metric label.
"""

import os
from enum import Enum
from typing import Union

from .errors import UnknownChallengeError


class CaptchaChallenge(str, Enum):
    """All accepted reCAPTCHA challenge types."""
    A_FIRE_HYDRANT = "a_fire_hydrant"
    BRIDGES = "bridges"
    CARS = "cars"
    MOTORCYCLES = "motorcycles"
    PALM_TREES = "palm_trees"
    STAIRS = "stairs"
    STORE_FRONT = "store_front"
    TRACTORS = "tractors"
    BICYCLES = "bicycles"
    BUS = "bus"
    CROSSWALKS = "crosswalks"
    MOUNTAINS_OR_HILLS = "mountains_or_hills"
    PARKING_METERS = "parking_meters"
    STATUES = "statues"
    TAXIS = "taxis"
    TRAFFIC_LIGHTS = "traffic_lights"

    def __str__(self) -> str:
        return self.value


CHALLENGE_NAMES = frozenset(challenge.value for challenge in CaptchaChallenge)


def parse(name: str) -> CaptchaChallenge:
    """
    Parse a canonical challenge name.

    Matching is exact and case-sensitive; there is no default member.

    Args:
        name: Canonical snake_case name, e.g. ``"traffic_lights"``

    Returns:
        The matching challenge

    Raises:
        UnknownChallengeError: If ``name`` is not a catalog member
    """
    if isinstance(name, str) and name in CHALLENGE_NAMES:
        return CaptchaChallenge(name)
    raise UnknownChallengeError(name)


def to_name(challenge: CaptchaChallenge) -> str:
    """Return the canonical name of ``challenge``."""
    return challenge.value


def is_valid_name(name: Union[str, bytes, "os.PathLike"]) -> bool:
    """
    Check whether ``name`` is a catalog member without raising.

    Bytes are decoded strictly as UTF-8; anything that cannot be decoded,
    or is not a string at all, is simply not a valid name.
    """
    if isinstance(name, os.PathLike):
        name = os.fspath(name)
    if isinstance(name, bytes):
        try:
            name = name.decode("utf-8")
        except UnicodeDecodeError:
            return False
    if not isinstance(name, str):
        return False
    return name in CHALLENGE_NAMES


def folder_to_challenge(folder_name: str) -> CaptchaChallenge:
    """Parse a human folder name such as ``"traffic lights"``."""
    return parse(folder_name.replace(" ", "_"))
