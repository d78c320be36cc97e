"""
Model accuracy evaluation against labelled challenge images.

Expected layout::

    test_data/
        <size>/
            <challenge folder>/        e.g. "traffic lights"
                matches/               images showing the challenge object
                not matches/           images that do not

Each image is scored with ``Prediction.is_mainly_affirmative`` and counted
as correct when that agrees with the folder it came from.
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from .catalog import CaptchaChallenge, folder_to_challenge
from .errors import NoCaptchaError
from .registry import CaptchaRegistry

logger = logging.getLogger(__name__)

MATCHES_DIR = "matches"
NOT_MATCHES_DIR = "not matches"


@dataclass
class ChallengeScore:
    """Correct/incorrect counts for one challenge at one image size."""
    size: str
    challenge: CaptchaChallenge
    correct: int = 0
    incorrect: int = 0

    @property
    def total(self) -> int:
        return self.correct + self.incorrect

    @property
    def accuracy(self) -> float:
        return self.correct / self.total if self.total else 0.0

    def record(self, affirmative: bool, expecting_match: bool) -> None:
        if affirmative == expecting_match:
            self.correct += 1
        else:
            self.incorrect += 1

    def summary(self) -> str:
        if not self.total:
            return f"[{self.size}/{self.challenge}] no images"
        return (
            f"[{self.size}/{self.challenge}] "
            f"{100.0 * self.accuracy:.1f}% {self.correct} Correct, "
            f"{100.0 * (1 - self.accuracy):.1f}% {self.incorrect} Incorrect "
            f"({self.total} total)"
        )


@dataclass
class EvaluationReport:
    scores: List[ChallengeScore] = field(default_factory=list)

    @property
    def correct(self) -> int:
        return sum(s.correct for s in self.scores)

    @property
    def total(self) -> int:
        return sum(s.total for s in self.scores)

    @property
    def accuracy(self) -> float:
        return self.correct / self.total if self.total else 0.0


def _image_files(directory: Path) -> List[Path]:
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.is_file())


def evaluate_challenge(
    registry: CaptchaRegistry,
    challenge_dir: Path,
    size: str,
) -> ChallengeScore:
    """Score every image under one challenge folder."""
    challenge = folder_to_challenge(challenge_dir.name)
    score = ChallengeScore(size=size, challenge=challenge)

    for subdir, expecting_match in ((MATCHES_DIR, True), (NOT_MATCHES_DIR, False)):
        for image_path in _image_files(challenge_dir / subdir):
            prediction = registry.predict(challenge, image_path.read_bytes())
            logger.debug(f"[{challenge}] {image_path}: {prediction}")
            score.record(prediction.is_mainly_affirmative(), expecting_match)

    return score


def evaluate_directory(
    registry: CaptchaRegistry,
    data_dir: Union[str, Path],
) -> EvaluationReport:
    """
    Evaluate every size/challenge folder under ``data_dir``.

    Raises:
        UnknownChallengeError: If a challenge folder is not in the catalog
        PredictionError: If the registry cannot score an image
    """
    report = EvaluationReport()

    for size_dir in sorted(p for p in Path(data_dir).iterdir() if p.is_dir()):
        for challenge_dir in sorted(p for p in size_dir.iterdir() if p.is_dir()):
            logger.info(f"Beginning evaluation of {size_dir.name}/{challenge_dir.name}")
            report.scores.append(evaluate_challenge(registry, challenge_dir, size_dir.name))

    return report


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Evaluate challenge models on labelled images")
    parser.add_argument("data_dir", help="Directory laid out as <size>/<challenge>/{matches,not matches}")
    parser.add_argument("--models-dir", default="models", help="Models root directory")
    parser.add_argument("--workers", type=int, default=None, help="Model loader threads")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        with CaptchaRegistry.load_from_models_dir(args.models_dir, max_workers=args.workers) as registry:
            report = evaluate_directory(registry, args.data_dir)
    except NoCaptchaError as e:
        logger.error(f"Evaluation failed: {e}")
        return 1

    for score in report.scores:
        print(score.summary())
    print(f"Overall: {100.0 * report.accuracy:.1f}% ({report.correct}/{report.total})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
