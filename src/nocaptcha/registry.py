"""
Challenge Model Registry

Maps every loaded challenge to its inference engine and serves predictions
against them under concurrent access.

Features:
- Parallel bulk loading of all challenge models under one root directory
- All-or-nothing loading: any missing or rejected model aborts the load
- One lock per challenge; predictions for different challenges never contend
- Engines poisoned by unexpected faults are taken out of service
- Prometheus metrics for load time, lock wait and inference time

Example:
    >>> registry = CaptchaRegistry.load_from_models_dir("models/")
    >>> prediction = registry.predict(CaptchaChallenge.BUS, image_bytes)
    >>> prediction.is_mainly_affirmative()
    True
"""

import logging
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass
from functools import reduce
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Iterator, List, Mapping, Optional, Union

from .catalog import CaptchaChallenge, is_valid_name, parse
from .engine import InferenceEngine, detect_format, load_engine, silence_runtime_logging
from .errors import (
    ChallengeNameError,
    ChallengeNotLoadedError,
    EngineLoadError,
    EngineUnavailableError,
    InferenceError,
    ModelDirectoryError,
    ModelMissingError,
    RegistryLoadError,
    UnknownChallengeError,
)
from .metrics import (
    INFERENCE_DURATION,
    LOCK_WAIT_DURATION,
    MODEL_LOAD_TIME,
    MODELS_LOADED,
    PREDICTION_COUNT,
)

logger = logging.getLogger(__name__)

AFFIRMATIVE_THRESHOLD = 0.50

EngineLoader = Callable[[Path], InferenceEngine]
EngineMap = Dict[CaptchaChallenge, InferenceEngine]


@dataclass(frozen=True)
class Prediction:
    """Confidence pair produced by one engine run."""
    affirmative_confidence: float
    negative_confidence: float

    def is_mainly_affirmative(self) -> bool:
        return (
            self.affirmative_confidence >= AFFIRMATIVE_THRESHOLD
            and self.negative_confidence < AFFIRMATIVE_THRESHOLD
        )

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


class _GuardedEngine:
    """An engine together with the lock that serializes its runs."""

    __slots__ = ("engine", "lock", "poisoned", "closed")

    def __init__(self, engine: InferenceEngine):
        self.engine = engine
        self.lock = threading.Lock()
        self.poisoned = False
        self.closed = False


def _union(left: EngineMap, right: EngineMap) -> EngineMap:
    merged = dict(left)
    merged.update(right)
    return merged


def _load_challenge_dir(path: Path, name: str, loader: EngineLoader) -> EngineMap:
    """Load one challenge directory. Runs on a loader worker thread."""
    try:
        challenge = parse(name)
    except UnknownChallengeError as e:
        raise ChallengeNameError(f"Directory '{name}' passed the catalog filter but does not parse") from e

    model_format = detect_format(path)
    if model_format is None:
        raise ModelMissingError(challenge, path)

    start = time.perf_counter()
    try:
        engine = loader(path)
    except RegistryLoadError:
        raise
    except Exception as e:
        raise EngineLoadError(challenge, str(e)) from e
    load_time = time.perf_counter() - start

    MODEL_LOAD_TIME.labels(challenge=challenge.value, format=model_format.value).observe(load_time)
    logger.info(f"Loaded {model_format.value} model for '{challenge}' ({load_time:.2f}s)")

    return {challenge: engine}


def _close_engines(engines: Mapping[Any, InferenceEngine]) -> None:
    for challenge, engine in engines.items():
        try:
            engine.close()
        except Exception as e:
            logger.warning(f"Failed to close engine for '{challenge}': {e}")


class CaptchaRegistry:
    """
    Read-only mapping from challenge to a lock-guarded inference engine.

    The mapping is built once and never mutated; only the per-challenge
    locks are taken at request time. Engines are not reentrant, so each
    ``predict`` holds its challenge's lock for the whole engine run.

    Args:
        engines: Loaded engine per challenge
        poison_on_fault: Take an engine out of service after a run raised
            something other than ``InferenceError``
    """

    def __init__(
        self,
        engines: Mapping[CaptchaChallenge, InferenceEngine],
        poison_on_fault: bool = True,
    ):
        self._items: Dict[CaptchaChallenge, _GuardedEngine] = {
            challenge: _GuardedEngine(engine) for challenge, engine in engines.items()
        }
        self.poison_on_fault = poison_on_fault
        MODELS_LOADED.set(len(self._items))

    @classmethod
    def load_from_models_dir(
        cls,
        path: Union[str, Path],
        max_workers: Optional[int] = None,
        loader: Optional[EngineLoader] = None,
        poison_on_fault: bool = True,
        quiet_runtime: bool = True,
    ) -> "CaptchaRegistry":
        """
        Load every challenge model found directly under ``path``.

        Entries whose names are not challenge names are skipped. Every
        remaining entry must hold a loadable model artifact; the first
        failure cancels outstanding loads, closes engines already loaded
        and is raised.

        Args:
            path: Models root directory
            max_workers: Loader threads (default: one per CPU, at most one
                per challenge directory)
            loader: Engine factory, ``load_engine`` by default
            poison_on_fault: Passed to the registry
            quiet_runtime: Silence TensorFlow's C++ logging before loading

        Returns:
            Loaded registry

        Raises:
            ModelDirectoryError: If ``path`` cannot be read
            ModelMissingError: If a challenge directory has no artifact
            EngineLoadError: If the runtime rejects an artifact
            ChallengeNameError: If a filtered name fails to parse
        """
        root = Path(path)
        loader = loader or load_engine

        try:
            with os.scandir(root) as it:
                entries = list(it)
        except OSError as e:
            raise ModelDirectoryError(root, e) from e

        candidates = [entry for entry in entries if is_valid_name(entry.name)]
        skipped = len(entries) - len(candidates)
        if skipped:
            logger.debug(f"Skipping {skipped} non-challenge entries in {root}")

        if quiet_runtime:
            silence_runtime_logging()

        if not candidates:
            logger.warning(f"No challenge models found in {root}")
            return cls({}, poison_on_fault=poison_on_fault)

        workers = max_workers or min(len(candidates), os.cpu_count() or 1)
        logger.info(f"Loading {len(candidates)} challenge models from {root} with {workers} workers")

        start = time.perf_counter()
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="model-loader")
        futures: List[Future] = [
            executor.submit(_load_challenge_dir, Path(entry.path), entry.name, loader)
            for entry in candidates
        ]

        try:
            partials = [future.result() for future in as_completed(futures)]
        except BaseException:
            executor.shutdown(wait=True, cancel_futures=True)
            for future in futures:
                if future.done() and not future.cancelled() and future.exception() is None:
                    _close_engines(future.result())
            raise
        executor.shutdown(wait=True)

        engines = reduce(_union, partials, {})
        logger.info(
            f"Loaded {len(engines)} challenge models in {time.perf_counter() - start:.2f}s"
        )
        return cls(engines, poison_on_fault=poison_on_fault)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def challenges(self) -> FrozenSet[CaptchaChallenge]:
        return frozenset(self._items)

    def is_loaded(self, challenge: CaptchaChallenge) -> bool:
        return challenge in self._items

    def __contains__(self, challenge: object) -> bool:
        return challenge in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[CaptchaChallenge]:
        return iter(self._items)

    def describe(self) -> List[Dict[str, Any]]:
        """Per-challenge status, sorted by challenge name."""
        return [
            {
                "challenge": challenge.value,
                "format": item.engine.model_format.value,
                "path": str(item.engine.path),
                "available": not (item.poisoned or item.closed),
            }
            for challenge, item in sorted(self._items.items(), key=lambda kv: kv[0].value)
        ]

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def predict(self, challenge: CaptchaChallenge, image: Union[str, bytes]) -> Prediction:
        """
        Score ``image`` against the model for ``challenge``.

        Blocks while another prediction for the same challenge is running.

        Raises:
            UnknownChallengeError: If ``challenge`` is a string outside the catalog
            ChallengeNotLoadedError: If the challenge has no model
            EngineUnavailableError: If the engine was poisoned by an earlier fault
                or the registry was closed
            InferenceError: If the engine run failed
        """
        if not isinstance(challenge, CaptchaChallenge):
            challenge = parse(challenge)
        label = challenge.value

        item = self._items.get(challenge)
        if item is None:
            PREDICTION_COUNT.labels(challenge=label, status="not_loaded").inc()
            raise ChallengeNotLoadedError(challenge)

        wait_start = time.perf_counter()
        with item.lock:
            LOCK_WAIT_DURATION.labels(challenge=label).observe(time.perf_counter() - wait_start)

            if item.closed:
                PREDICTION_COUNT.labels(challenge=label, status="unavailable").inc()
                raise EngineUnavailableError(challenge, reason="after the registry was closed")

            if item.poisoned:
                PREDICTION_COUNT.labels(challenge=label, status="unavailable").inc()
                raise EngineUnavailableError(challenge)

            run_start = time.perf_counter()
            try:
                affirmative, negative = item.engine.run(image)
            except InferenceError:
                PREDICTION_COUNT.labels(challenge=label, status="error").inc()
                raise
            except Exception as e:
                PREDICTION_COUNT.labels(challenge=label, status="error").inc()
                if self.poison_on_fault:
                    item.poisoned = True
                    logger.error(
                        f"Unexpected fault in engine for '{challenge}', taking it out of service",
                        exc_info=True,
                    )
                else:
                    logger.error(f"Unexpected fault in engine for '{challenge}'", exc_info=True)
                raise InferenceError(f"Unexpected engine fault: {e}") from e
            finally:
                INFERENCE_DURATION.labels(challenge=label).observe(time.perf_counter() - run_start)

        PREDICTION_COUNT.labels(challenge=label, status="success").inc()
        return Prediction(affirmative_confidence=affirmative, negative_confidence=negative)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close every engine. Waits for in-flight predictions to finish."""
        for challenge, item in self._items.items():
            with item.lock:
                if item.closed:
                    continue
                item.closed = True
                _close_engines({challenge: item.engine})
        logger.info(f"Closed {len(self._items)} challenge engines")
        MODELS_LOADED.set(0)

    def __enter__(self) -> "CaptchaRegistry":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        names = ", ".join(sorted(c.value for c in self._items))
        return f"CaptchaRegistry([{names}])"
