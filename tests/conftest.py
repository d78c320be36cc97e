"""
Pytest Configuration and Fixtures

Provides shared fixtures for testing the recognition service:
- Stub and instrumented inference engines
- Temporary models directories laid out like production
- Preloaded registries
- FastAPI test clients
"""

import sys
import threading
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
from fastapi.testclient import TestClient

from nocaptcha import CaptchaChallenge, CaptchaRegistry, InferenceEngine, ModelFormat
from nocaptcha.serving import ServingSettings, create_app


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")


# ============================================================================
# Stub Engines
# ============================================================================

class StubEngine(InferenceEngine):
    """Engine returning fixed scores, or raising a configured error."""

    model_format = ModelFormat.SAVED_MODEL

    def __init__(
        self,
        path: Path = Path("stub"),
        scores: Tuple[float, float] = (0.9, 0.1),
        error: Optional[BaseException] = None,
    ):
        super().__init__(path)
        self.scores = scores
        self.error = error
        self.calls = 0
        self.inputs: List[bytes] = []
        self.closed = False

    def run(self, image):
        self.calls += 1
        self.inputs.append(image)
        if self.error is not None:
            raise self.error
        return self.scores

    def close(self):
        self.closed = True


class SingleEntrantEngine(StubEngine):
    """Records how many threads were inside ``run`` at the same time."""

    def __init__(self, path: Path = Path("stub"), hold_seconds: float = 0.01):
        super().__init__(path)
        self.hold_seconds = hold_seconds
        self.active = 0
        self.max_active = 0
        self._counter_lock = threading.Lock()

    def run(self, image):
        with self._counter_lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.hold_seconds)
            return super().run(image)
        finally:
            with self._counter_lock:
                self.active -= 1


class SignalEngine(StubEngine):
    """Sets ``started`` when run begins and waits for ``release`` before returning."""

    def __init__(self, path: Path = Path("stub"), release: Optional[threading.Event] = None):
        super().__init__(path)
        self.started = threading.Event()
        self.release = release
        self.released_in_time = None

    def run(self, image):
        self.started.set()
        if self.release is not None:
            self.released_in_time = self.release.wait(timeout=5)
        return super().run(image)


class LengthEngine(StubEngine):
    """Deterministic engine: affirmative confidence grows with payload length."""

    def run(self, image):
        super().run(image)
        affirmative = min(len(image) / 10.0, 1.0)
        return affirmative, 1.0 - affirmative


@pytest.fixture
def stub_engine_cls():
    return StubEngine


@pytest.fixture
def single_entrant_engine_cls():
    return SingleEntrantEngine


@pytest.fixture
def signal_engine_cls():
    return SignalEngine


@pytest.fixture
def length_engine_cls():
    return LengthEngine


# ============================================================================
# Models Directory Fixtures
# ============================================================================

@pytest.fixture
def make_models_dir(tmp_path) -> Callable[..., Path]:
    """
    Factory creating a models root directory.

    Args (of the returned factory):
        challenges: Challenge names that get a valid ``saved_model.pb``
        missing: Challenge names whose directory has no artifact
        onnx: Challenge names that get a ``model.onnx`` instead
        extra: Non-challenge directory names, each holding an artifact
    """
    def _make(
        challenges: Iterable[str] = (),
        missing: Iterable[str] = (),
        onnx: Iterable[str] = (),
        extra: Iterable[str] = (),
    ) -> Path:
        root = tmp_path / "models"
        root.mkdir(exist_ok=True)

        for name in list(challenges) + list(extra):
            model_dir = root / name
            model_dir.mkdir()
            (model_dir / "saved_model.pb").write_bytes(b"\x08\x01")
        for name in onnx:
            model_dir = root / name
            model_dir.mkdir()
            (model_dir / "model.onnx").write_bytes(b"ONNX")
        for name in missing:
            (root / name).mkdir()
            (root / name / "labels.txt").write_text("unused")

        return root

    return _make


class RecordingLoader:
    """Engine factory that remembers every engine it created."""

    def __init__(self, engine_factory: Callable[[Path], InferenceEngine] = StubEngine):
        self.engine_factory = engine_factory
        self.engines: List[InferenceEngine] = []
        self._lock = threading.Lock()

    def __call__(self, path: Path) -> InferenceEngine:
        engine = self.engine_factory(Path(path))
        with self._lock:
            self.engines.append(engine)
        return engine


@pytest.fixture
def recording_loader():
    """Loader producing ``StubEngine`` instances."""
    return RecordingLoader()


@pytest.fixture
def recording_loader_cls():
    return RecordingLoader


# ============================================================================
# Fake TensorFlow
# ============================================================================

class FakeOpError(Exception):
    """Stands in for ``tf.errors.OpError``, which carries a ``message``."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


@pytest.fixture
def fake_tensorflow():
    """
    Mocked ``tensorflow`` module installed in ``sys.modules``.

    Sessions it creates return ``[0.6, 0.4]`` from ``run``; the session is
    exposed as ``fake_tensorflow.session``.
    """
    tf = MagicMock()
    tf.errors.OpError = FakeOpError
    tf.session = MagicMock()
    tf.session.run.return_value = np.array([0.6, 0.4], dtype=np.float32)
    tf.compat.v1.Session.return_value = tf.session

    with patch.dict(sys.modules, {"tensorflow": tf}):
        yield tf


# ============================================================================
# Registry Fixtures
# ============================================================================

@pytest.fixture
def bus_engine():
    """Stub engine answering (0.9, 0.1) for any input."""
    return StubEngine(Path("models/bus"), scores=(0.9, 0.1))


@pytest.fixture
def registry(bus_engine):
    """Registry with ``bus`` and ``cars`` loaded."""
    return CaptchaRegistry({
        CaptchaChallenge.BUS: bus_engine,
        CaptchaChallenge.CARS: StubEngine(Path("models/cars"), scores=(0.2, 0.8)),
    })


# ============================================================================
# FastAPI Fixtures
# ============================================================================

@pytest.fixture
def serving_settings(tmp_path):
    return ServingSettings(models_dir=tmp_path / "models", log_level="DEBUG")


@pytest.fixture
def test_client(serving_settings, registry):
    """Test client serving the ``registry`` fixture."""
    app = create_app(serving_settings, registry=registry)
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client
