"""
Pytest configuration and fixtures.
"""
import contextlib
import sys
import types
from typing import AsyncIterator, Dict

import numpy as np
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from caffe2_predictor import config
from caffe2_predictor.config import PredictorSettings
from caffe2_predictor.features import Prediction


@pytest.fixture(autouse=True)
def reset_config():
    """Isolate process-wide settings between tests."""
    config.reset_settings()
    yield
    config.reset_settings()


@pytest.fixture
def settings(tmp_path) -> PredictorSettings:
    """Settings pointing the work directory at a temp dir, CPU only."""
    s = PredictorSettings(work_dir_root=tmp_path / "work", device="cpu")
    config.init(s)
    return s


@pytest.fixture
def manifest_dict() -> dict:
    """A small Caffe2 manifest in the shape of the built-in ones."""
    return {
        "name": "TinyNet",
        "framework": {"name": "Caffe2", "version": "0.8.1"},
        "version": 1.0,
        "description": "tiny test network\n",
        "references": ["https://example.com/tinynet"],
        "license": "unrestricted",
        "inputs": [
            {
                "type": "image",
                "description": "the input image",
                "parameters": {"dimensions": [3, 4, 5], "mean": [10, 20, 30]},
            }
        ],
        "output": {
            "type": "feature",
            "description": "the output label",
            "parameters": {
                "features_url": "http://example.com/synset.txt",
                "features_checksum": "abc",
            },
        },
        "model": {
            "base_url": "http://example.com/models/tinynet/",
            "graph_path": "predict_net.pb",
            "weights_path": "init_net.pb",
            "is_archive": False,
            "graph_checksum": "g",
            "weights_checksum": "w",
        },
        "attributes": {"kind": "CNN"},
    }


@contextlib.asynccontextmanager
async def _serve_files(files: Dict[str, bytes]) -> AsyncIterator[types.SimpleNamespace]:
    """Serve ``files`` (path -> body) over HTTP; unknown paths return 404."""
    hits: Dict[str, int] = {}

    async def handler(request: web.Request) -> web.Response:
        path = request.path
        hits[path] = hits.get(path, 0) + 1
        if path not in files:
            return web.Response(status=404, text="not found")
        return web.Response(body=files[path])

    app = web.Application()
    app.router.add_get("/{tail:.*}", handler)
    server = TestServer(app)
    await server.start_server()
    try:
        yield types.SimpleNamespace(url=lambda path: str(server.make_url(path)), hits=hits)
    finally:
        await server.close()


@pytest.fixture
def file_server():
    """Factory for a throwaway HTTP server: ``async with file_server({...}) as srv``."""
    return _serve_files


class FakeCaffe2Predictor:
    """Stands in for caffe2.python.workspace.Predictor in tests."""

    output = np.array([[0.1, 0.7, 0.2]], dtype=np.float32)
    instances = []

    def __init__(self, init_net: bytes, predict_net: bytes):
        self.init_net = init_net
        self.predict_net = predict_net
        self.inputs = []
        FakeCaffe2Predictor.instances.append(self)

    def run(self, inputs):
        self.inputs.append(inputs)
        return [self.output]


@pytest.fixture
def fake_caffe2(monkeypatch):
    """Install a fake ``caffe2.python.workspace`` module."""
    FakeCaffe2Predictor.instances = []
    caffe2 = types.ModuleType("caffe2")
    python = types.ModuleType("caffe2.python")
    workspace = types.ModuleType("caffe2.python.workspace")
    workspace.Predictor = FakeCaffe2Predictor
    python.workspace = workspace
    caffe2.python = python
    monkeypatch.setitem(sys.modules, "caffe2", caffe2)
    monkeypatch.setitem(sys.modules, "caffe2.python", python)
    monkeypatch.setitem(sys.modules, "caffe2.python.workspace", workspace)
    return FakeCaffe2Predictor


class FakeSession:
    """Minimal InferenceSession double returning fixed probabilities."""

    def __init__(self, probabilities):
        self.probabilities = np.asarray(probabilities, dtype=np.float32)
        self.calls = []
        self.closed = False

    def predict(self, data, channels, height, width):
        self.calls.append((np.asarray(data).size, channels, height, width))
        order = np.argsort(-self.probabilities, kind="stable")
        return [Prediction(index=int(i), probability=float(self.probabilities[i])) for i in order]

    def close(self):
        self.closed = True


@pytest.fixture
def fake_session_factory():
    return FakeSession
