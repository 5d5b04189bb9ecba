"""Tests for the ImagePredictor lifecycle."""
import copy
import io
import os
import tarfile

import numpy as np
import pytest

from caffe2_predictor.errors import DownloadError, PredictionError, PreprocessError, PredictorError
from caffe2_predictor.features import Feature
from caffe2_predictor.frameworks import CAFFE2_FRAMEWORK
from caffe2_predictor.manifest import ModelManifest
from caffe2_predictor.predictor import ImagePredictor

LABELS = b"cat\ndog\nbird\n"


def _tar_gz(members):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


@pytest.fixture
def manifest(manifest_dict):
    return ModelManifest.from_dict(manifest_dict)


@pytest.fixture
def predictor(settings, manifest):
    return ImagePredictor.new(manifest, settings=settings)


@pytest.fixture
def loaded_predictor(predictor, fake_session_factory, monkeypatch):
    """Predictor with labels on disk and a fake native session."""
    with open(predictor.features_path(), "wb") as f:
        f.write(LABELS)
    sessions = []

    def create_session(self):
        session = fake_session_factory([0.1, 0.7, 0.2])
        sessions.append(session)
        return session

    monkeypatch.setattr(ImagePredictor, "_create_session", create_session)
    predictor.sessions = sessions
    return predictor


class TestNew:

    def test_new_loads_predictor(self, settings, manifest):
        predictor = ImagePredictor.new(manifest, settings=settings)

        assert predictor.manifest is manifest
        assert predictor.framework == CAFFE2_FRAMEWORK
        assert predictor.work_dir.startswith(str(settings.work_dir_root))
        assert os.path.isdir(predictor.work_dir)

    def test_rejects_multiple_inputs(self, settings, manifest_dict):
        manifest_dict["inputs"].append(copy.deepcopy(manifest_dict["inputs"][0]))
        with pytest.raises(PredictorError, match="number of inputs"):
            ImagePredictor.new(ModelManifest.from_dict(manifest_dict), settings=settings)

    def test_rejects_non_image_input(self, settings, manifest_dict):
        manifest_dict["inputs"][0]["type"] = "text"
        with pytest.raises(PredictorError, match="input type"):
            ImagePredictor.new(ModelManifest.from_dict(manifest_dict), settings=settings)

    def test_image_type_case_insensitive(self, settings, manifest_dict):
        manifest_dict["inputs"][0]["type"] = "Image"
        assert ImagePredictor.new(ModelManifest.from_dict(manifest_dict), settings=settings)

    def test_load_leaves_prototype_untouched(self, settings, manifest):
        prototype = ImagePredictor(settings=settings)

        loaded = prototype.load(manifest)

        assert loaded is not prototype
        assert prototype.manifest is None
        assert loaded.manifest is manifest

    def test_prototype_has_no_model(self, settings):
        with pytest.raises(PredictorError, match="no model loaded"):
            ImagePredictor(settings=settings).graph_url()


class TestUrlsAndPaths:

    def test_urls_with_trailing_slash(self, predictor):
        assert predictor.graph_url() == "http://example.com/models/tinynet/predict_net.pb"
        assert predictor.weights_url() == "http://example.com/models/tinynet/init_net.pb"
        assert predictor.features_url() == "http://example.com/synset.txt"

    def test_urls_without_trailing_slash(self, settings, manifest_dict):
        manifest_dict["model"]["base_url"] = "https://s3.example.com/resnet269-v2"
        predictor = ImagePredictor.new(ModelManifest.from_dict(manifest_dict), settings=settings)
        assert predictor.graph_url() == "https://s3.example.com/resnet269-v2/predict_net.pb"

    def test_urls_without_base_url(self, settings, manifest_dict):
        manifest_dict["model"]["base_url"] = ""
        predictor = ImagePredictor.new(ModelManifest.from_dict(manifest_dict), settings=settings)
        assert predictor.weights_url() == "init_net.pb"

    def test_archive_urls(self, settings, manifest_dict):
        manifest_dict["model"]["base_url"] = "http://example.com/tinynet.tar.gz"
        manifest_dict["model"]["is_archive"] = True
        predictor = ImagePredictor.new(ModelManifest.from_dict(manifest_dict), settings=settings)

        assert predictor.graph_url() == "http://example.com/tinynet.tar.gz"
        assert predictor.weights_url() == "http://example.com/tinynet.tar.gz"

    def test_local_paths(self, predictor):
        work_dir = predictor.work_dir
        assert predictor.graph_path() == os.path.join(work_dir, "predict_net.pb")
        assert predictor.weights_path() == os.path.join(work_dir, "init_net.pb")
        assert predictor.features_path() == os.path.join(work_dir, "TinyNet.features")
        assert predictor.mean_path() == os.path.join(work_dir, "TinyNet.mean.npy")

    def test_nested_graph_path_uses_basename(self, settings, manifest_dict):
        manifest_dict["model"]["graph_path"] = "nets/v1/predict_net.pb"
        predictor = ImagePredictor.new(ModelManifest.from_dict(manifest_dict), settings=settings)
        assert predictor.graph_path() == os.path.join(predictor.work_dir, "predict_net.pb")

    def test_image_dimensions(self, predictor):
        assert predictor.image_dimensions() == [1, 3, 4, 5]

    @pytest.mark.parametrize("dims", [None, [227, 227], [1, 4, 5], ["a", 4, 5]])
    def test_invalid_dimensions(self, settings, manifest_dict, dims):
        manifest_dict["inputs"][0]["parameters"]["dimensions"] = dims
        predictor = ImagePredictor.new(ModelManifest.from_dict(manifest_dict), settings=settings)
        with pytest.raises(PredictorError):
            predictor.image_dimensions()


class TestDownload:

    @pytest.mark.asyncio
    async def test_downloads_all_artifacts(self, settings, manifest_dict, file_server):
        files = {
            "/models/tinynet/predict_net.pb": b"graph",
            "/models/tinynet/init_net.pb": b"weights",
            "/synset.txt": LABELS,
        }
        async with file_server(files) as srv:
            manifest_dict["model"]["base_url"] = srv.url("/models/tinynet")
            manifest_dict["output"]["parameters"]["features_url"] = srv.url("/synset.txt")
            predictor = ImagePredictor.new(ModelManifest.from_dict(manifest_dict), settings=settings)

            await predictor.download()

        with open(predictor.graph_path(), "rb") as f:
            assert f.read() == b"graph"
        with open(predictor.weights_path(), "rb") as f:
            assert f.read() == b"weights"
        with open(predictor.features_path(), "rb") as f:
            assert f.read() == LABELS

    @pytest.mark.asyncio
    async def test_downloads_archive(self, settings, manifest_dict, file_server):
        archive = _tar_gz({"predict_net.pb": b"graph", "init_net.pb": b"weights"})

        files = {"/tinynet.tar.gz": archive, "/synset.txt": LABELS}
        async with file_server(files) as srv:
            manifest_dict["model"]["base_url"] = srv.url("/tinynet.tar.gz")
            manifest_dict["model"]["is_archive"] = True
            manifest_dict["output"]["parameters"]["features_url"] = srv.url("/synset.txt")
            predictor = ImagePredictor.new(ModelManifest.from_dict(manifest_dict), settings=settings)

            await predictor.download()

        assert os.path.exists(predictor.graph_path())
        assert os.path.exists(predictor.weights_path())

    @pytest.mark.asyncio
    async def test_archive_keeps_folder_layout(self, settings, manifest_dict, file_server):
        archive = _tar_gz({"tinynet/predict_net.pb": b"graph", "tinynet/init_net.pb": b"weights"})

        async with file_server({"/tinynet.tar.gz": archive, "/synset.txt": LABELS}) as srv:
            manifest_dict["model"].update(
                base_url=srv.url("/tinynet.tar.gz"),
                is_archive=True,
                graph_path="tinynet/predict_net.pb",
                weights_path="tinynet/init_net.pb",
            )
            manifest_dict["output"]["parameters"]["features_url"] = srv.url("/synset.txt")
            predictor = ImagePredictor.new(ModelManifest.from_dict(manifest_dict), settings=settings)

            await predictor.download()

        assert predictor.graph_path() == os.path.join(predictor.work_dir, "tinynet", "predict_net.pb")
        with open(predictor.graph_path(), "rb") as f:
            assert f.read() == b"graph"
        with open(predictor.weights_path(), "rb") as f:
            assert f.read() == b"weights"

    @pytest.mark.asyncio
    async def test_archive_missing_member(self, settings, manifest_dict, file_server):
        archive = _tar_gz({"predict_net.pb": b"graph"})

        async with file_server({"/tinynet.tar.gz": archive, "/synset.txt": LABELS}) as srv:
            manifest_dict["model"].update(base_url=srv.url("/tinynet.tar.gz"), is_archive=True)
            manifest_dict["output"]["parameters"]["features_url"] = srv.url("/synset.txt")
            predictor = ImagePredictor.new(ModelManifest.from_dict(manifest_dict), settings=settings)

            with pytest.raises(DownloadError, match="init_net.pb"):
                await predictor.download()

    @pytest.mark.asyncio
    async def test_download_mean_image(self, settings, manifest_dict, file_server):
        mean_image = np.stack([np.full((4, 5), v, dtype=np.float32) for v in (30.0, 20.0, 10.0)])
        buf = io.BytesIO()
        np.save(buf, mean_image)

        files = {
            "/models/tinynet/predict_net.pb": b"graph",
            "/models/tinynet/init_net.pb": b"weights",
            "/synset.txt": LABELS,
            "/mean.npy": buf.getvalue(),
        }
        async with file_server(files) as srv:
            manifest_dict["model"]["base_url"] = srv.url("/models/tinynet/")
            manifest_dict["output"]["parameters"]["features_url"] = srv.url("/synset.txt")
            params = manifest_dict["inputs"][0]["parameters"]
            del params["mean"]
            params["mean_url"] = srv.url("/mean.npy")
            predictor = ImagePredictor.new(ModelManifest.from_dict(manifest_dict), settings=settings)

            await predictor.download()

        image = np.zeros((4, 5, 3), dtype=np.uint8)
        image[...] = (10, 20, 30)
        assert np.allclose(predictor.preprocess(image), 0.0)

    def test_mean_image_not_downloaded(self, settings, manifest_dict):
        manifest_dict["inputs"][0]["parameters"]["mean_url"] = "http://example.com/mean.npy"
        predictor = ImagePredictor.new(ModelManifest.from_dict(manifest_dict), settings=settings)

        with pytest.raises(PreprocessError, match="not downloaded"):
            predictor.preprocess(np.zeros((4, 5, 3), dtype=np.uint8))


class TestPreprocess:

    def test_uses_manifest_mean_and_dimensions(self, predictor):
        image = np.zeros((8, 10, 3), dtype=np.uint8)
        image[...] = (110, 120, 130)

        out = predictor.preprocess(image)

        assert out.shape == (3 * 4 * 5,)
        plane = 4 * 5
        assert np.allclose(out[:plane], 130 - 30)
        assert np.allclose(out[plane:2 * plane], 120 - 20)
        assert np.allclose(out[2 * plane:], 110 - 10)

    def test_uses_manifest_scale(self, settings, manifest_dict):
        manifest_dict["inputs"][0]["parameters"]["scale"] = 256
        manifest_dict["inputs"][0]["parameters"]["mean"] = [0, 0, 0]
        predictor = ImagePredictor.new(ModelManifest.from_dict(manifest_dict), settings=settings)

        out = predictor.preprocess(np.full((4, 5, 3), 128, dtype=np.uint8))

        assert np.allclose(out, 0.5)

    def test_rejects_non_image(self, predictor):
        with pytest.raises(PreprocessError, match="expecting an image input"):
            predictor.preprocess(12345)


class TestPredict:

    def test_predict_returns_labeled_features(self, loaded_predictor):
        features = loaded_predictor.predict(np.zeros(60, dtype=np.float32))

        assert features == [
            Feature(index=1, name="dog", probability=pytest.approx(0.7)),
            Feature(index=2, name="bird", probability=pytest.approx(0.2)),
            Feature(index=0, name="cat", probability=pytest.approx(0.1)),
        ]
        assert loaded_predictor.sessions[0].calls == [(60, 3, 4, 5)]

    def test_predict_top_k(self, loaded_predictor):
        features = loaded_predictor.predict(np.zeros(60, dtype=np.float32), top_k=1)
        assert [f.name for f in features] == ["dog"]

    def test_session_created_once(self, loaded_predictor):
        loaded_predictor.predict(np.zeros(60, dtype=np.float32))
        loaded_predictor.predict(np.zeros(60, dtype=np.float32))
        assert len(loaded_predictor.sessions) == 1

    def test_predict_image(self, loaded_predictor):
        features = loaded_predictor.predict_image(np.zeros((16, 16, 3), dtype=np.uint8), top_k=2)
        assert [f.index for f in features] == [1, 2]

    def test_predict_rejects_non_buffer(self, loaded_predictor):
        with pytest.raises(PredictionError, match="float32 buffer"):
            loaded_predictor.predict("pixels")

    def test_missing_labels(self, predictor, monkeypatch, fake_session_factory):
        monkeypatch.setattr(ImagePredictor, "_create_session", lambda self: fake_session_factory([1.0]))
        with pytest.raises(PredictionError, match="cannot read"):
            predictor.predict(np.zeros(60, dtype=np.float32))

    def test_close_releases_session(self, loaded_predictor):
        with loaded_predictor as p:
            p.predict(np.zeros(60, dtype=np.float32))

        assert loaded_predictor.sessions[0].closed
        loaded_predictor.close()
