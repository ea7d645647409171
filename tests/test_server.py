"""Tests for the ranking HTTP service."""

import io

import pytest
from fastapi.testclient import TestClient

from image_similarity.inference_service.query import SimilarityQuery
from image_similarity.inference_service import server
from image_similarity.inference_service.registry import ModelRegistry, ModelUnavailableError
from image_similarity.inference_service.server import create_app
from image_similarity.scanner.image_utils import encode_base64_image

from .conftest import FakeEmbedder, REFERENCE_COLORS, solid_image


@pytest.fixture
def client(query):
    with TestClient(create_app(query)) as test_client:
        yield test_client


def _png_bytes(color) -> bytes:
    buffer = io.BytesIO()
    solid_image(color).save(buffer, format="PNG")
    return buffer.getvalue()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/healthz").status_code == 200


def test_model_info(client):
    info = client.get("/model-info").json()
    assert info["model_name"] == "fake"
    assert info["revision"] == 1
    assert info["reference_count"] == len(REFERENCE_COLORS)
    assert info["metric"] == "cosine"


def test_rank_base64(client):
    response = client.post(
        "/rank/base64",
        json={"images": [encode_base64_image(solid_image((0, 0, 255)))], "k": 2},
    )
    assert response.status_code == 200
    payload = response.json()

    assert payload["count"] == 1
    matches = payload["results"][0]["matches"]
    assert len(matches) == 2
    assert matches[0]["reference_index"] == 2
    assert matches[0]["file_path"].endswith("ref_02.png")
    assert payload["results"][0]["message"].startswith("Results")


def test_rank_base64_data_uri(client):
    b64 = encode_base64_image(solid_image((0, 255, 0)))
    response = client.post(
        "/rank/base64",
        json={"images": [f"data:image/jpeg;base64,{b64}"], "k": 1},
    )
    assert response.status_code == 200
    assert response.json()["results"][0]["matches"][0]["reference_index"] == 1


def test_rank_base64_uses_default_k(client):
    response = client.post(
        "/rank/base64",
        json={"images": [encode_base64_image(solid_image((255, 0, 0)))]},
    )
    assert len(response.json()["results"][0]["matches"]) == len(REFERENCE_COLORS)


def test_rank_base64_zero_k(client):
    response = client.post(
        "/rank/base64",
        json={"images": [encode_base64_image(solid_image((255, 0, 0)))], "k": 0},
    )
    assert response.status_code == 200
    assert response.json()["results"][0]["matches"] == []


def test_rank_base64_requires_images(client):
    response = client.post("/rank/base64", json={"images": []})
    assert response.status_code == 400


def test_rank_base64_rejects_garbage(client):
    response = client.post("/rank/base64", json={"images": ["bm90IGFuIGltYWdl"]})
    assert response.status_code == 400
    assert "Failed to decode image 0" in response.json()["detail"]


def test_rank_upload(client):
    response = client.post(
        "/rank/upload",
        params={"k": 1},
        files=[("files", ("query.png", _png_bytes((255, 0, 0)), "image/png"))],
    )
    assert response.status_code == 200
    matches = response.json()["results"][0]["matches"]
    assert [m["reference_index"] for m in matches] == [0]


def test_rank_upload_multiple_files(client):
    response = client.post(
        "/rank/upload",
        files=[
            ("files", ("red.png", _png_bytes((255, 0, 0)), "image/png")),
            ("files", ("blue.png", _png_bytes((0, 0, 255)), "image/png")),
        ],
    )
    payload = response.json()
    assert payload["count"] == 2
    assert payload["results"][1]["matches"][0]["reference_index"] == 2


def test_rank_upload_rejects_garbage(client):
    response = client.post(
        "/rank/upload",
        files=[("files", ("query.png", b"nope", "image/png"))],
    )
    assert response.status_code == 400


def test_reload_model(client, query):
    response = client.post("/model/reload")
    assert response.status_code == 200
    assert response.json()["revision"] == 2
    assert query.registry.current_version.revision == 2


class FlakyLoader:
    """Fails until ``ready`` is set, like weights that are not yet reachable."""

    def __init__(self):
        self.ready = False

    def __call__(self, model_name, pretrained):
        if not self.ready:
            raise OSError("weights not reachable")
        return FakeEmbedder(model_name, pretrained)


def test_no_model_is_unavailable(references):
    loader = FlakyLoader()
    registry = ModelRegistry(loader=loader)
    with pytest.raises(ModelUnavailableError):
        registry.load("fake", "none")

    runner = SimilarityQuery(registry, references)
    with TestClient(create_app(runner)) as test_client:
        assert test_client.get("/model-info").status_code == 503
        response = test_client.post(
            "/rank/base64",
            json={"images": [encode_base64_image(solid_image((255, 0, 0)))]},
        )
        assert response.status_code == 503
        assert test_client.post("/model/reload").status_code == 503

        loader.ready = True
        response = test_client.post("/model/reload")
        assert response.status_code == 200
        assert response.json()["revision"] == 1
        assert test_client.get("/model-info").status_code == 200


def test_reload_without_any_requested_model(references):
    runner = SimilarityQuery(ModelRegistry(loader=FakeEmbedder), references)
    with TestClient(create_app(runner)) as test_client:
        assert test_client.post("/model/reload").status_code == 503


@pytest.fixture
def saved_references(references):
    references.save()
    return references.store_path


def test_startup_loads_model_and_references_from_env(monkeypatch, saved_references):
    monkeypatch.setattr(server, "ModelRegistry", lambda: ModelRegistry(loader=FakeEmbedder))
    monkeypatch.setenv("MODEL_NAME", "fake-b")
    monkeypatch.setenv("MODEL_PRETRAINED", "laion")
    monkeypatch.setenv("REFERENCES_DIR", str(saved_references))
    monkeypatch.setenv("DISTANCE_METRIC", "euclidean")

    with TestClient(create_app()) as test_client:
        info = test_client.get("/model-info").json()
        assert info["model_name"] == "fake-b"
        assert info["pretrained"] == "laion"
        assert info["metric"] == "euclidean"
        assert info["reference_count"] == len(REFERENCE_COLORS)

        response = test_client.post(
            "/rank/base64",
            json={"images": [encode_base64_image(solid_image((0, 0, 255)))], "k": 1},
        )
        assert response.json()["results"][0]["matches"][0]["reference_index"] == 2


def test_startup_without_model_recovers_on_reload(monkeypatch, saved_references):
    loader = FlakyLoader()
    monkeypatch.setattr(server, "ModelRegistry", lambda: ModelRegistry(loader=loader))
    monkeypatch.setenv("REFERENCES_DIR", str(saved_references))

    with TestClient(create_app()) as test_client:
        assert test_client.get("/model-info").status_code == 503

        loader.ready = True
        response = test_client.post("/model/reload")
        assert response.status_code == 200
        assert response.json()["revision"] == 1
        assert response.json()["reference_count"] == len(REFERENCE_COLORS)


def test_inference_failure_is_server_error(client, query):
    def explode(image):
        raise RuntimeError("bad tensor")

    query.registry.current.embed_image = explode
    response = client.post(
        "/rank/base64",
        json={"images": [encode_base64_image(solid_image((255, 0, 0)))]},
    )
    assert response.status_code == 500
    assert response.json()["detail"].startswith("Unable to rank image.")
