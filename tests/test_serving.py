import pickle
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from aicore_lab.models import HousingFeatures
from aicore_lab.serving import (
    GREET_LOADED,
    GREET_NOT_LOADED,
    ModelHolder,
    ModelNotLoadedError,
    create_serving_app,
)

SAMPLE = {
    "MedInc": 8.3252,
    "HouseAge": 41.0,
    "AveRooms": 6.984127,
    "AveBedrms": 1.02381,
    "Population": 322.0,
    "AveOccup": 2.555556,
    "Latitude": 37.88,
    "Longitude": -122.23,
}


class TestModelHolder:
    @staticmethod
    def test_loads_pickled_model(trained_model_path: str):
        holder = ModelHolder()

        assert holder.load(trained_model_path) is True
        assert holder.is_loaded
        assert holder.greet() == GREET_LOADED
        assert holder.model_path == trained_model_path

    @staticmethod
    def test_missing_file(tmp_path: Path):
        holder = ModelHolder()

        assert holder.load(str(tmp_path / "model.pkl")) is False
        assert holder.greet() == GREET_NOT_LOADED

    @staticmethod
    @pytest.mark.parametrize(
        "content",
        [
            pytest.param(b"\x00\x01 not a pickle", id="garbage"),
            pytest.param(pickle.dumps({"weights": [1, 2]}), id="no_predict"),
        ],
    )
    def test_unusable_file(tmp_path: Path, content: bytes):
        # Given
        path = tmp_path / "model.pkl"
        path.write_bytes(content)
        holder = ModelHolder()

        # Then
        assert holder.load(str(path)) is False
        assert not holder.is_loaded

    @staticmethod
    def test_predict_without_model():
        with pytest.raises(ModelNotLoadedError):
            ModelHolder().predict(HousingFeatures(**SAMPLE))

    @staticmethod
    def test_predict_matches_model(trained_model_path: str):
        # Given
        holder = ModelHolder()
        holder.load(trained_model_path)
        with open(trained_model_path, "rb") as f:
            model = pickle.load(f)
        features = HousingFeatures(**SAMPLE)

        # When
        value = holder.predict(features)

        # Then
        assert value == pytest.approx(float(model.predict([features.to_row()])[0]))

    @staticmethod
    def test_unload():
        holder = ModelHolder()
        holder.unload()

        assert holder.greet() == GREET_NOT_LOADED


@pytest.fixture
def client(trained_model_path: str):
    with TestClient(create_serving_app(trained_model_path)) as client:
        yield client


class TestServingApp:
    @staticmethod
    def test_greet(client: TestClient):
        response = client.get("/v2/greet")

        assert response.status_code == 200
        assert response.text == GREET_LOADED
        assert response.headers["content-type"].startswith("text/plain")

    @staticmethod
    def test_predict_returns_plain_number(client: TestClient):
        response = client.post("/v2/predict", json=SAMPLE)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        float(response.text)

    @staticmethod
    def test_predict_coerces_numeric_strings(client: TestClient):
        # Given
        as_strings = {k: str(v) for k, v in SAMPLE.items()}

        # When
        from_numbers = client.post("/v2/predict", json=SAMPLE)
        from_strings = client.post("/v2/predict", json=as_strings)

        # Then
        assert from_strings.status_code == 200
        assert from_strings.text == from_numbers.text

    @staticmethod
    def test_predict_ignores_extra_keys(client: TestClient):
        response = client.post("/v2/predict", json={**SAMPLE, "Ocean": "near"})

        assert response.status_code == 200

    @staticmethod
    def test_predict_missing_feature(client: TestClient):
        payload = dict(SAMPLE)
        del payload["Longitude"]

        response = client.post("/v2/predict", json=payload)

        assert response.status_code == 422

    @staticmethod
    @pytest.mark.parametrize(
        "value",
        [
            pytest.param("NaN", id="nan_literal"),
            pytest.param("Infinity", id="infinity_literal"),
            pytest.param('"nan"', id="nan_string"),
            pytest.param('"inf"', id="inf_string"),
            pytest.param('"-inf"', id="negative_inf_string"),
        ],
    )
    def test_predict_rejects_non_finite(client: TestClient, value: str):
        # Given
        fields = [f'"{k}": {v}' for k, v in SAMPLE.items() if k != "MedInc"]
        body = "{" + ", ".join([f'"MedInc": {value}'] + fields) + "}"

        # When
        response = client.post(
            "/v2/predict", content=body, headers={"Content-Type": "application/json"}
        )

        # Then
        assert response.status_code == 422

    @staticmethod
    def test_without_model(tmp_path: Path):
        app = create_serving_app(str(tmp_path / "missing.pkl"))

        with TestClient(app) as client:
            greet = client.get("/v2/greet")
            predict = client.post("/v2/predict", json=SAMPLE)

        assert greet.status_code == 200
        assert greet.text == GREET_NOT_LOADED
        assert predict.status_code == 503
