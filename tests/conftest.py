"""Fixtures shared across the test modules."""

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from aicore_lab import storage as storage_module
from aicore_lab.adapters import ObjectStoreFactory
from aicore_lab.config import get_settings
from aicore_lab.models import ObjectStoreSecret
from aicore_lab.storage import StorageManager, get_storage
from aicore_lab.training import load_dataset, save_model, train_model

DATA_DIR = Path(__file__).parent / "data"


def make_housing_frame(rows: int = 200, seed: int = 0) -> pd.DataFrame:
    """Synthetic California-housing-shaped data with a learnable target."""
    rng = np.random.default_rng(seed)
    df = pd.DataFrame(
        {
            "MedInc": rng.uniform(0.5, 15.0, rows),
            "HouseAge": rng.uniform(1.0, 52.0, rows),
            "AveRooms": rng.uniform(2.0, 10.0, rows),
            "AveBedrms": rng.uniform(0.5, 2.0, rows),
            "Population": rng.uniform(3.0, 5000.0, rows),
            "AveOccup": rng.uniform(1.0, 6.0, rows),
            "Latitude": rng.uniform(32.5, 42.0, rows),
            "Longitude": rng.uniform(-124.3, -114.3, rows),
        }
    )
    df["target"] = 0.4 * df["MedInc"] + 0.01 * df["HouseAge"] + rng.normal(0, 0.1, rows)
    return df


@pytest.fixture
def housing_csv(tmp_path: Path) -> Path:
    path = tmp_path / "dataset" / "train.csv"
    path.parent.mkdir(parents=True)
    make_housing_frame().to_csv(path, index=False)
    return path


@pytest.fixture
def trained_model_path(tmp_path: Path, housing_csv: Path) -> str:
    X, y = load_dataset(str(housing_csv))
    model, _ = train_model(X, y, max_depth=4, random_state=0)
    return save_model(model, str(tmp_path / "trained"))


@pytest.fixture
def training_yaml() -> str:
    return (DATA_DIR / "training-workflow.yaml").read_text()


@pytest.fixture
def serving_yaml() -> str:
    return (DATA_DIR / "serving-executable.yaml").read_text()


@pytest.fixture
def lab_env(tmp_path: Path, monkeypatch):
    """
    Points settings and the storage singleton at a temporary directory.
    """
    paths = {
        "STORAGE_PATH": tmp_path / "storage",
        "OBJECT_STORE_PATH": tmp_path / "object_store",
        "WORKSPACE_PATH": tmp_path / "workspaces",
    }
    for name, path in paths.items():
        monkeypatch.setenv(name, str(path))
    monkeypatch.setenv("RANDOM_STATE", "0")
    monkeypatch.setenv("RESOURCE_GROUP", "default")
    get_settings.cache_clear()
    monkeypatch.setattr(storage_module, "_storage", None)

    yield {name: str(path) for name, path in paths.items()}

    get_settings.cache_clear()


@pytest.fixture
def storage(lab_env) -> StorageManager:
    return get_storage()


@pytest.fixture
def default_secret(storage: StorageManager) -> ObjectStoreSecret:
    secret = ObjectStoreSecret(name="default", bucket="hcp-bucket", path_prefix="tutorial")
    storage.save_secret(secret)
    return secret


@pytest.fixture
def dataset_url(lab_env, default_secret: ObjectStoreSecret, housing_csv: Path) -> str:
    """Uploads the training CSV and returns the artifact URL of its folder."""
    store = ObjectStoreFactory.create(
        "local", default_secret, base_path=lab_env["OBJECT_STORE_PATH"]
    )
    store.upload(str(housing_csv), "tutorial/data/train.csv")
    return "ai://default/data"
