import json
import pickle
from pathlib import Path

import pytest

from aicore_lab.config import Settings
from aicore_lab.models import FEATURE_COLUMNS
from aicore_lab.training import (
    METRICS_FILENAME,
    MODEL_FILENAME,
    TrainingError,
    load_dataset,
    run_training,
    train_model,
)

from .conftest import make_housing_frame


class TestLoadDataset:
    @staticmethod
    def test_features_in_training_order(tmp_path: Path):
        # Given
        df = make_housing_frame(rows=20)
        shuffled = df[list(reversed(df.columns))]
        path = tmp_path / "train.csv"
        shuffled.to_csv(path, index=False)

        # When
        X, y = load_dataset(str(path))

        # Then
        assert list(X.columns) == FEATURE_COLUMNS
        assert len(X) == len(y) == 20

    @staticmethod
    def test_missing_file(tmp_path: Path):
        with pytest.raises(TrainingError) as exc_info:
            load_dataset(str(tmp_path / "nope.csv"))

        assert "not found" in exc_info.value.message

    @staticmethod
    def test_missing_columns(tmp_path: Path):
        # Given
        path = tmp_path / "train.csv"
        make_housing_frame(rows=20).drop(columns=["Latitude", "target"]).to_csv(path, index=False)

        # When
        with pytest.raises(TrainingError) as exc_info:
            load_dataset(str(path))

        # Then
        assert exc_info.value.errors == [
            "Missing column: 'Latitude'",
            "Missing column: 'target'",
        ]

    @staticmethod
    def test_rows_with_gaps_are_dropped(tmp_path: Path):
        # Given
        df = make_housing_frame(rows=10)
        df.loc[0:6, "MedInc"] = None
        path = tmp_path / "train.csv"
        df.to_csv(path, index=False)

        # Then
        with pytest.raises(TrainingError) as exc_info:
            load_dataset(str(path))
        assert "3 usable rows" in exc_info.value.message


class TestTrainModel:
    @staticmethod
    def test_report_describes_split_and_fit():
        # Given
        df = make_housing_frame(rows=200)

        # When
        model, report = train_model(
            df[FEATURE_COLUMNS], df["target"], max_depth=6, test_size=0.3, random_state=0
        )

        # Then
        assert report.rows_total == 200
        assert report.rows_test == 60
        assert report.rows_train == 140
        assert report.max_depth == 6
        assert 0 < report.tree_depth <= 6
        assert report.r2 > 0.5
        assert report.mae >= 0
        assert report.rmse >= report.mae

    @staticmethod
    def test_max_depth_limits_tree():
        df = make_housing_frame(rows=200)

        model, report = train_model(df[FEATURE_COLUMNS], df["target"], max_depth=2, random_state=0)

        assert model.get_depth() <= 2
        assert report.tree_depth == model.get_depth()


class TestRunTraining:
    @staticmethod
    def test_writes_model_and_metrics(tmp_path: Path, housing_csv: Path):
        # Given
        settings = Settings(DT_MAX_DEPTH=3, RANDOM_STATE=0)
        output_dir = tmp_path / "model"

        # When
        report = run_training(
            settings=settings,
            data_path=str(housing_csv),
            output_dir=str(output_dir),
        )

        # Then
        assert report.max_depth == 3
        assert report.model_path == str(output_dir / MODEL_FILENAME)

        with open(output_dir / MODEL_FILENAME, "rb") as f:
            model = pickle.load(f)
        assert model.get_depth() <= 3

        metrics = json.loads((output_dir / METRICS_FILENAME).read_text())
        assert metrics["r2"] == pytest.approx(report.r2)
        assert metrics["features"] == FEATURE_COLUMNS

    @staticmethod
    def test_explicit_depth_overrides_settings(tmp_path: Path, housing_csv: Path):
        settings = Settings(DT_MAX_DEPTH=8, RANDOM_STATE=0)

        report = run_training(
            settings=settings,
            data_path=str(housing_csv),
            output_dir=str(tmp_path / "model"),
            max_depth=1,
        )

        assert report.tree_depth == 1
