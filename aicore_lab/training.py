"""
AI Core Lab - Model Training

Trains the house-price decision tree regressor. Runs unchanged inside the
training container (paths and hyperparameters come from the environment, as
AI Core passes them) and inside the local executor.
"""

from __future__ import annotations
from pathlib import Path
from typing import Optional, Tuple
import json
import logging
import pickle

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score
from sklearn.model_selection import train_test_split
from sklearn.tree import DecisionTreeRegressor

from aicore_lab.config import Settings, configure_logging, get_settings
from aicore_lab.models import FEATURE_COLUMNS, TrainingReport

logger = logging.getLogger(__name__)

MODEL_FILENAME = "model.pkl"
METRICS_FILENAME = "metrics.json"
MIN_ROWS = 5


class TrainingError(Exception):
    """Exception raised when a dataset cannot be trained on."""

    def __init__(self, message: str, errors: Optional[list] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)


def load_dataset(path: str, target_column: str = "target") -> Tuple[pd.DataFrame, pd.Series]:
    """
    Read the training CSV.

    Args:
        path: CSV file with the eight feature columns and the target column
        target_column: Name of the label column

    Returns:
        Tuple of (features in FEATURE_COLUMNS order, target)

    Raises:
        TrainingError: If the file is missing, columns are absent or the
            dataset is too small to split
    """
    csv_path = Path(path)
    if not csv_path.is_file():
        raise TrainingError(f"Training data not found: {path}")

    df = pd.read_csv(csv_path)

    missing = [c for c in FEATURE_COLUMNS + [target_column] if c not in df.columns]
    if missing:
        raise TrainingError(
            "Training data is missing required columns",
            errors=[f"Missing column: '{c}'" for c in missing],
        )

    df = df.dropna(subset=FEATURE_COLUMNS + [target_column])
    if len(df) < MIN_ROWS:
        raise TrainingError(
            f"Training data has {len(df)} usable rows, at least {MIN_ROWS} required"
        )

    logger.info(f"Loaded {len(df)} rows from {csv_path}")
    return df[FEATURE_COLUMNS], df[target_column]


def train_model(
    X: pd.DataFrame,
    y: pd.Series,
    max_depth: Optional[int] = None,
    test_size: float = 0.3,
    random_state: Optional[int] = None,
) -> Tuple[DecisionTreeRegressor, TrainingReport]:
    """
    Fit a decision tree regressor and evaluate it on a hold-out split.

    Args:
        X: Feature frame
        y: Target series
        max_depth: Tree depth limit (None grows until leaves are pure)
        test_size: Hold-out fraction
        random_state: Seed for the split and the tree

    Returns:
        Tuple of (fitted model, evaluation report)
    """
    X_train, X_test, y_train, y_test = train_test_split(
        X, y, test_size=test_size, random_state=random_state
    )

    model = DecisionTreeRegressor(max_depth=max_depth, random_state=random_state)
    model.fit(X_train.values, y_train.values)

    predictions = model.predict(X_test.values)
    report = TrainingReport(
        rows_total=len(X),
        rows_train=len(X_train),
        rows_test=len(X_test),
        max_depth=max_depth,
        tree_depth=int(model.get_depth()),
        r2=float(r2_score(y_test, predictions)),
        mae=float(mean_absolute_error(y_test, predictions)),
        rmse=float(np.sqrt(mean_squared_error(y_test, predictions))),
    )

    logger.info(
        f"Trained decision tree (depth {report.tree_depth}) on {report.rows_train} rows: "
        f"R2={report.r2:.4f}, MAE={report.mae:.4f}"
    )
    return model, report


def save_model(model: DecisionTreeRegressor, output_dir: str) -> str:
    """Pickle the model to <output_dir>/model.pkl and return the path."""
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    model_path = out / MODEL_FILENAME
    with open(model_path, "wb") as f:
        pickle.dump(model, f)
    logger.info(f"Saved model to {model_path}")
    return str(model_path)


def run_training(
    settings: Optional[Settings] = None,
    data_path: Optional[str] = None,
    output_dir: Optional[str] = None,
    max_depth: Optional[int] = None,
) -> TrainingReport:
    """
    Train end to end: load the CSV, fit, save the model and its metrics.

    Explicit arguments override the corresponding settings.
    """
    settings = settings or get_settings()
    data_path = data_path or settings.TRAINING_DATA_PATH
    output_dir = output_dir or settings.MODEL_OUTPUT_DIR
    if max_depth is None:
        max_depth = settings.DT_MAX_DEPTH

    X, y = load_dataset(data_path, settings.TARGET_COLUMN)
    model, report = train_model(
        X,
        y,
        max_depth=max_depth,
        test_size=settings.TEST_SIZE,
        random_state=settings.RANDOM_STATE,
    )
    report.model_path = save_model(model, output_dir)

    metrics_path = Path(output_dir) / METRICS_FILENAME
    with open(metrics_path, "w", encoding="utf-8") as f:
        json.dump(report.model_dump(mode="json"), f, indent=2)

    return report


def prepare_dataset(path: str, target_column: str = "target") -> str:
    """
    Export scikit-learn's California housing data as the training CSV.

    Downloads the dataset on first use.
    """
    from sklearn.datasets import fetch_california_housing

    housing = fetch_california_housing(as_frame=True)
    df = housing.data.copy()
    df[target_column] = housing.target

    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out, index=False)
    logger.info(f"Wrote {len(df)} rows to {out}")
    return str(out)


def main() -> None:
    """Entry point of the training container."""
    configure_logging()
    report = run_training()
    logger.info(f"Training finished: {report.model_dump_json()}")


def prepare_main() -> None:
    """Entry point writing the training CSV to TRAINING_DATA_PATH."""
    configure_logging()
    settings = get_settings()
    prepare_dataset(settings.TRAINING_DATA_PATH, settings.TARGET_COLUMN)


if __name__ == "__main__":
    main()
