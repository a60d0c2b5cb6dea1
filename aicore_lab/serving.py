"""
AI Core Lab - Inference Server

The house-price prediction server that runs inside the serving container.
Exposes the two routes AI Core deployments are called on:

- GET  /v2/greet    plain-text model status
- POST /v2/predict  plain-text prediction for the eight housing features
"""

from __future__ import annotations
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional
import logging
import pickle
import threading

from fastapi import FastAPI, HTTPException, status
from fastapi.responses import PlainTextResponse

from aicore_lab.config import configure_logging, get_settings
from aicore_lab.models import HousingFeatures

logger = logging.getLogger(__name__)

GREET_LOADED = "Model is loaded."
GREET_NOT_LOADED = "Flask Code: Model was not loaded."


class ModelNotLoadedError(Exception):
    """Exception raised when predicting without a loaded model."""

    def __init__(self, message: str = "Model is not loaded"):
        self.message = message
        super().__init__(self.message)


class ModelHolder:
    """
    Holds the unpickled model a server predicts with.

    A file that is missing or cannot be unpickled leaves the holder empty so
    the greet route can report it.
    """

    def __init__(self):
        self._model: Optional[Any] = None
        self._lock = threading.Lock()
        self.model_path: Optional[str] = None

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def load(self, path: str) -> bool:
        """
        Unpickle the model at path.

        Returns:
            True if the model was loaded
        """
        model_path = Path(path)
        try:
            with open(model_path, "rb") as f:
                model = pickle.load(f)
        except FileNotFoundError:
            logger.error(f"Model file not found: {model_path}")
            return False
        except (pickle.UnpicklingError, EOFError, AttributeError, ImportError) as e:
            logger.error(f"Cannot unpickle model {model_path}: {e}")
            return False

        if not hasattr(model, "predict"):
            logger.error(f"Object in {model_path} has no predict method")
            return False

        with self._lock:
            self._model = model
            self.model_path = str(model_path)
        logger.info(f"Model loaded from {model_path}")
        return True

    def unload(self) -> None:
        with self._lock:
            self._model = None
            self.model_path = None

    def predict(self, features: HousingFeatures) -> float:
        """Predict one house price."""
        with self._lock:
            model = self._model
        if model is None:
            raise ModelNotLoadedError()
        prediction = model.predict([features.to_row()])
        return float(prediction[0])

    def greet(self) -> str:
        return GREET_LOADED if self.is_loaded else GREET_NOT_LOADED


def predict_response(holder: ModelHolder, features: HousingFeatures) -> PlainTextResponse:
    """Run a prediction and wrap it the way the serving contract expects."""
    try:
        value = holder.predict(features)
    except ModelNotLoadedError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=e.message,
        )
    return PlainTextResponse(str(value))


def create_serving_app(model_path: Optional[str] = None) -> FastAPI:
    """
    Create the inference server.

    Args:
        model_path: Pickle to load at startup (defaults to MODEL_PATH)
    """
    holder = ModelHolder()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        path = model_path or get_settings().MODEL_PATH
        logger.info(f"Inference server starting, loading model from {path}")
        holder.load(path)
        yield
        logger.info("Inference server shutting down...")
        holder.unload()

    app = FastAPI(
        title="House Price Inference Server",
        description="Decision tree regressor serving house price predictions.",
        version=get_settings().APP_VERSION,
        lifespan=lifespan,
    )
    app.state.model_holder = holder

    @app.get("/v2/greet", response_class=PlainTextResponse, tags=["Inference"])
    async def greet() -> str:
        """Report whether the model was loaded."""
        return holder.greet()

    @app.post("/v2/predict", response_class=PlainTextResponse, tags=["Inference"])
    async def predict(features: HousingFeatures):
        """Predict the median house value for one district."""
        return predict_response(holder, features)

    return app


def main() -> None:
    """Run the inference server on SERVING_PORT."""
    import uvicorn

    configure_logging()
    settings = get_settings()
    uvicorn.run(
        create_serving_app(),
        host=settings.HOST,
        port=settings.SERVING_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
