"""
ModelHandle: a loaded classifier plus its ordered class labels.

Handles are created by ModelLoader.load() and are read-only afterwards, so a
single handle can be reused by any number of sessions. classify() calls on
one handle are serialized.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

import numpy as np

from errors import InferenceError, ModelLoadError
from models.frame import FrameData
from models.prediction import PredictionSet
from .backend import ClassifierBackend
from .dnn_backend import DnnClassifierConfig, OpenCVDnnBackend
from .model_source import FileModelSource, ModelAssets, ModelSource

logger = logging.getLogger(__name__)

BackendFactory = Callable[[ModelAssets], ClassifierBackend]


class ModelHandle:
    def __init__(self, backend: ClassifierBackend, labels: Sequence[str], locator: str = "", name: Optional[str] = None):
        self._backend = backend
        self._labels: Tuple[str, ...] = tuple(labels)
        self.locator = locator
        self.name = name or locator
        # asyncio.Lock binds to one event loop; keep one per loop.
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None
        # Held by the worker thread, so a timed-out call still blocks the next one.
        self._backend_lock = threading.Lock()

    @property
    def labels(self) -> Tuple[str, ...]:
        return self._labels

    async def classify(self, frame: Union[FrameData, np.ndarray]) -> PredictionSet:
        """
        Score one frame.

        Raises:
            InferenceError: The backend failed or returned scores that do not
                match the labels.
        """
        image = frame.frame if isinstance(frame, FrameData) else frame
        async with self._loop_lock():
            return await asyncio.to_thread(self._predict, image)

    def _loop_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    def _predict(self, image: np.ndarray) -> PredictionSet:
        with self._backend_lock:
            try:
                scores = list(self._backend.predict(image))
            except Exception as e:
                raise InferenceError(f"Classifier failed: {e}") from e

        if len(scores) != len(self._labels):
            raise InferenceError(
                f"Model returned {len(scores)} scores for {len(self._labels)} labels"
            )
        try:
            return PredictionSet.from_scores(self._labels, scores)
        except (TypeError, ValueError) as e:
            raise InferenceError(f"Model returned non-numeric scores: {e}") from e

    def __repr__(self) -> str:
        return f"ModelHandle(name={self.name!r}, labels={list(self._labels)!r})"


def parse_labels(metadata: Dict[str, Any]) -> Tuple[str, ...]:
    """
    Extract the ordered class labels from model metadata.

    Raises:
        ModelLoadError: Labels missing, empty, non-string, blank, or duplicated.
    """
    labels = metadata.get("labels")
    if not isinstance(labels, list) or not labels:
        raise ModelLoadError("Metadata has no 'labels' list")
    if not all(isinstance(label, str) and label.strip() for label in labels):
        raise ModelLoadError("Metadata labels must be non-empty strings")
    if len(set(labels)) != len(labels):
        raise ModelLoadError("Metadata labels must be unique")
    return tuple(labels)


def default_backend_factory(apply_softmax: bool = False, channels_last: bool = False) -> BackendFactory:
    def build(assets: ModelAssets) -> ClassifierBackend:
        image_size = int(assets.metadata.get("imageSize", 224))
        return OpenCVDnnBackend(DnnClassifierConfig(
            model_path=assets.model_path,
            image_size=image_size,
            apply_softmax=apply_softmax,
            channels_last=channels_last,
        ))
    return build


class ModelLoader:
    """
    Fetches assets from a ModelSource and builds a ModelHandle.

    Every failure surfaces as ModelLoadError; nothing is cached on failure.
    """

    def __init__(self, source: ModelSource, backend_factory: Optional[BackendFactory] = None):
        self._source = source
        self._backend_factory = backend_factory or default_backend_factory()

    async def load(self, locator: str) -> ModelHandle:
        try:
            assets = await self._source.fetch(locator)
            labels = parse_labels(assets.metadata)
            backend = await asyncio.to_thread(self._backend_factory, assets)
        except ModelLoadError as e:
            if e.locator is None:
                e.locator = locator
            raise
        except Exception as e:
            raise ModelLoadError(f"Failed to load model from {locator}: {e}", locator=locator) from e

        name = assets.metadata.get("modelName") or locator
        logger.info(f"Model loaded: name={name}, labels={list(labels)}")
        return ModelHandle(backend, labels, locator=locator, name=name)


def create_loader_from_config(model_cfg: Dict[str, Any]) -> ModelLoader:
    """Factory: ModelLoader with a FileModelSource and the OpenCV DNN backend."""
    source = FileModelSource(
        cache_dir=model_cfg.get("cache_dir", "data/models"),
        model_file=model_cfg.get("model_file", "model.onnx"),
        metadata_file=model_cfg.get("metadata_file", "metadata.json"),
    )
    factory = default_backend_factory(
        apply_softmax=model_cfg.get("apply_softmax", False),
        channels_last=model_cfg.get("channels_last", False),
    )
    return ModelLoader(source, factory)
