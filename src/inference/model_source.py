"""
Model sources: resolve a locator to local model weights plus class metadata.

A locator is either a local directory or an http(s) base URL. Both must
contain the model file (default `model.onnx`) and a Teachable-Machine-style
`metadata.json`. Remote models are downloaded once into a cache directory.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import shutil
import tempfile
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Dict, Protocol

from errors import ModelLoadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelAssets:
    """
    Everything needed to instantiate a classifier.

    Attributes:
        locator: Where the assets came from.
        model_path: Local path to the model weights.
        metadata: Parsed metadata.json contents.
    """
    locator: str
    model_path: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class ModelSource(Protocol):
    async def fetch(self, locator: str) -> ModelAssets:
        ...


def is_remote(locator: str) -> bool:
    return locator.startswith("http://") or locator.startswith("https://")


class FileModelSource(ModelSource):
    """Resolves local directories and downloads http(s) base URLs into cache_dir."""

    def __init__(
        self,
        cache_dir: str = "data/models",
        model_file: str = "model.onnx",
        metadata_file: str = "metadata.json",
        timeout: float = 30.0,
    ):
        self.cache_dir = cache_dir
        self.model_file = model_file
        self.metadata_file = metadata_file
        self.timeout = timeout

    async def fetch(self, locator: str) -> ModelAssets:
        if not locator:
            raise ModelLoadError("No model locator configured", locator=locator)
        return await asyncio.to_thread(self._fetch_sync, locator)

    def _fetch_sync(self, locator: str) -> ModelAssets:
        if is_remote(locator):
            model_dir = self._download(locator)
        else:
            model_dir = locator
            if not os.path.isdir(model_dir):
                raise ModelLoadError(f"Model directory not found: {model_dir}", locator=locator)

        model_path = os.path.join(model_dir, self.model_file)
        metadata_path = os.path.join(model_dir, self.metadata_file)
        if not os.path.isfile(model_path):
            raise ModelLoadError(f"Model file missing: {model_path}", locator=locator)
        if not os.path.isfile(metadata_path):
            raise ModelLoadError(f"Metadata file missing: {metadata_path}", locator=locator)

        try:
            with open(metadata_path, "r", encoding="utf-8") as f:
                metadata = json.load(f)
        except (OSError, ValueError) as e:
            raise ModelLoadError(f"Malformed metadata {metadata_path}: {e}", locator=locator) from e
        if not isinstance(metadata, dict):
            raise ModelLoadError(f"Metadata must be a JSON object: {metadata_path}", locator=locator)

        return ModelAssets(locator=locator, model_path=model_path, metadata=metadata)

    def _download(self, base_url: str) -> str:
        """Download model + metadata into a per-locator cache dir; reuse it if complete."""
        key = hashlib.sha1(base_url.encode("utf-8")).hexdigest()[:12]
        target_dir = os.path.join(self.cache_dir, key)
        names = (self.model_file, self.metadata_file)
        if all(os.path.isfile(os.path.join(target_dir, n)) for n in names):
            logger.info(f"Using cached model for {base_url} ({target_dir})")
            return target_dir

        os.makedirs(self.cache_dir, exist_ok=True)
        staging = tempfile.mkdtemp(prefix=f"{key}-", dir=self.cache_dir)
        try:
            for name in names:
                url = base_url.rstrip("/") + "/" + name
                logger.info(f"Downloading {url}")
                try:
                    with urllib.request.urlopen(url, timeout=self.timeout) as resp, \
                            open(os.path.join(staging, name), "wb") as out:
                        shutil.copyfileobj(resp, out)
                except (urllib.error.URLError, OSError) as e:
                    raise ModelLoadError(f"Failed to download {url}: {e}", locator=base_url) from e
            if os.path.isdir(target_dir):
                shutil.rmtree(target_dir)
            os.replace(staging, target_dir)
        finally:
            if os.path.isdir(staging):
                shutil.rmtree(staging, ignore_errors=True)
        return target_dir
