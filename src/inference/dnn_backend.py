"""
OpenCV DNN classifier backend.

Runs an ONNX image classifier (e.g. a Teachable Machine export converted to
ONNX) on CPU through cv2.dnn, so no extra runtime is needed beyond OpenCV.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

import cv2
import numpy as np

from .backend import ClassifierBackend


@dataclass(frozen=True)
class DnnClassifierConfig:
    model_path: str
    image_size: int = 224
    apply_softmax: bool = False
    channels_last: bool = False


def softmax(scores: np.ndarray) -> np.ndarray:
    shifted = scores - np.max(scores)
    exp = np.exp(shifted)
    return exp / np.sum(exp)


class OpenCVDnnBackend(ClassifierBackend):
    """
    Square-crop, resize, scale to [-1, 1], forward.

    The [-1, 1] scaling matches what Teachable Machine image models are
    trained with.
    """

    def __init__(self, cfg: DnnClassifierConfig):
        self.cfg = cfg
        self._net = cv2.dnn.readNetFromONNX(cfg.model_path)
        if self._net.empty():
            raise ValueError(f"OpenCV could not parse model {cfg.model_path}")

    def predict(self, frame: np.ndarray) -> List[float]:
        size = self.cfg.image_size
        blob = cv2.dnn.blobFromImage(
            frame,
            scalefactor=1.0 / 127.5,
            size=(size, size),
            mean=(127.5, 127.5, 127.5),
            swapRB=True,
            crop=True,
        )
        if self.cfg.channels_last:
            # Keras exports (tf2onnx) keep the NHWC input layout.
            blob = np.ascontiguousarray(blob.transpose(0, 2, 3, 1))
        self._net.setInput(blob)
        out = np.asarray(self._net.forward(), dtype=np.float64).reshape(-1)
        if self.cfg.apply_softmax:
            out = softmax(out)
        return out.tolist()
