"""
Classifier backend interface.

Backends return one score per class label, in the label order the model was
loaded with. Mapping scores to labels is the ModelHandle's job.
"""

from __future__ import annotations

from typing import Protocol, Sequence

import numpy as np


class ClassifierBackend(Protocol):
    def predict(self, frame: np.ndarray) -> Sequence[float]:
        ...
