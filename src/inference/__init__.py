"""
Inference layer: model sources, classifier backends, and the ModelHandle
that ties weights to their ordered class labels.
"""

from .backend import ClassifierBackend
from .dnn_backend import OpenCVDnnBackend, DnnClassifierConfig
from .model_source import ModelAssets, ModelSource, FileModelSource
from .model_handle import ModelHandle, ModelLoader, parse_labels, create_loader_from_config

__all__ = [
    "ClassifierBackend",
    "OpenCVDnnBackend",
    "DnnClassifierConfig",
    "ModelAssets",
    "ModelSource",
    "FileModelSource",
    "ModelHandle",
    "ModelLoader",
    "parse_labels",
    "create_loader_from_config",
]
