"""
Runtime layer: the SessionController that owns the model, camera and
scheduler of the current detection session.
"""

from .controller import SessionController, create_controller_from_config, describe_error

__all__ = [
    "SessionController",
    "create_controller_from_config",
    "describe_error",
]
