"""
Training - moving learned state between processes.
"""

from .import_export import LearnedStateIO, export_state, import_state, STATE_VERSION

__all__ = [
    "LearnedStateIO",
    "export_state",
    "import_state",
    "STATE_VERSION",
]
