from .artifacts import LocalArtifactCache
from .engine import TreeSynchronizer, is_ignored
from .layout import create_folder_structure

__all__ = ["LocalArtifactCache", "TreeSynchronizer", "create_folder_structure", "is_ignored"]
