from .path import LocalPath, StorePath

__all__ = ["LocalPath", "StorePath"]
