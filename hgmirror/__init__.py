"""Mercurial mirror cache for build clusters."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("hgmirror")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
