"""
Detecting the project's own version.

The version is determined only once at startup when the code is loaded.
It is used to self-identify in the API requests (the ``User-Agent`` header).
"""
import importlib.metadata

version: str | None = None

try:
    name, *_ = __name__.split('.')  # usually "kubetether", unless renamed/forked.
    version = importlib.metadata.version(name)
except importlib.metadata.PackageNotFoundError:
    pass  # running from a source tree, not installed.
