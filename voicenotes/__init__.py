"""Top-level package for voicenotes."""

__version__ = "0.1.0"

from . import config, storage  # noqa: E402

__all__ = ["config", "storage", "__version__"]
