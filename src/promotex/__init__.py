"""promotex - gated release promotion for image-stream artifacts."""

__version__ = "0.1.0"
