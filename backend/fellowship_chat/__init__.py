"""Fellowship Chat backend: realtime community, admin, and private messaging."""

__version__ = "0.1.0"
