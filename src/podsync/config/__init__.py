from .config import AppSettings

__all__ = [
    "AppSettings",
]
