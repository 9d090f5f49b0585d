"""
Media package for glaneur.

Handles downloading and validating game artwork and videos.
"""

from .downloader import MediaFetcher, validate_image_data

__all__ = [
    "MediaFetcher",
    "validate_image_data",
]
