"""FlickSwiper - swipe-driven movie and TV discovery."""

__version__ = "0.1.0"
