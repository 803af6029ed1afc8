"""Task Market Service - peer task marketplace with ratings and reputation."""

__version__ = "0.1.0"
