"""Academic credential verification: claims vs. document evidence."""

__version__ = "0.1.0"
