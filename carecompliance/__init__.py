"""Care-home credential and compliance verification lifecycle."""

__version__ = "0.1.0"
