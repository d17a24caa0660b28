"""deepnotes - semantic index over a Markdown vault."""

__version__ = "0.1.0"
