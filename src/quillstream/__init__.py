"""Stream language-model output into a document, then apply, review, or discard it."""

__version__ = "0.3.0"
