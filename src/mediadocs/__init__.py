"""Turn source videos into styled documents from transcripts and keyframes."""

__version__ = "0.1.0"

__all__ = ["__version__"]
