"""PageScribe: batch transcription of page images into markdown documents."""

__version__ = "0.1.0"
