"""ClipDeck: record, label, upload, and play back short audio clips."""

__version__ = "0.1.0"
