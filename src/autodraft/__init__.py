"""AutoDraft: resumable outline-to-prose novel drafting pipeline."""

__version__ = "0.1.0"
