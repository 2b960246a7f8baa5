"""NHIS claims administration core: claims, batches, validation and reconciliation."""

__version__ = "0.1.0"
