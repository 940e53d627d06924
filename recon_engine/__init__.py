"""Financial reconciliation and gap-detection engine."""

__version__ = "1.0.0"
