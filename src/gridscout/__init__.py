"""gridscout — live race timing ingestion and fan-out."""

from __future__ import annotations

__version__ = "0.1.0"
