"""HTTP surface: the viewer SSE stream and a health route."""

from __future__ import annotations

from gridscout.server.app import create_app
from gridscout.server.stream import ViewerStream, decode_frame, encode_frame

__all__ = ["ViewerStream", "create_app", "decode_frame", "encode_frame"]
