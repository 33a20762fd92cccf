from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml


@dataclass
class StreamConfig:
    # Per-channel capacity; 0 means unbounded.
    buffer_size: int = 64

    # None: decode errors are never fatal. N: the Nth consecutive one ends the stream.
    max_consecutive_decode_errors: int | None = None

    # How long close() waits for the dispatcher thread.
    close_timeout_s: float = 5.0

    # Passed to httpx.Response.iter_bytes; None lets httpx pick.
    chunk_size: int | None = None

    connect_timeout_s: float = 10.0


def _as_int(v: Any, *, minimum: int) -> int | None:
    # bool is an int subclass; `buffer_size: true` is not a size.
    if isinstance(v, int) and not isinstance(v, bool) and v >= minimum:
        return v
    return None


def _as_float(v: Any) -> float | None:
    if isinstance(v, (int, float)) and not isinstance(v, bool) and v > 0:
        return float(v)
    return None


def config_from_dict(data: dict[str, Any]) -> StreamConfig:
    cfg = StreamConfig()

    size = _as_int(data.get("buffer_size"), minimum=0)
    cfg.buffer_size = size if size is not None else cfg.buffer_size

    cfg.max_consecutive_decode_errors = _as_int(data.get("max_consecutive_decode_errors"), minimum=1)

    cfg.close_timeout_s = _as_float(data.get("close_timeout_s")) or cfg.close_timeout_s
    cfg.chunk_size = _as_int(data.get("chunk_size"), minimum=1)
    cfg.connect_timeout_s = _as_float(data.get("connect_timeout_s")) or cfg.connect_timeout_s
    return cfg


def load_stream_config(path: Path | None) -> StreamConfig:
    """Load a YAML stream config if present; otherwise return defaults."""

    data: dict[str, Any] = {}
    if path is not None and path.exists():
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        if isinstance(loaded, dict):
            data = loaded
    return config_from_dict(data)
