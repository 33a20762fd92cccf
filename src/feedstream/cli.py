from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import httpx
import typer

from .channels import ChannelClosed
from .client import FeedClient
from .config import StreamConfig, load_stream_config
from .errors import DecodeError, StreamSetupError
from .line_reader import FileBody
from .messages import DataMessage, notice_to_dict
from .stream import StreamHandle, start_stream

app = typer.Typer(add_completion=False, help="feedstream: decode newline-delimited JSON push feeds")


def _split_pairs(values: list[str], sep: str, *, what: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for v in values:
        if sep not in v:
            raise typer.BadParameter(f"expected KEY{sep}VALUE, got {v!r}", param_hint=what)
        k, val = v.split(sep, 1)
        out[k.strip()] = val.strip()
    return out


def _item_to_dict(item: Any) -> Any:
    if isinstance(item, DataMessage):
        return item.to_dict()
    if isinstance(item, DecodeError):
        return {"type": "decode_error", "reason": item.reason, "line": item.line}
    if isinstance(item, Exception):
        return {"type": type(item).__name__, "message": str(item)}
    return notice_to_dict(item)


def pump(handle: StreamHandle, *, max_items: int | None = None) -> int:
    """Print every received item as one JSON line until the stream ends."""

    n = 0
    with handle:
        while max_items is None or n < max_items:
            try:
                got = handle.select()
            except ChannelClosed:
                break
            typer.echo(json.dumps({"channel": got.channel, "item": _item_to_dict(got.item)}, ensure_ascii=False))
            n += 1
    return n


def _setup_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _load_cfg(config: Path | None) -> StreamConfig:
    return load_stream_config(config.resolve() if config else None)


@app.command()
def tail(
    url: str = typer.Argument(..., help="Stream endpoint URL"),
    header: list[str] = typer.Option([], "--header", "-H", help="Request header 'Name: value' (repeatable)"),
    param: list[str] = typer.Option([], "--param", "-p", help="Query parameter key=value (repeatable)"),
    config: Path | None = typer.Option(None, "--config", help="YAML stream config"),
    max_messages: int | None = typer.Option(None, "--max-messages", "-n", help="Stop after this many items"),
    log_level: str = typer.Option("warning", "--log-level", help="Python logging level"),
) -> None:
    _setup_logging(log_level)
    cfg = _load_cfg(config)
    headers = _split_pairs(header, ":", what="--header")
    params = _split_pairs(param, "=", what="--param")

    with httpx.Client() as http:
        try:
            handle = FeedClient(http, cfg=cfg).open_stream(url, params=params or None, headers=headers or None)
        except StreamSetupError as e:
            typer.secho(str(e), fg=typer.colors.RED, err=True)
            if e.body:
                typer.echo(e.body, err=True)
            raise typer.Exit(code=1) from e

        try:
            pump(handle, max_items=max_messages)
        except KeyboardInterrupt:
            # pump() has already closed the handle on the way out.
            raise typer.Exit(code=130) from None


@app.command()
def replay(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Captured stream body"),
    config: Path | None = typer.Option(None, "--config", help="YAML stream config"),
    max_messages: int | None = typer.Option(None, "--max-messages", "-n", help="Stop after this many items"),
    log_level: str = typer.Option("warning", "--log-level", help="Python logging level"),
) -> None:
    _setup_logging(log_level)
    cfg = _load_cfg(config)
    handle = start_stream(FileBody(path.open("rb")), cfg, name=f"feedstream:{path.name}")
    pump(handle, max_items=max_messages)


def main() -> None:
    # Entry point for console script.
    app()


if __name__ == "__main__":
    main()
