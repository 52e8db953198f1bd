from __future__ import annotations

import base64
import io
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from PIL import Image


def make_image(width: int = 64, height: int = 96, color=(128, 128, 128)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=color).save(buffer, format="PNG")
    return buffer.getvalue()


def as_base64(data: bytes, *, data_uri: bool = False) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:image/png;base64,{encoded}" if data_uri else encoded


class FakeGradioClient:
    """Stands in for ``gradio_client.Client``; ``submit`` returns a plain Future."""

    def __init__(self, responder: Optional[Callable[[Dict[str, Any]], Any]] = None, *, hang: bool = False):
        self.responder = responder
        self.hang = hang
        self.calls: List[Dict[str, Any]] = []

    def submit(self, *args, **kwargs) -> Future:
        self.calls.append(kwargs)
        future: Future = Future()
        if self.hang:
            return future
        try:
            future.set_result(self.responder(kwargs))
        except Exception as exc:  # pylint: disable=broad-except
            future.set_exception(exc)
        return future

    def staged_paths(self) -> List[Path]:
        paths = []
        for kwargs in self.calls:
            paths.append(Path(kwargs["dict"]["background"]["path"]))
            paths.append(Path(kwargs["garm_img"]["path"]))
        return paths


def echo_person(output_dir: Path) -> Callable[[Dict[str, Any]], Any]:
    """Responder that returns the uploaded person image as the result file."""

    def respond(kwargs: Dict[str, Any]) -> Any:
        data = Path(kwargs["dict"]["background"]["path"]).read_bytes()
        output = output_dir / f"result-{len(list(output_dir.iterdir()))}.png"
        output.write_bytes(data)
        return (str(output), str(output))

    return respond


def returning_file(output_dir: Path, data: bytes) -> Callable[[Dict[str, Any]], Any]:
    def respond(kwargs: Dict[str, Any]) -> Any:
        output = output_dir / "result.png"
        output.write_bytes(data)
        return ({"name": str(output)}, None)

    return respond


def failing(*messages: str, then: Optional[Callable[[Dict[str, Any]], Any]] = None):
    """Responder raising each message in turn, then delegating to ``then``."""
    remaining = list(messages)

    def respond(kwargs: Dict[str, Any]) -> Any:
        if remaining:
            raise RuntimeError(remaining.pop(0))
        if then is None:
            raise RuntimeError(messages[-1])
        return then(kwargs)

    return respond
