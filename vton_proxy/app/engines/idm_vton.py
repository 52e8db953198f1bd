from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Sequence

import httpx
from gradio_client import handle_file

from .. import config
from ..errors import (
    BadUpstreamResultError,
    ErrorKind,
    TryOnError,
    UpstreamTimeoutError,
    match_kind,
    translate_exception,
)
from ..remote import RemoteClientProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineConfig:
    timeout_s: float = config.PROCESSING_TIMEOUT_MS / 1000.0
    download_timeout_s: float = config.DOWNLOAD_TIMEOUT_S
    api_name: str = config.TRYON_API_NAME
    garment_description: str = config.GARMENT_DESCRIPTION
    is_upper_body: bool = config.IS_UPPER_BODY
    auto_crop: bool = config.AUTO_CROP
    denoise_steps: int = config.DENOISE_STEPS
    seed: int = config.SEED


def _field(entry: Any, name: str) -> Any:
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


def extract_result_reference(result: Any) -> str:
    """Return the URL or local path of the first output in a prediction result.

    ``gradio_client`` returns a tuple of outputs; the JS client wraps them in
    ``{"data": [...]}``. Both are accepted. The first entry may be an object
    with ``name``, a bare string, or an object with ``url`` or ``path``.
    """
    if isinstance(result, Mapping) and isinstance(result.get("data"), (list, tuple)):
        outputs: Sequence[Any] = result["data"]
    elif isinstance(result, (list, tuple)):
        outputs = result
    elif result is None:
        outputs = ()
    else:
        outputs = (result,)

    if outputs:
        first = outputs[0]
        if isinstance(first, str):
            candidates = [first]
        elif first is not None:
            candidates = [_field(first, "name"), _field(first, "url"), _field(first, "path")]
        else:
            candidates = []
        for candidate in candidates:
            if isinstance(candidate, str) and candidate:
                return candidate

    logger.error("Unexpected prediction result structure: %r", result)
    raise BadUpstreamResultError("Invalid or empty result from the remote model. Output path not found.")


class IdmVtonEngine:
    """Runs one try-on prediction against the hosted IDM-VTON Space."""

    def __init__(
        self,
        remote: RemoteClientProvider,
        engine_cfg: Optional[EngineConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.remote = remote
        self.cfg = engine_cfg or EngineConfig()
        self._transport = transport

    async def run(self, person_path: Path, garment_path: Path) -> bytes:
        client = await self.remote.get()
        result = await self._predict(client, person_path, garment_path)
        reference = extract_result_reference(result)
        logger.info("Result image reference: %s", reference)
        return await self.fetch_result(reference)

    async def _predict(self, client: Any, person_path: Path, garment_path: Path) -> Any:
        started = time.perf_counter()
        logger.info("Submitting job to %s with a timeout of %.0fs", self.cfg.api_name, self.cfg.timeout_s)
        try:
            job = client.submit(
                dict={"background": handle_file(person_path), "layers": [], "composite": None},
                garm_img=handle_file(garment_path),
                garment_des=self.cfg.garment_description,
                is_checked=self.cfg.is_upper_body,
                is_checked_crop=self.cfg.auto_crop,
                denoise_steps=self.cfg.denoise_steps,
                seed=self.cfg.seed,
                api_name=self.cfg.api_name,
            )
            # Losing the race only stops waiting; the Space may keep processing the job.
            result = await asyncio.wait_for(asyncio.wrap_future(job), timeout=self.cfg.timeout_s)
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeoutError(
                f"Gradio prediction timed out after {self.cfg.timeout_s:.0f}s. "
                "The AI service may be overloaded or asleep."
            ) from exc
        except TryOnError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            raise translate_exception(exc) from exc
        logger.info("Prediction finished in %.1fs", time.perf_counter() - started)
        return result

    async def fetch_result(self, reference: str) -> bytes:
        if reference.startswith("http"):
            return await self._download(reference)
        try:
            data = await asyncio.to_thread(Path(reference).read_bytes)
        except OSError as exc:
            raise BadUpstreamResultError(f"Result file {reference} could not be read: {exc}") from exc
        logger.info("Read result image from %s (%d bytes)", reference, len(data))
        return data

    async def _download(self, url: str) -> bytes:
        try:
            async with httpx.AsyncClient(
                timeout=self.cfg.download_timeout_s,
                transport=self._transport,
                follow_redirects=True,
            ) as http:
                response = await http.get(url)
        except httpx.HTTPError as exc:
            raise translate_exception(
                exc,
                default=ErrorKind.UNREACHABLE,
                prefix="Failed to fetch result image",
            ) from exc
        if not response.is_success:
            status_text = f"{response.status_code} {response.reason_phrase}"
            # Match on the status only; URLs carry arbitrary digits.
            raise TryOnError(
                f"Failed to download result image from {url}: {status_text}",
                kind=match_kind(status_text) or ErrorKind.UNKNOWN,
            )
        logger.info("Downloaded result image (%d bytes)", len(response.content))
        return response.content
