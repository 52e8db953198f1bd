from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol, Tuple

from . import config
from .errors import TryOnError, translate_exception
from .metrics import Timer, increment
from .staging import staged_images


logger = logging.getLogger(__name__)


class TryOnEngine(Protocol):
    async def run(self, person_path: Path, garment_path: Path) -> bytes:
        ...


@dataclass
class TryOnResult:
    image_base64: str
    timestamp: str
    attempts: int
    elapsed_seconds: float


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class TryOnPipeline:
    """Stage the uploads, run the engine with retries, and always clean up.

    Every failure except a timeout is retried with exponential backoff. A
    timed-out job may still be running on the Space, so submitting it again
    would only add load.
    """

    def __init__(
        self,
        engine: TryOnEngine,
        *,
        retry_attempts: int = config.RETRY_ATTEMPTS,
        retry_base_delay_s: float = config.RETRY_BASE_DELAY_S,
        temp_dir: Optional[Path] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.engine = engine
        self.retry_attempts = max(1, retry_attempts)
        self.retry_base_delay_s = retry_base_delay_s
        self.temp_dir = temp_dir
        self._sleep = sleep

    async def run(self, *, person_image: str, garment_image: str) -> TryOnResult:
        logger.info("Starting virtual try-on processing")
        timer = Timer("tryon_pipeline_seconds", "success")
        try:
            async with staged_images(person_image, garment_image, directory=self.temp_dir) as staged:
                image_bytes, attempts = await self._run_with_retries(*staged)
        except Exception as exc:  # pylint: disable=broad-except
            error = translate_exception(exc)
            timer.stop(error.kind.value)
            increment("tryon_results_total", error.kind.value)
            logger.error("Try-on processing failed (%s): %s", error.kind.value, error)
            raise error

        elapsed = timer.stop()
        increment("tryon_results_total", "success")
        logger.info("Try-on processing completed in %.1fs (%d bytes)", elapsed, len(image_bytes))
        return TryOnResult(
            image_base64=base64.b64encode(image_bytes).decode("ascii"),
            timestamp=utc_timestamp(),
            attempts=attempts,
            elapsed_seconds=round(elapsed, 3),
        )

    def backoff_delay(self, attempt: int) -> float:
        return self.retry_base_delay_s * (2 ** attempt)

    async def _run_with_retries(self, person_path: Path, garment_path: Path) -> Tuple[bytes, int]:
        attempt = 1
        while True:
            logger.info("Calling remote model (attempt %d/%d)", attempt, self.retry_attempts)
            try:
                return await self.engine.run(person_path, garment_path), attempt
            except Exception as exc:  # pylint: disable=broad-except
                error: TryOnError = translate_exception(exc)
                logger.error(
                    "Remote call failed: %s (attempt %d/%d)", error, attempt, self.retry_attempts
                )
                if not error.retryable or attempt >= self.retry_attempts:
                    raise error
            delay = self.backoff_delay(attempt)
            increment("tryon_retries_total", f"attempt={attempt}")
            logger.info("Retrying in %.1fs", delay)
            await self._sleep(delay)
            attempt += 1
