from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from . import config
from .errors import ErrorKind, UpstreamAuthError, translate_exception

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, Optional[str]], Any]


def connect_gradio(space_id: str, token: Optional[str]) -> Any:
    """Open a ``gradio_client`` session against ``space_id`` (blocking)."""
    from gradio_client import Client

    # The token is the second positional parameter across gradio_client
    # releases (``hf_token`` before 2.0, ``token`` since).
    return Client(space_id, token, verbose=False)


class RemoteClientProvider:
    """Lazily connected, process-wide handle to the hosted try-on model.

    The first caller starts the handshake; callers arriving while it is in
    flight await the same task, so exactly one connection attempt is made and
    everyone sees the same handle or the same error. A failed attempt is
    forgotten so the next call starts a fresh one.
    """

    def __init__(
        self,
        *,
        space_id: str = config.SPACE_ID,
        token: Optional[str] = config.HF_TOKEN,
        require_token: bool = config.REQUIRE_TOKEN,
        factory: ClientFactory = connect_gradio,
    ) -> None:
        self.space_id = space_id
        self.token = token
        self.require_token = require_token
        self._factory = factory
        self._client: Any = None
        self._pending: Optional[asyncio.Task] = None
        self.connect_attempts = 0
        if not token:
            logger.warning(
                "HF_TOKEN is not set. Anonymous access to %s may be throttled or refused.", space_id
            )

    @property
    def token_configured(self) -> bool:
        return bool(self.token)

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def get(self) -> Any:
        if self._client is not None:
            return self._client
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._connect())
        # Shielded so one cancelled waiter does not abort the shared handshake.
        return await asyncio.shield(self._pending)

    async def _connect(self) -> Any:
        self.connect_attempts += 1
        try:
            if self.require_token and not self.token:
                raise UpstreamAuthError("HF_TOKEN environment variable is not set.")
            logger.info("Initializing Gradio client for space %s", self.space_id)
            client = await asyncio.to_thread(self._factory, self.space_id, self.token)
        except UpstreamAuthError as exc:
            logger.error("Refusing to connect to %s: %s", self.space_id, exc)
            raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Failed to initialize Gradio client for %s: %s", self.space_id, exc)
            raise translate_exception(
                exc,
                default=ErrorKind.UNREACHABLE,
                prefix="AI service connection failed",
            ) from exc
        finally:
            self._pending = None
        self._client = client
        logger.info("Gradio client for %s initialized", self.space_id)
        return client

    async def check(self) -> bool:
        try:
            await self.get()
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Health check could not reach %s: %s", self.space_id, exc)
            return False
        return True
