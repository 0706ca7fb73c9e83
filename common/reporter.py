"""Fire-and-forget error reporting."""

import asyncio
import logging
import os
import platform
import time
import traceback
from typing import Optional

import aiohttp

from config.defaults import NodeServiceConfig, ReporterConfig

logger: logging.Logger = logging.getLogger(__name__)


class Reporter:
    """Forwards unexpected errors to a collection endpoint when one is configured."""

    _pending: set[asyncio.Task] = set()

    @staticmethod
    def _get_url() -> Optional[str]:
        return os.getenv(ReporterConfig.REPORT_URL_ENV)

    @staticmethod
    def _build_payload(error: BaseException) -> dict:
        return {
            "type": error.__class__.__name__,
            "message": str(error),
            "traceback": "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            ),
            "client": NodeServiceConfig.CLIENT_VERSION,
            "platform": platform.platform(),
            "timestamp": int(time.time()),
        }

    @classmethod
    def report_error(cls, error: BaseException) -> Optional[asyncio.Task]:
        """Schedules the error report without waiting for it."""
        url = cls._get_url()
        if not url:
            logger.debug(f"Error reporting disabled, not reporting: {error!r}")
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop, not reporting: {error!r}")
            return None

        task = loop.create_task(cls._push(url, cls._build_payload(error)))
        cls._pending.add(task)
        task.add_done_callback(cls._pending.discard)
        return task

    @staticmethod
    async def _push(url: str, payload: dict) -> bool:
        for attempt in range(1, ReporterConfig.PUSH_MAX_RETRIES + 1):
            try:
                async with aiohttp.ClientSession() as session:
                    async with session.post(
                        url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=ReporterConfig.PUSH_TIMEOUT),
                    ) as response:
                        if response.status in (200, 201, 202, 204):
                            return True
                        logger.debug(
                            f"Attempt {attempt}: error report rejected: {response.status}"
                        )
            except Exception as e:
                logger.debug(f"Attempt {attempt}: error report failed: {e}")

            if attempt < ReporterConfig.PUSH_MAX_RETRIES:
                await asyncio.sleep(ReporterConfig.PUSH_RETRY_DELAY)

        return False
