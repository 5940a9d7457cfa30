"""Wiring of transport, token manager and executor from one configuration."""

from __future__ import annotations

import logging
from typing import Optional

from interop.auth import TokenManager
from interop.config import InteropConfig, ValidationError
from interop.events import EventBus
from interop.executor import RequestExecutor
from interop.resources import InteropRequests, ThirdpartyRequests
from interop.transport import AiohttpTransport, Transport

logger = logging.getLogger(__name__)


class InteropClient:
    """
    Outbound client assembled from an ``InteropConfig``.

    Example:
        config = InteropConfig.from_yaml("interop.yaml")
        async with InteropClient(config) as client:
            await client.requests.get_parties("MSISDN", "123456789")
    """

    def __init__(
        self,
        config: InteropConfig,
        *,
        transport: Optional[Transport] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        errors = config.validate()
        if errors:
            raise ValidationError("; ".join(errors))

        self.config = config
        self.events = events or EventBus()
        self.transport: Transport = transport or AiohttpTransport.from_config(config)

        self.token_manager: Optional[TokenManager] = None
        if config.auth.static_token.get() or config.auth.token_endpoint.get():
            self.token_manager = TokenManager.from_config(config, self.transport, events=self.events)

        self.executor = RequestExecutor.from_config(config, self.transport, token_manager=self.token_manager)
        self.requests = InteropRequests(self.executor)
        self.thirdparty = ThirdpartyRequests(self.executor)

    async def start(self) -> None:
        if self.token_manager is not None:
            await self.token_manager.start()
        logger.info(
            "interop client started for %s (dialect %s)",
            self.executor.dfsp_id, self.executor.dialect.value,
        )

    async def close(self) -> None:
        if self.token_manager is not None:
            await self.token_manager.stop()
        await self.transport.close()

    async def __aenter__(self) -> "InteropClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
