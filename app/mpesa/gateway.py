"""Process-wide M-Pesa client: one HTTP connection pool, one token cache, one initiator."""

from typing import Optional

import httpx
from fastapi import Request

from app.core.config import Settings, settings
from app.mpesa.stk_push import StkPushInitiator
from app.mpesa.token_manager import AccessTokenManager


class MpesaGateway:
    def __init__(
        self,
        client: httpx.AsyncClient,
        token_manager: AccessTokenManager,
        initiator: StkPushInitiator,
    ) -> None:
        self.client = client
        self.token_manager = token_manager
        self.initiator = initiator

    @classmethod
    def from_settings(
        cls,
        config: Settings = settings,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "MpesaGateway":
        if client is None:
            client = httpx.AsyncClient(
                base_url=config.mpesa_base_url,
                timeout=httpx.Timeout(config.mpesa_timeout_seconds),
                headers={"Accept": "application/json"},
            )
        token_manager = AccessTokenManager(
            client,
            config.mpesa_consumer_key,
            config.mpesa_consumer_secret,
            safety_margin_seconds=config.mpesa_token_safety_margin_seconds,
        )
        initiator = StkPushInitiator(
            client,
            token_manager,
            shortcode=config.mpesa_shortcode,
            passkey=config.mpesa_passkey,
            callback_url=config.mpesa_callback_url,
            transaction_type=config.mpesa_transaction_type,
            country_code=config.phone_country_code,
        )
        return cls(client, token_manager, initiator)

    async def aclose(self) -> None:
        await self.client.aclose()


def get_mpesa_gateway(request: Request) -> MpesaGateway:
    return request.app.state.mpesa_gateway
