# app/clients/resend.py

import httpx
from app.core.config import settings
import logging

logger = logging.getLogger(__name__)

class ResendClient:
    """
    Async client for the Resend transactional email REST API.
    Authenticates with a bearer API key.
    """
    def __init__(self, base_url: str, api_key: str):
        self.base_url = base_url
        self.api_key = api_key
        timeouts = httpx.Timeout(10.0, read=20.0)
        self.async_client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeouts
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def send_email(self, payload: dict) -> dict:
        """
        POST /emails. Returns the JSON response ({"id": ...}).
        Raises on network or HTTP (4xx/5xx) errors.
        """
        try:
            response = await self.async_client.post("/emails", json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.RequestError as e:
            logger.error(f"Network error during POST request to {e.request.url!r}.", exc_info=True)
            raise
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error during POST request to {e.request.url!r}: {e.response.text}", exc_info=True)
            raise

# Singleton
resend_client = ResendClient(
    base_url=settings.RESEND_API_URL,
    api_key=settings.RESEND_API_KEY
)
