import logging
from typing import Any, Protocol

import httpx

from originsweep.config import Settings


logger = logging.getLogger(__name__)


class FetchError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, response_body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class AnalysisClient(Protocol):
    async def smart_analyze(self, origin: str, company_id: str) -> Any:
        ...


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or None


class SmartAnalyzeClient:
    """Single-call client for the monitoring smart-analyze endpoint.

    Retries are the orchestrator's job; every failure surfaces as ``FetchError``.
    """

    def __init__(
        self,
        *,
        base_url: str,
        auth_token: str,
        timeout_seconds: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._headers = {"Content-Type": "application/json", "Authorization": auth_token}
        self._timeout = httpx.Timeout(timeout_seconds)
        self._http_client = http_client
        self._owns_client = http_client is None

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmartAnalyzeClient":
        return cls(
            base_url=settings.api_base_url,
            auth_token=settings.api_auth_token,
            timeout_seconds=settings.fetch_timeout_seconds,
        )

    async def __aenter__(self) -> "SmartAnalyzeClient":
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def smart_analyze(self, origin: str, company_id: str) -> Any:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True

        url = f"{self.base_url}/monitoring/smart-analyze/{origin}/{company_id}"
        logger.debug("fetching smart analyze", extra={"origin": origin, "company_id": company_id})
        try:
            response = await self._http_client.get(url, headers=self._headers, timeout=self._timeout)
        except httpx.TimeoutException as exc:
            raise FetchError(f"timeout after {self._timeout.read}s fetching {company_id}") from exc
        except httpx.RequestError as exc:
            raise FetchError(f"request failed for {company_id}: {exc}") from exc

        if response.is_error:
            body = _response_body(response)
            logger.warning(
                "smart analyze request rejected",
                extra={"origin": origin, "company_id": company_id, "status_code": response.status_code},
            )
            raise FetchError(
                f"Request failed with status code {response.status_code}",
                status_code=response.status_code,
                response_body=body,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise FetchError(f"invalid JSON payload for {company_id}", status_code=response.status_code) from exc
