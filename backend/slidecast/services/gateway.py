from __future__ import annotations

import logging
from time import perf_counter
from typing import Any

import requests

from slidecast.errors import ServiceNotConfiguredError, ServiceResponseError, ServiceUnavailableError
from slidecast.services.health import ExternalService, HealthFlagStore


logger = logging.getLogger("slidecast.gateway")


def truncate(text: str, limit: int = 200) -> str:
    raw = str(text or "")
    if len(raw) <= limit:
        return raw
    return raw[:limit].rstrip() + "..."


class ServiceGateway:
    """Single choke point for LLM and TTS HTTP calls.

    Every failure trips the calling service's health flag before it propagates; every
    success clears that same service's flag. Flags of other services are never touched.
    """

    def __init__(
        self,
        health: HealthFlagStore,
        *,
        timeout_seconds: float = 120,
        http: requests.Session | None = None,
    ):
        self.health = health
        self.timeout_seconds = timeout_seconds
        self.http = http or requests.Session()

    def post_json(
        self,
        service: ExternalService,
        url: str,
        *,
        api_key: str | None,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        response = self._post(service, url, api_key=api_key, payload=payload, headers=headers)
        try:
            data = response.json()
        except ValueError as exc:
            raise ServiceResponseError(
                service.value,
                f"{service.label} returned a non-JSON response",
                status_code=response.status_code,
            ) from exc
        self.health.clear(service)
        return data if isinstance(data, dict) else {"value": data}

    def post_bytes(
        self,
        service: ExternalService,
        url: str,
        *,
        api_key: str | None,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> bytes:
        response = self._post(service, url, api_key=api_key, payload=payload, headers=headers)
        self.health.clear(service)
        return response.content

    def _post(
        self,
        service: ExternalService,
        url: str,
        *,
        api_key: str | None,
        payload: dict[str, Any],
        headers: dict[str, str] | None,
    ) -> requests.Response:
        if not api_key:
            self.health.trip(service, "API key not configured")
            raise ServiceNotConfiguredError(service.value, f"{service.label} API key not configured")

        request_headers = {"Content-Type": "application/json", **self._auth_headers(service, api_key)}
        request_headers.update(headers or {})

        started = perf_counter()
        try:
            response = self.http.post(url, json=payload, headers=request_headers, timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            message = str(exc) or exc.__class__.__name__
            self.health.trip(service, message)
            raise ServiceUnavailableError(service.value, f"{service.label} request failed: {message}") from exc

        elapsed = perf_counter() - started
        if not response.ok:
            message = f"{service.label} responded with {response.status_code}: {truncate(response.text)}"
            self.health.trip(service, message)
            logger.warning("service=%s status=%s duration=%.2fs", service.value, response.status_code, elapsed)
            raise ServiceResponseError(service.value, message, status_code=response.status_code)

        logger.info("service=%s status=%s duration=%.2fs", service.value, response.status_code, elapsed)
        return response

    @staticmethod
    def _auth_headers(service: ExternalService, api_key: str) -> dict[str, str]:
        if service is ExternalService.ELEVENLABS:
            return {"xi-api-key": api_key}
        return {"Authorization": f"Bearer {api_key}"}
