from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
from django.core.exceptions import ImproperlyConfigured

from .config import PortainerConfig

logger = logging.getLogger(__name__)

# Portainer stack types: 1 = Swarm, 2 = Compose.
SWARM_STACK_TYPE = 1


class OrchestrationError(Exception):
    """A Portainer call failed, either with an HTTP error status or in transport."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass(frozen=True)
class StackHandle:
    id: int
    name: str
    status: Optional[int] = None
    creation_date: Optional[int] = None
    update_date: Optional[int] = None

    @classmethod
    def from_api(cls, data: dict) -> StackHandle:
        return cls(
            id=data["Id"],
            name=data["Name"],
            status=data.get("Status"),
            creation_date=data.get("CreationDate"),
            update_date=data.get("UpdateDate"),
        )


class StackSubmitter(Protocol):
    def create_stack(self, name: str, descriptor: str) -> StackHandle: ...

    def get_stack(self, name: str) -> Optional[StackHandle]: ...

    def delete_stack(self, stack_id: int) -> None: ...


class PortainerClient:
    def __init__(self, config: PortainerConfig, transport: Optional[httpx.BaseTransport] = None):
        if not config.url or not config.api_token:
            raise ImproperlyConfigured(
                "Portainer configuration is missing. Set PORTAINER_URL and PORTAINER_API_TOKEN."
            )
        self.config = config
        self._http = httpx.Client(
            base_url=config.url,
            headers={
                "X-API-Key": config.api_token,
                "Content-Type": "application/json",
            },
            timeout=config.timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls) -> PortainerClient:
        return cls(PortainerConfig.from_settings())

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> PortainerClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(self, method: str, url: str, action: str, **kwargs) -> httpx.Response:
        try:
            response = self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error(f"Portainer request failed ({action}): {exc}")
            raise OrchestrationError(f"Failed to {action}: {exc}") from exc

        if response.is_error:
            body = response.text
            logger.error(f"Portainer returned {response.status_code} ({action}): {body}")
            raise OrchestrationError(
                f"Portainer API error ({response.status_code}): {body}",
                status_code=response.status_code,
                body=body,
            )
        return response

    def _decode(self, response: httpx.Response, action: str):
        try:
            return response.json()
        except ValueError as exc:
            raise OrchestrationError(
                f"Failed to {action}: unexpected response from Portainer",
                status_code=response.status_code,
                body=response.text,
            ) from exc

    def create_stack(self, name: str, descriptor: str) -> StackHandle:
        payload = {
            "Name": name,
            "SwarmID": self.config.swarm_id,
            "StackFileContent": descriptor,
        }
        params = {
            "type": SWARM_STACK_TYPE,
            "method": "string",
            "endpointId": self.config.endpoint_id,
        }
        response = self._request("POST", "/api/stacks", "create stack", params=params, json=payload)
        stack = StackHandle.from_api(self._decode(response, "create stack"))
        logger.info(f"Created Portainer stack {stack.name} (id={stack.id})")
        return stack

    def get_stack(self, name: str) -> Optional[StackHandle]:
        response = self._request("GET", "/api/stacks", "get stack")
        wanted = name.lower()
        for item in self._decode(response, "get stack"):
            if item.get("Name", "").lower() == wanted:
                return StackHandle.from_api(item)
        return None

    def delete_stack(self, stack_id: int) -> None:
        params = {"endpointId": self.config.endpoint_id}
        self._request("DELETE", f"/api/stacks/{stack_id}", "delete stack", params=params)
        logger.info(f"Deleted Portainer stack id={stack_id}")
