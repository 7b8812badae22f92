from __future__ import annotations

from dataclasses import dataclass

from django.conf import settings


@dataclass(frozen=True)
class PortainerConfig:
    url: str
    api_token: str
    endpoint_id: str = "1"
    swarm_id: str = "swarm-cluster"
    timeout: float = 30.0

    @classmethod
    def from_settings(cls) -> PortainerConfig:
        return cls(
            url=settings.PORTAINER_URL.rstrip("/"),
            api_token=settings.PORTAINER_API_TOKEN,
            endpoint_id=str(settings.PORTAINER_ENDPOINT_ID),
            swarm_id=settings.PORTAINER_SWARM_ID,
            timeout=float(settings.PORTAINER_TIMEOUT),
        )


def get_traefik_network() -> str:
    return settings.TRAEFIK_NETWORK_NAME


def get_cert_resolver() -> str:
    return settings.TRAEFIK_TLS_RESOLVER_NAME


def get_default_mautic_version() -> str:
    return settings.MAUTIC_DEFAULT_VERSION


def get_available_mautic_versions() -> list[str]:
    return list(settings.MAUTIC_AVAILABLE_VERSIONS)
