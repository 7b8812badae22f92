"""
Compose descriptor for a single Mautic tenant.

The rendered YAML is submitted verbatim to Portainer as the stack file.
Rendering is deterministic: identical configs give byte-identical output.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict

import yaml

COMPOSE_VERSION = "3.8"
DB_IMAGE = "mysql:8"
MAUTIC_IMAGE = "mautic/mautic"
INTERNAL_NETWORK = "internal"
ENTRYPOINT = "websecure"

_UNSAFE_RE = re.compile(r"[^a-z0-9-]")


@dataclass(frozen=True)
class MauticStackConfig:
    stack_name: str
    domain: str
    db_name: str
    db_user: str
    db_password: str
    db_root_password: str
    mautic_version: str
    traefik_network: str
    cert_resolver: str


class _NoAliasDumper(yaml.SafeDumper):
    def ignore_aliases(self, data):
        return True


def _deploy_defaults() -> Dict[str, Any]:
    return {
        "placement": {"constraints": ["node.role == worker"]},
        "restart_policy": {
            "condition": "on-failure",
            "delay": "5s",
            "max_attempts": 3,
        },
    }


def build_stack(config: MauticStackConfig) -> Dict[str, Any]:
    """Return the compose document as a plain mapping."""
    stack = _UNSAFE_RE.sub("-", config.stack_name.lower())
    network = config.traefik_network
    db_volume = f"{stack}_db_data"
    app_volume = f"{stack}_mautic_data"
    router = f"traefik.http.routers.{stack}"

    mautic_deploy = _deploy_defaults()
    mautic_deploy["labels"] = {
        "traefik.enable": "true",
        "traefik.docker.network": network,
        f"{router}.rule": f"Host(`{config.domain}`)",
        f"{router}.entrypoints": ENTRYPOINT,
        f"{router}.tls": "true",
        f"{router}.tls.certresolver": config.cert_resolver,
        f"traefik.http.services.{stack}.loadbalancer.server.port": "80",
    }

    return {
        "version": COMPOSE_VERSION,
        "services": {
            "db": {
                "image": DB_IMAGE,
                "environment": {
                    "MYSQL_ROOT_PASSWORD": config.db_root_password,
                    "MYSQL_DATABASE": config.db_name,
                    "MYSQL_USER": config.db_user,
                    "MYSQL_PASSWORD": config.db_password,
                },
                "volumes": [f"{db_volume}:/var/lib/mysql"],
                "networks": [INTERNAL_NETWORK],
                "deploy": _deploy_defaults(),
            },
            "mautic": {
                "image": f"{MAUTIC_IMAGE}:{config.mautic_version}-apache",
                "depends_on": ["db"],
                "environment": {
                    "MAUTIC_DB_HOST": "db",
                    "MAUTIC_DB_NAME": config.db_name,
                    "MAUTIC_DB_USER": config.db_user,
                    "MAUTIC_DB_PASSWORD": config.db_password,
                    "MAUTIC_RUN_CRON_JOBS": "true",
                    "MAUTIC_TRUSTED_PROXIES": "0.0.0.0/0",
                    "MAUTIC_URL": f"https://{config.domain}",
                },
                "volumes": [f"{app_volume}:/var/www/html"],
                "networks": [INTERNAL_NETWORK, network],
                "deploy": mautic_deploy,
            },
        },
        "networks": {
            INTERNAL_NETWORK: {"driver": "overlay"},
            network: {"external": True},
        },
        "volumes": {
            db_volume: {},
            app_volume: {},
        },
    }


def render_stack_yaml(config: MauticStackConfig) -> str:
    return yaml.dump(
        build_stack(config),
        Dumper=_NoAliasDumper,
        default_flow_style=False,
        sort_keys=True,
        indent=2,
        width=float("inf"),
    )
