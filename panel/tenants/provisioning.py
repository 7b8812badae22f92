"""
Tenant provisioning pipeline.

validate -> uniqueness check -> persist PENDING -> render -> submit -> ACTIVE | ERROR

Nothing is written before the PENDING record. Once that record exists, every
attempt ends with the tenant in ACTIVE or ERROR and a matching audit event.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import NamedTuple, Optional

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from stacks.client import StackSubmitter
from stacks.config import get_cert_resolver, get_default_mautic_version, get_traefik_network
from stacks.template import MauticStackConfig, render_stack_yaml

from .credentials import generate_secure_password
from .exceptions import ProvisioningError, TenantConflictError
from .models import Tenant, TenantEvent, TenantEventType, TenantStatus
from .naming import TenantNames, derive_names, validate_domain, validate_version

logger = logging.getLogger(__name__)

DB_PASSWORD_LENGTH = 32
NAME_MAX_LENGTH = 100
UNKNOWN_ERROR = "Unknown error creating stack"
CONFLICT_MESSAGE = "A tenant with this name or domain already exists"


@dataclass(frozen=True)
class ProvisioningOptions:
    traefik_network: str
    cert_resolver: str
    default_version: str

    @classmethod
    def from_settings(cls) -> ProvisioningOptions:
        return cls(
            traefik_network=get_traefik_network(),
            cert_resolver=get_cert_resolver(),
            default_version=get_default_mautic_version(),
        )


class ProvisioningRequest(NamedTuple):
    name: str
    domain: str
    mautic_version: str
    names: TenantNames


def clean_request(name, domain, mautic_version, default_version: str) -> ProvisioningRequest:
    """Validate raw input; raises ``ValidationError`` without touching storage."""
    name = name.strip() if isinstance(name, str) else ""
    domain = domain.strip() if isinstance(domain, str) else ""
    if not name or not domain:
        raise ValidationError("Name and domain are required")
    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(f"Name must be at most {NAME_MAX_LENGTH} characters")
    # Validate before lower-casing: some non-ASCII letters lower-case to ASCII.
    validate_domain(domain)
    if mautic_version is not None and not isinstance(mautic_version, str):
        raise ValidationError("Mautic version must be a string")
    version = (mautic_version or "").strip() or default_version
    validate_version(version)
    return ProvisioningRequest(name, domain.lower(), version, derive_names(name))


def record_event(tenant: Tenant, event_type: str, message: str) -> TenantEvent:
    return TenantEvent.objects.create(tenant=tenant, type=event_type, message=message)


def _transition(tenant: Tenant, status: str, error_message: Optional[str] = None) -> None:
    # Conditional update: only a PENDING tenant can be finalized.
    updated = Tenant.objects.filter(pk=tenant.pk, status=TenantStatus.PENDING).update(
        status=status, error_message=error_message, updated_at=timezone.now()
    )
    if not updated:
        raise RuntimeError(f"Tenant {tenant.pk} is no longer PENDING")
    tenant.refresh_from_db()


class TenantProvisioner:
    def __init__(self, submitter: StackSubmitter, options: ProvisioningOptions):
        self.submitter = submitter
        self.options = options

    def provision(self, name: str, domain: str, mautic_version: Optional[str] = None) -> Tenant:
        """Provision one tenant end to end.

        Raises ``ValidationError`` or ``TenantConflictError`` before anything is
        stored, and ``ProvisioningError`` (carrying the ERROR tenant) when the
        stack could not be created.
        """
        name, domain, version, names = clean_request(
            name, domain, mautic_version, self.options.default_version
        )

        if Tenant.objects.filter(Q(domain=domain) | Q(slug=names.slug)).exists():
            raise TenantConflictError(CONFLICT_MESSAGE)

        db_password = generate_secure_password(DB_PASSWORD_LENGTH)
        db_root_password = generate_secure_password(DB_PASSWORD_LENGTH)

        try:
            with transaction.atomic():
                tenant = Tenant.objects.create(
                    name=name,
                    slug=names.slug,
                    domain=domain,
                    stack_name=names.stack_name,
                    db_name=names.db_name,
                    db_user=names.db_user,
                    db_password=db_password,
                    mautic_version=version,
                    status=TenantStatus.PENDING,
                )
                record_event(
                    tenant,
                    TenantEventType.PROVISION_REQUESTED,
                    f"Tenant provisioning requested for {name}",
                )
        except IntegrityError as exc:
            # Lost the race against a concurrent request for the same slug/domain.
            raise TenantConflictError(CONFLICT_MESSAGE) from exc

        logger.info(f"Provisioning tenant {tenant.slug} ({tenant.domain}) as stack {tenant.stack_name}")

        try:
            descriptor = render_stack_yaml(
                MauticStackConfig(
                    stack_name=tenant.stack_name,
                    domain=domain,
                    db_name=tenant.db_name,
                    db_user=tenant.db_user,
                    db_password=db_password,
                    db_root_password=db_root_password,
                    mautic_version=version,
                    traefik_network=self.options.traefik_network,
                    cert_resolver=self.options.cert_resolver,
                )
            )
            self.submitter.create_stack(tenant.stack_name, descriptor)
        except Exception as exc:
            error_message = str(exc) or UNKNOWN_ERROR
            logger.error(f"Provisioning tenant {tenant.slug} failed: {error_message}")
            _transition(tenant, TenantStatus.ERROR, error_message)
            record_event(tenant, TenantEventType.ERROR, f"Failed to create stack: {error_message}")
            raise ProvisioningError(error_message, tenant=tenant) from exc

        _transition(tenant, TenantStatus.ACTIVE)
        record_event(
            tenant,
            TenantEventType.STACK_CREATED,
            f"Stack {tenant.stack_name} successfully created in Portainer",
        )
        logger.info(f"Tenant {tenant.slug} is active")
        return tenant
