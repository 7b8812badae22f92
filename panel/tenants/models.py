import uuid

from django.db import models


class TenantStatus(models.TextChoices):
    PENDING = "PENDING", "Pending"
    ACTIVE = "ACTIVE", "Active"
    ERROR = "ERROR", "Error"


class TenantEventType(models.TextChoices):
    PROVISION_REQUESTED = "PROVISION_REQUESTED", "Provision requested"
    STACK_CREATED = "STACK_CREATED", "Stack created"
    ERROR = "ERROR", "Error"


class Tenant(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100)
    slug = models.SlugField(max_length=100, unique=True)
    domain = models.CharField(max_length=253, unique=True)
    stack_name = models.CharField(max_length=63)
    db_name = models.CharField(max_length=64)
    db_user = models.CharField(max_length=32)
    db_password = models.CharField(max_length=128)
    mautic_version = models.CharField(max_length=128)
    status = models.CharField(
        max_length=20, choices=TenantStatus.choices, default=TenantStatus.PENDING
    )
    error_message = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return self.name


class TenantEvent(models.Model):
    tenant = models.ForeignKey(Tenant, on_delete=models.CASCADE, related_name="events")
    type = models.CharField(max_length=32, choices=TenantEventType.choices)
    message = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]

    def save(self, *args, **kwargs):
        # Audit rows are append-only.
        if self.pk is not None:
            raise ValueError("TenantEvent records are immutable")
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.tenant.slug}: {self.type}"
