from django.db import migrations, models
import django.db.models.deletion
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Tenant",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=100)),
                ("slug", models.SlugField(max_length=100, unique=True)),
                ("domain", models.CharField(max_length=253, unique=True)),
                ("stack_name", models.CharField(max_length=63)),
                ("db_name", models.CharField(max_length=64)),
                ("db_user", models.CharField(max_length=32)),
                ("db_password", models.CharField(max_length=128)),
                ("mautic_version", models.CharField(max_length=128)),
                ("status", models.CharField(choices=[("PENDING", "Pending"), ("ACTIVE", "Active"), ("ERROR", "Error")], default="PENDING", max_length=20)),
                ("error_message", models.TextField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"ordering": ["-created_at"]},
        ),
        migrations.CreateModel(
            name="TenantEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("type", models.CharField(choices=[("PROVISION_REQUESTED", "Provision requested"), ("STACK_CREATED", "Stack created"), ("ERROR", "Error")], max_length=32)),
                ("message", models.TextField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("tenant", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="events", to="tenants.tenant")),
            ],
            options={"ordering": ["created_at", "id"]},
        ),
    ]
