from django.contrib.auth.models import User
from django.core.management.base import BaseCommand, CommandError

from tenants.credentials import generate_secure_password


class Command(BaseCommand):
    help = "Create an administrator account for the panel."

    def add_arguments(self, parser):
        parser.add_argument("email")
        parser.add_argument("password", nargs="?", default=None)

    def handle(self, *args, **options):
        email = options["email"].strip().lower()
        password = options["password"]
        generated = password is None
        if generated:
            password = generate_secure_password()

        if User.objects.filter(username=email).exists():
            raise CommandError(f"User with email {email} already exists")

        user = User.objects.create_user(
            username=email,
            email=email,
            password=password,
            is_staff=True,
        )

        self.stdout.write("Admin user created successfully:")
        self.stdout.write(f"Email: {user.email}")
        self.stdout.write("Role: ADMIN")
        self.stdout.write(f"ID: {user.id}")
        if generated:
            self.stdout.write(f"Password: {password} (save this, it won't be shown again!)")
