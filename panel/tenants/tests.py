import json
import re
import uuid
from io import StringIO
from unittest import mock

import httpx
import yaml
from django.contrib.auth.models import User
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse

from stacks.client import OrchestrationError, PortainerClient, StackHandle
from stacks.config import PortainerConfig
from tenants.credentials import PASSWORD_ALPHABET, generate_secure_password
from tenants.exceptions import ProvisioningError, TenantConflictError
from tenants.models import Tenant, TenantEvent, TenantEventType, TenantStatus
from tenants.naming import (
    DB_NAME_MAX_LENGTH,
    DB_USER_MAX_LENGTH,
    STACK_NAME_MAX_LENGTH,
    derive_names,
    generate_slug,
    is_valid_domain,
    validate_version,
)
from tenants.provisioning import ProvisioningOptions, TenantProvisioner, _transition


OPTIONS = ProvisioningOptions(
    traefik_network='traefik-public',
    cert_resolver='letsencrypt',
    default_version='5.2.4',
)


class FakeSubmitter:
    def __init__(self, error=None):
        self.error = error
        self.created = []
        self.status_at_submit = None

    def create_stack(self, name, descriptor):
        self.created.append((name, descriptor))
        self.status_at_submit = Tenant.objects.get(stack_name=name).status
        if self.error is not None:
            raise self.error
        return StackHandle(id=len(self.created), name=name)

    def get_stack(self, name):
        for index, (created, _) in enumerate(self.created, start=1):
            if created.lower() == name.lower():
                return StackHandle(id=index, name=created)
        return None

    def delete_stack(self, stack_id):
        pass


def event_types(tenant):
    return list(tenant.events.values_list('type', flat=True))


class NamingTests(SimpleTestCase):
    def test_slug(self):
        self.assertEqual(generate_slug('Acme Corp'), 'acme-corp')
        self.assertEqual(generate_slug('  --Hello,   World!! '), 'hello-world')
        self.assertEqual(generate_slug('Acme!'), generate_slug('Acme?'))

    def test_slug_is_deterministic(self):
        for name in ['Acme Corp', 'Ünïcode Tenant 42', 'a_b.c']:
            self.assertEqual(generate_slug(name), generate_slug(name))
            self.assertEqual(derive_names(name), derive_names(name))

    def test_derive_names(self):
        names = derive_names('Acme Corp')
        self.assertEqual(names.slug, 'acme-corp')
        self.assertEqual(names.stack_name, 'mautic-acme-corp')
        self.assertEqual(names.db_name, 'mautic_acme_corp')
        self.assertEqual(names.db_user, 'mautic_acme_corp_user')

    def test_long_names_respect_limits_and_alphabets(self):
        for name in ['x' * 100, 'Tenant ' * 14, 'a-b ' * 25]:
            names = derive_names(name)
            self.assertLessEqual(len(names.stack_name), STACK_NAME_MAX_LENGTH)
            self.assertLessEqual(len(names.db_name), DB_NAME_MAX_LENGTH)
            self.assertLessEqual(len(names.db_user), DB_USER_MAX_LENGTH)
            self.assertRegex(names.stack_name, r'^[a-z0-9-]+$')
            self.assertRegex(names.db_name, r'^[a-z0-9_]+$')
            self.assertRegex(names.db_user, r'^[a-z0-9_]+$')

    def test_truncation_does_not_collide(self):
        a = derive_names('a' * 80 + 'b')
        b = derive_names('a' * 80 + 'c')
        self.assertNotEqual(a.stack_name, b.stack_name)
        self.assertNotEqual(a.db_name, b.db_name)
        self.assertNotEqual(a.db_user, b.db_user)

    def test_name_without_alphanumerics_is_rejected(self):
        with self.assertRaises(ValidationError):
            derive_names('!!!')

    def test_slug_longer_than_column_is_rejected(self):
        # "İ".lower() is two characters.
        with self.assertRaises(ValidationError):
            derive_names('İ' * 100)
        self.assertEqual(len(derive_names('a' * 100).slug), 100)

    def test_valid_domains(self):
        for domain in [
            'example.com',
            'mautic-acme.example.com',
            'a.example.com',
            'A.Example.COM',
            'xn--bcher-kva.example',
            'a1.b2.c3.d4',
        ]:
            self.assertTrue(is_valid_domain(domain), domain)

    def test_invalid_domains(self):
        for domain in [
            '',
            'bad domain!',
            'under_score.example.com',
            'https://example.com',
            'example.com/path',
            'a..example.com',
            '.example.com',
            'example.com.',
            '-example.com',
            'example-.com',
            'example.com\n',
            'a' * 64 + '.com',
            ('a' * 60 + '.') * 5 + 'com',
            # Non-ASCII letters that case-fold to ASCII.
            'ſ.example.com',
            'examıple.com',
            '\u212aelvin.example.com',
            'café.example.com',
        ]:
            self.assertFalse(is_valid_domain(domain), domain)

    def test_version_grammar(self):
        validate_version('5.2.4')
        validate_version('latest')
        for version in ['', '5.2; rm -rf /', '-5.2', 'a' * 129]:
            with self.assertRaises(ValidationError):
                validate_version(version)


class CredentialTests(SimpleTestCase):
    def test_length_and_alphabet(self):
        self.assertEqual(len(generate_secure_password()), 24)
        password = generate_secure_password(32)
        self.assertEqual(len(password), 32)
        self.assertTrue(set(password) <= set(PASSWORD_ALPHABET))

    def test_calls_are_independent(self):
        self.assertNotEqual(generate_secure_password(32), generate_secure_password(32))

    def test_invalid_length(self):
        with self.assertRaises(ValueError):
            generate_secure_password(0)

    def test_uses_secrets_module(self):
        with mock.patch('tenants.credentials.secrets.choice', return_value='Z') as choice:
            self.assertEqual(generate_secure_password(4), 'ZZZZ')
        self.assertEqual(choice.call_count, 4)


class ProvisioningTests(TestCase):
    def provision(self, name='Acme Corp', domain='mautic-acme.example.com', version=None, submitter=None):
        submitter = submitter or FakeSubmitter()
        return TenantProvisioner(submitter, OPTIONS).provision(name, domain, version), submitter

    def test_successful_provisioning(self):
        tenant, submitter = self.provision()

        self.assertEqual(tenant.slug, 'acme-corp')
        self.assertEqual(tenant.stack_name, 'mautic-acme-corp')
        self.assertEqual(tenant.db_name, 'mautic_acme_corp')
        self.assertEqual(tenant.db_user, 'mautic_acme_corp_user')
        self.assertEqual(tenant.mautic_version, '5.2.4')
        self.assertEqual(tenant.status, TenantStatus.ACTIVE)
        self.assertIsNone(tenant.error_message)
        self.assertEqual(len(tenant.db_password), 32)
        self.assertEqual(submitter.status_at_submit, TenantStatus.PENDING)
        self.assertEqual(event_types(tenant), [
            TenantEventType.PROVISION_REQUESTED,
            TenantEventType.STACK_CREATED,
        ])
        self.assertEqual(Tenant.objects.get(pk=tenant.pk).status, TenantStatus.ACTIVE)

    def test_descriptor_submitted(self):
        tenant, submitter = self.provision(version='5.1.0')
        name, descriptor = submitter.created[0]
        self.assertEqual(name, 'mautic-acme-corp')

        stack = yaml.safe_load(descriptor)
        db_env = stack['services']['db']['environment']
        self.assertEqual(db_env['MYSQL_PASSWORD'], tenant.db_password)
        self.assertEqual(len(db_env['MYSQL_ROOT_PASSWORD']), 32)
        self.assertNotEqual(db_env['MYSQL_ROOT_PASSWORD'], db_env['MYSQL_PASSWORD'])
        self.assertEqual(stack['services']['mautic']['image'], 'mautic/mautic:5.1.0-apache')
        self.assertEqual(
            stack['services']['mautic']['deploy']['labels']['traefik.http.routers.mautic-acme-corp.rule'],
            'Host(`mautic-acme.example.com`)',
        )
        self.assertEqual(tenant.mautic_version, '5.1.0')

    def test_remote_failure_moves_tenant_to_error(self):
        error = OrchestrationError('Portainer API error (500): disk full', status_code=500, body='disk full')
        with self.assertRaises(ProvisioningError) as ctx:
            self.provision(submitter=FakeSubmitter(error=error))

        tenant = Tenant.objects.get(slug='acme-corp')
        self.assertEqual(ctx.exception.tenant.pk, tenant.pk)
        self.assertIs(ctx.exception.__cause__, error)
        self.assertEqual(tenant.status, TenantStatus.ERROR)
        self.assertIn('disk full', tenant.error_message)
        self.assertEqual(event_types(tenant), [
            TenantEventType.PROVISION_REQUESTED,
            TenantEventType.ERROR,
        ])
        self.assertEqual(
            tenant.events.last().message,
            'Failed to create stack: Portainer API error (500): disk full',
        )

    def test_error_without_message_uses_fallback(self):
        with self.assertRaises(ProvisioningError):
            self.provision(submitter=FakeSubmitter(error=RuntimeError()))
        tenant = Tenant.objects.get(slug='acme-corp')
        self.assertEqual(tenant.error_message, 'Unknown error creating stack')

    def test_invalid_domain_leaves_no_trace(self):
        submitter = FakeSubmitter()
        with self.assertRaises(ValidationError):
            self.provision(domain='bad domain!', submitter=submitter)
        self.assertFalse(Tenant.objects.exists())
        self.assertFalse(TenantEvent.objects.exists())
        self.assertEqual(submitter.created, [])

    def test_missing_fields_are_rejected(self):
        for name, domain in [('', 'a.example.com'), ('Acme', ''), (None, 'a.example.com'), ('Acme', None)]:
            with self.assertRaises(ValidationError):
                self.provision(name=name, domain=domain)
        self.assertFalse(Tenant.objects.exists())

    def test_invalid_version_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.provision(version='5.2; rm -rf /')
        self.assertFalse(Tenant.objects.exists())

    def test_domain_is_checked_before_lowercasing(self):
        for domain in ['examıple.com', '\u212aelvin.example.com', 'ſ.example.com']:
            with self.assertRaises(ValidationError):
                self.provision(domain=domain)
        self.assertFalse(Tenant.objects.exists())

    def test_uppercase_domain_is_stored_lowercase(self):
        tenant, _ = self.provision(domain='Mautic-Acme.Example.COM')
        self.assertEqual(tenant.domain, 'mautic-acme.example.com')

    def test_name_with_overlong_slug_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.provision(name='İ' * 100)
        self.assertFalse(Tenant.objects.exists())

    def test_database_error_while_recording_request_propagates(self):
        submitter = FakeSubmitter()
        with mock.patch('tenants.provisioning.record_event', side_effect=DatabaseError('disk I/O error')):
            with self.assertRaises(DatabaseError):
                self.provision(submitter=submitter)
        self.assertFalse(Tenant.objects.exists())
        self.assertFalse(TenantEvent.objects.exists())
        self.assertEqual(submitter.created, [])

    def test_domain_conflict(self):
        self.provision()
        with self.assertRaises(TenantConflictError):
            self.provision(name='Other Corp', domain='Mautic-Acme.Example.com')
        self.assertEqual(Tenant.objects.count(), 1)
        self.assertEqual(
            TenantEvent.objects.filter(type=TenantEventType.PROVISION_REQUESTED).count(), 1
        )

    def test_slug_conflict(self):
        self.provision(name='Acme!', domain='one.example.com')
        with self.assertRaises(TenantConflictError):
            self.provision(name='Acme?', domain='two.example.com')
        self.assertEqual(Tenant.objects.count(), 1)

    def test_error_tenant_blocks_new_request(self):
        with self.assertRaises(ProvisioningError):
            self.provision(submitter=FakeSubmitter(error=OrchestrationError('boom')))
        with self.assertRaises(TenantConflictError):
            self.provision()

    def test_unique_constraint_is_the_conflict_signal(self):
        self.provision()
        with mock.patch('tenants.provisioning.Tenant.objects.filter') as filter_:
            filter_.return_value.exists.return_value = False
            with self.assertRaises(TenantConflictError) as ctx:
                self.provision(name='Acme Corp', domain='other.example.com')
        self.assertIsNotNone(ctx.exception.__cause__)
        self.assertEqual(Tenant.objects.count(), 1)
        self.assertEqual(TenantEvent.objects.count(), 2)

    def test_finished_tenant_cannot_transition_again(self):
        tenant, _ = self.provision()
        with self.assertRaises(RuntimeError):
            _transition(tenant, TenantStatus.ERROR, 'late failure')
        tenant.refresh_from_db()
        self.assertEqual(tenant.status, TenantStatus.ACTIVE)
        self.assertIsNone(tenant.error_message)

    def test_events_are_immutable(self):
        tenant, _ = self.provision()
        event = tenant.events.first()
        event.message = 'rewritten'
        with self.assertRaises(ValueError):
            event.save()

    @override_settings(
        TRAEFIK_NETWORK_NAME='edge',
        TRAEFIK_TLS_RESOLVER_NAME='acme',
        MAUTIC_DEFAULT_VERSION='5.1.1',
    )
    def test_options_from_settings(self):
        self.assertEqual(ProvisioningOptions.from_settings(), ProvisioningOptions(
            traefik_network='edge',
            cert_resolver='acme',
            default_version='5.1.1',
        ))


def portainer_client(status=200, body=None, text=None):
    def handler(request):
        if text is not None:
            return httpx.Response(status, text=text)
        return httpx.Response(status, json=body if body is not None else {'Id': 1, 'Name': 'stack'})

    config = PortainerConfig(url='https://portainer.example.com', api_token='token')
    return PortainerClient(config, transport=httpx.MockTransport(handler))


class TenantApiTests(TestCase):
    def setUp(self):
        self.admin = User.objects.create_user(username='admin@example.com', password='password123', is_staff=True)
        self.user = User.objects.create_user(username='client@example.com', password='password123')
        self.url = reverse('tenant-list')

    def post_tenant(self, payload, client=None):
        client = client or portainer_client()
        with mock.patch('tenants.views.PortainerClient.from_settings', return_value=client):
            return self.client.post(self.url, data=json.dumps(payload), content_type='application/json')

    def test_requires_authentication(self):
        self.assertEqual(self.client.get(self.url).status_code, 401)
        response = self.post_tenant({'name': 'Acme Corp', 'domain': 'acme.example.com'})
        self.assertEqual(response.status_code, 401)
        self.assertFalse(Tenant.objects.exists())

    def test_only_admins_can_create(self):
        self.client.force_login(self.user)
        response = self.post_tenant({'name': 'Acme Corp', 'domain': 'acme.example.com'})
        self.assertEqual(response.status_code, 403)
        self.assertFalse(Tenant.objects.exists())

    def test_create_tenant(self):
        self.client.force_login(self.admin)
        response = self.post_tenant({'name': 'Acme Corp', 'domain': 'mautic-acme.example.com'})
        self.assertEqual(response.status_code, 201)
        tenant = response.json()['tenant']
        self.assertEqual(tenant['slug'], 'acme-corp')
        self.assertEqual(tenant['stackName'], 'mautic-acme-corp')
        self.assertEqual(tenant['status'], 'ACTIVE')
        self.assertNotIn('dbPassword', tenant)

    def test_create_tenant_remote_failure(self):
        self.client.force_login(self.admin)
        response = self.post_tenant(
            {'name': 'Acme Corp', 'domain': 'mautic-acme.example.com'},
            client=portainer_client(status=500, text='disk full'),
        )
        self.assertEqual(response.status_code, 500)
        data = response.json()
        self.assertEqual(data['error'], 'Failed to provision tenant')
        self.assertIn('disk full', data['details'])
        self.assertEqual(data['tenant']['status'], 'ERROR')
        self.assertIn('disk full', data['tenant']['errorMessage'])
        tenant = Tenant.objects.get(slug='acme-corp')
        self.assertEqual(event_types(tenant), [TenantEventType.PROVISION_REQUESTED, TenantEventType.ERROR])

    def test_create_tenant_invalid_domain(self):
        self.client.force_login(self.admin)
        response = self.post_tenant({'name': 'Acme Corp', 'domain': 'bad domain!'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('Invalid domain format', response.json()['error'])
        self.assertEqual(self.client.get(self.url).json()['tenants'], [])

    def test_create_tenant_missing_fields(self):
        self.client.force_login(self.admin)
        response = self.post_tenant({'name': 'Acme Corp'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Name and domain are required')

    def test_create_tenant_invalid_json(self):
        self.client.force_login(self.admin)
        response = self.client.post(self.url, data='{not json', content_type='application/json')
        self.assertEqual(response.status_code, 400)

    def test_create_tenant_conflict(self):
        self.client.force_login(self.admin)
        self.post_tenant({'name': 'Acme Corp', 'domain': 'mautic-acme.example.com'})
        response = self.post_tenant({'name': 'Acme Corp', 'domain': 'other.example.com'})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['error'], 'A tenant with this name or domain already exists')
        self.assertEqual(Tenant.objects.count(), 1)

    @override_settings(PORTAINER_URL='', PORTAINER_API_TOKEN='')
    def test_missing_portainer_configuration(self):
        self.client.force_login(self.admin)
        response = self.client.post(
            self.url,
            data=json.dumps({'name': 'Acme Corp', 'domain': 'mautic-acme.example.com'}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {'error': 'Internal server error'})
        self.assertFalse(Tenant.objects.exists())

    @override_settings(PORTAINER_URL='', PORTAINER_API_TOKEN='')
    def test_invalid_input_is_rejected_before_portainer_configuration(self):
        self.client.force_login(self.admin)
        response = self.client.post(
            self.url,
            data=json.dumps({'name': 'Acme Corp', 'domain': 'bad domain!'}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn('Invalid domain format', response.json()['error'])
        self.assertFalse(Tenant.objects.exists())

    def test_database_error_returns_generic_500(self):
        self.client.force_login(self.admin)
        with mock.patch('tenants.provisioning.record_event', side_effect=DatabaseError('disk I/O error')):
            response = self.post_tenant({'name': 'Acme Corp', 'domain': 'mautic-acme.example.com'})
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {'error': 'Internal server error'})
        self.assertFalse(Tenant.objects.exists())
        self.assertFalse(TenantEvent.objects.exists())

    def test_list_includes_recent_events(self):
        tenant = Tenant.objects.create(
            name='Acme Corp', slug='acme-corp', domain='acme.example.com',
            stack_name='mautic-acme-corp', db_name='mautic_acme_corp', db_user='mautic_acme_corp_user',
            db_password='secret', mautic_version='5.2.4',
        )
        for i in range(7):
            TenantEvent.objects.create(tenant=tenant, type=TenantEventType.ERROR, message=f'event {i}')

        self.client.force_login(self.user)
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, 200)
        tenants = response.json()['tenants']
        self.assertEqual(len(tenants), 1)
        self.assertEqual([e['message'] for e in tenants[0]['events']],
                         ['event 6', 'event 5', 'event 4', 'event 3', 'event 2'])
        self.assertNotIn('dbPassword', tenants[0])

    def test_detail(self):
        self.client.force_login(self.admin)
        self.post_tenant({'name': 'Acme Corp', 'domain': 'mautic-acme.example.com'})
        tenant = Tenant.objects.get(slug='acme-corp')

        response = self.client.get(reverse('tenant-detail', args=[tenant.id]))
        self.assertEqual(response.status_code, 200)
        data = response.json()['tenant']
        self.assertEqual(data['dbPassword'], tenant.db_password)
        self.assertEqual([e['type'] for e in data['events']], ['STACK_CREATED', 'PROVISION_REQUESTED'])

        self.client.force_login(self.user)
        data = self.client.get(reverse('tenant-detail', args=[tenant.id])).json()['tenant']
        self.assertNotIn('dbPassword', data)

    def test_detail_not_found(self):
        self.client.force_login(self.user)
        response = self.client.get(reverse('tenant-detail', args=[uuid.uuid4()]))
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'Tenant not found')

    @override_settings(MAUTIC_DEFAULT_VERSION='5.2.4', MAUTIC_AVAILABLE_VERSIONS=['5.2.4', '5.2.3'])
    def test_versions(self):
        self.client.force_login(self.user)
        response = self.client.get(reverse('mautic-versions'))
        self.assertEqual(response.json(), {'default': '5.2.4', 'versions': ['5.2.4', '5.2.3']})


class AuthViewTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username='alice@example.com', password='password123')

    def login(self, username, password):
        return self.client.post(
            reverse('login'),
            data=json.dumps({'username': username, 'password': password}),
            content_type='application/json',
        )

    def test_login_and_me(self):
        response = self.login('alice@example.com', 'password123')
        self.assertEqual(response.json(), {'success': True})
        me = self.client.get(reverse('me')).json()
        self.assertEqual(me['username'], 'alice@example.com')
        self.assertEqual(me['role'], 'CLIENT')

    def test_login_invalid_credentials(self):
        response = self.login('alice@example.com', 'wrong')
        self.assertEqual(response.status_code, 401)
        self.assertEqual(self.client.get(reverse('me')).status_code, 401)

    def test_logout(self):
        self.client.force_login(self.user)
        response = self.client.post(reverse('logout'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get(reverse('me')).status_code, 401)

    def test_session_cookie_name(self):
        self.login('alice@example.com', 'password123')
        self.assertIn('mautic-panel-session', self.client.cookies)


class CreateAdminCommandTests(TestCase):
    def test_creates_staff_user(self):
        out = StringIO()
        call_command('create_admin', 'Admin@Example.com', 's3cret-pass', stdout=out)
        user = User.objects.get(username='admin@example.com')
        self.assertTrue(user.is_staff)
        self.assertTrue(user.check_password('s3cret-pass'))
        self.assertIn('Admin user created successfully', out.getvalue())

    def test_generates_password_when_omitted(self):
        out = StringIO()
        call_command('create_admin', 'ops@example.com', stdout=out)
        match = re.search(r'Password: (\S+)', out.getvalue())
        self.assertIsNotNone(match)
        self.assertTrue(User.objects.get(username='ops@example.com').check_password(match.group(1)))

    def test_existing_user(self):
        User.objects.create_user(username='admin@example.com', password='x')
        with self.assertRaises(CommandError):
            call_command('create_admin', 'admin@example.com', 'other', stdout=StringIO())
