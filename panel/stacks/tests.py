import json

import httpx
import yaml
from django.core.exceptions import ImproperlyConfigured
from django.test import SimpleTestCase, override_settings

from stacks.client import OrchestrationError, PortainerClient, StackHandle
from stacks.config import PortainerConfig, get_available_mautic_versions, get_default_mautic_version
from stacks.template import INTERNAL_NETWORK, MauticStackConfig, build_stack, render_stack_yaml


def make_config(**overrides):
    values = {
        'stack_name': 'mautic-acme-corp',
        'domain': 'mautic-acme.example.com',
        'db_name': 'mautic_acme_corp',
        'db_user': 'mautic_acme_corp_user',
        'db_password': 'user-secret',
        'db_root_password': 'root-secret',
        'mautic_version': '5.2.4',
        'traefik_network': 'traefik-public',
        'cert_resolver': 'letsencrypt',
    }
    values.update(overrides)
    return MauticStackConfig(**values)


def _router_names(stack):
    labels = stack['services']['mautic']['deploy']['labels']
    return {key.split('.')[3] for key in labels if key.startswith('traefik.http.')}


class StackTemplateTests(SimpleTestCase):
    def test_render_is_deterministic(self):
        self.assertEqual(render_stack_yaml(make_config()), render_stack_yaml(make_config()))

    def test_render_has_no_anchors_or_aliases(self):
        text = render_stack_yaml(make_config())
        self.assertNotIn('&id', text)
        self.assertNotIn('*id', text)

    def test_database_service(self):
        stack = yaml.safe_load(render_stack_yaml(make_config()))
        db = stack['services']['db']
        self.assertEqual(db['image'], 'mysql:8')
        self.assertEqual(db['environment'], {
            'MYSQL_ROOT_PASSWORD': 'root-secret',
            'MYSQL_DATABASE': 'mautic_acme_corp',
            'MYSQL_USER': 'mautic_acme_corp_user',
            'MYSQL_PASSWORD': 'user-secret',
        })
        self.assertEqual(db['volumes'], ['mautic-acme-corp_db_data:/var/lib/mysql'])
        self.assertEqual(db['networks'], ['internal'])
        self.assertEqual(db['deploy']['placement']['constraints'], ['node.role == worker'])
        self.assertEqual(db['deploy']['restart_policy'], {
            'condition': 'on-failure',
            'delay': '5s',
            'max_attempts': 3,
        })

    def test_mautic_service(self):
        stack = yaml.safe_load(render_stack_yaml(make_config(mautic_version='5.1.0')))
        app = stack['services']['mautic']
        self.assertEqual(app['image'], 'mautic/mautic:5.1.0-apache')
        self.assertEqual(app['depends_on'], ['db'])
        self.assertEqual(app['environment']['MAUTIC_DB_HOST'], 'db')
        self.assertEqual(app['environment']['MAUTIC_DB_PASSWORD'], 'user-secret')
        self.assertEqual(app['environment']['MAUTIC_URL'], 'https://mautic-acme.example.com')
        self.assertEqual(app['volumes'], ['mautic-acme-corp_mautic_data:/var/www/html'])
        self.assertEqual(app['networks'], ['internal', 'traefik-public'])

    def test_routing_labels(self):
        stack = yaml.safe_load(render_stack_yaml(make_config()))
        labels = stack['services']['mautic']['deploy']['labels']
        self.assertEqual(labels['traefik.enable'], 'true')
        self.assertEqual(labels['traefik.docker.network'], 'traefik-public')
        self.assertEqual(
            labels['traefik.http.routers.mautic-acme-corp.rule'],
            'Host(`mautic-acme.example.com`)',
        )
        self.assertEqual(labels['traefik.http.routers.mautic-acme-corp.entrypoints'], 'websecure')
        self.assertEqual(labels['traefik.http.routers.mautic-acme-corp.tls'], 'true')
        self.assertEqual(labels['traefik.http.routers.mautic-acme-corp.tls.certresolver'], 'letsencrypt')
        self.assertEqual(labels['traefik.http.services.mautic-acme-corp.loadbalancer.server.port'], '80')

    def test_networks_and_volumes(self):
        stack = yaml.safe_load(render_stack_yaml(make_config(traefik_network='edge')))
        self.assertEqual(stack['networks'], {
            'internal': {'driver': 'overlay'},
            'edge': {'external': True},
        })
        self.assertEqual(stack['volumes'], {
            'mautic-acme-corp_db_data': {},
            'mautic-acme-corp_mautic_data': {},
        })

    def test_stack_name_is_sanitized_in_identifiers(self):
        stack = build_stack(make_config(stack_name='Mautic_Acme Corp'))
        self.assertEqual(set(stack['volumes']), {'mautic-acme-corp_db_data', 'mautic-acme-corp_mautic_data'})
        self.assertEqual(_router_names(stack), {'mautic-acme-corp'})

    def test_two_tenants_do_not_share_volumes_or_routers(self):
        a = build_stack(make_config(stack_name='mautic-a', domain='a.example.com'))
        b = build_stack(make_config(stack_name='mautic-b', domain='b.example.com'))
        self.assertFalse(set(a['volumes']) & set(b['volumes']))
        self.assertFalse(_router_names(a) & _router_names(b))

    def test_only_external_network_is_shared_and_internal_is_stack_local(self):
        a = build_stack(make_config(stack_name='mautic-a', domain='a.example.com'))
        b = build_stack(make_config(stack_name='mautic-b', domain='b.example.com'))
        for stack in (a, b):
            external = {n for n, spec in stack['networks'].items() if spec.get('external')}
            owned = {n: spec for n, spec in stack['networks'].items() if not spec.get('external')}
            self.assertEqual(external, {'traefik-public'})
            # Docker prefixes non-external networks with the stack name on deploy.
            self.assertEqual(owned, {INTERNAL_NETWORK: {'driver': 'overlay'}})

    @override_settings(MAUTIC_DEFAULT_VERSION='5.1.1', MAUTIC_AVAILABLE_VERSIONS=['5.1.1', '5.1.0'])
    def test_version_settings(self):
        self.assertEqual(get_default_mautic_version(), '5.1.1')
        self.assertEqual(get_available_mautic_versions(), ['5.1.1', '5.1.0'])


class PortainerClientTests(SimpleTestCase):
    def setUp(self):
        self.config = PortainerConfig(
            url='https://portainer.example.com',
            api_token='token-123',
            endpoint_id='7',
            swarm_id='swarm-xyz',
        )
        self.requests = []

    def make_client(self, handler):
        def recording_handler(request):
            self.requests.append(request)
            return handler(request)

        return PortainerClient(self.config, transport=httpx.MockTransport(recording_handler))

    def test_missing_url_is_fatal(self):
        with self.assertRaises(ImproperlyConfigured):
            PortainerClient(PortainerConfig(url='', api_token='token'))

    def test_missing_token_is_fatal(self):
        with self.assertRaises(ImproperlyConfigured):
            PortainerClient(PortainerConfig(url='https://portainer.example.com', api_token=''))

    @override_settings(
        PORTAINER_URL='https://portainer.example.com/',
        PORTAINER_API_TOKEN='abc',
        PORTAINER_ENDPOINT_ID='3',
        PORTAINER_SWARM_ID='swarm-1',
        PORTAINER_TIMEOUT=5,
    )
    def test_config_from_settings(self):
        config = PortainerConfig.from_settings()
        self.assertEqual(config, PortainerConfig(
            url='https://portainer.example.com',
            api_token='abc',
            endpoint_id='3',
            swarm_id='swarm-1',
            timeout=5.0,
        ))

    def test_create_stack(self):
        def handler(request):
            return httpx.Response(200, json={
                'Id': 12,
                'Name': 'mautic-acme-corp',
                'Status': 1,
                'CreationDate': 1700000000,
                'UpdateDate': 0,
            })

        with self.make_client(handler) as client:
            stack = client.create_stack('mautic-acme-corp', 'version: "3.8"\n')

        self.assertEqual(stack, StackHandle(
            id=12, name='mautic-acme-corp', status=1, creation_date=1700000000, update_date=0,
        ))
        request = self.requests[0]
        self.assertEqual(request.method, 'POST')
        self.assertEqual(request.url.path, '/api/stacks')
        self.assertEqual(request.url.params['type'], '1')
        self.assertEqual(request.url.params['method'], 'string')
        self.assertEqual(request.url.params['endpointId'], '7')
        self.assertEqual(request.headers['X-API-Key'], 'token-123')
        self.assertEqual(json.loads(request.content), {
            'Name': 'mautic-acme-corp',
            'SwarmID': 'swarm-xyz',
            'StackFileContent': 'version: "3.8"\n',
        })

    def test_create_stack_error_status(self):
        client = self.make_client(lambda request: httpx.Response(500, text='disk full'))
        with self.assertRaises(OrchestrationError) as ctx:
            client.create_stack('mautic-acme-corp', 'x')
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.body, 'disk full')
        self.assertIn('disk full', str(ctx.exception))
        self.assertEqual(len(self.requests), 1)

    def test_create_stack_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError('connection refused', request=request)

        client = self.make_client(handler)
        with self.assertRaises(OrchestrationError) as ctx:
            client.create_stack('mautic-acme-corp', 'x')
        self.assertIsNone(ctx.exception.status_code)
        self.assertIn('connection refused', str(ctx.exception))

    def test_create_stack_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout('timed out', request=request)

        client = self.make_client(handler)
        with self.assertRaises(OrchestrationError):
            client.create_stack('mautic-acme-corp', 'x')

    def test_create_stack_unexpected_body(self):
        client = self.make_client(lambda request: httpx.Response(200, text='<html>'))
        with self.assertRaises(OrchestrationError):
            client.create_stack('mautic-acme-corp', 'x')

    def test_get_stack_matches_case_insensitively(self):
        stacks = [
            {'Id': 1, 'Name': 'other', 'Status': 1, 'CreationDate': 1, 'UpdateDate': 1},
            {'Id': 2, 'Name': 'MAUTIC-ACME-CORP', 'Status': 2, 'CreationDate': 1, 'UpdateDate': 2},
        ]
        client = self.make_client(lambda request: httpx.Response(200, json=stacks))
        stack = client.get_stack('mautic-acme-corp')
        self.assertEqual(stack.id, 2)
        self.assertEqual(self.requests[0].method, 'GET')
        self.assertEqual(self.requests[0].url.path, '/api/stacks')

    def test_get_stack_not_found(self):
        client = self.make_client(lambda request: httpx.Response(200, json=[]))
        self.assertIsNone(client.get_stack('mautic-acme-corp'))

    def test_get_stack_error_status(self):
        client = self.make_client(lambda request: httpx.Response(401, text='unauthorized'))
        with self.assertRaises(OrchestrationError) as ctx:
            client.get_stack('mautic-acme-corp')
        self.assertEqual(ctx.exception.status_code, 401)

    def test_delete_stack(self):
        client = self.make_client(lambda request: httpx.Response(204))
        self.assertIsNone(client.delete_stack(5))
        request = self.requests[0]
        self.assertEqual(request.method, 'DELETE')
        self.assertEqual(request.url.path, '/api/stacks/5')
        self.assertEqual(request.url.params['endpointId'], '7')

    def test_delete_stack_error_status(self):
        client = self.make_client(lambda request: httpx.Response(404, text='stack not found'))
        with self.assertRaises(OrchestrationError) as ctx:
            client.delete_stack(5)
        self.assertEqual(ctx.exception.status_code, 404)
