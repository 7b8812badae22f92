import json
import logging

from django.contrib.auth import authenticate, login, logout
from django.core.exceptions import ImproperlyConfigured, ValidationError
from django.db.models import Prefetch
from django.http import JsonResponse
from django.views.decorators.csrf import ensure_csrf_cookie
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from stacks.client import PortainerClient
from stacks.config import get_available_mautic_versions, get_default_mautic_version
from tenants.exceptions import ProvisioningError, TenantConflictError
from tenants.models import Tenant, TenantEvent
from tenants.provisioning import ProvisioningOptions, TenantProvisioner, clean_request

logger = logging.getLogger(__name__)

ROLE_ADMIN = 'ADMIN'
ROLE_CLIENT = 'CLIENT'
RECENT_EVENTS = 5


def _parse_json_body(request) -> dict:
    try:
        data = json.loads(request.body or b'{}')
    except json.JSONDecodeError:
        raise ValidationError('Invalid JSON')
    if not isinstance(data, dict):
        raise ValidationError('Invalid JSON')
    return data


def _role(user) -> str:
    return ROLE_ADMIN if user.is_staff else ROLE_CLIENT


def _error(message: str, status: int, **extra) -> JsonResponse:
    return JsonResponse({'error': message, **extra}, status=status)


def _not_authenticated() -> JsonResponse:
    return _error('Not authenticated', 401)


def event_to_dict(event: TenantEvent) -> dict:
    return {
        'id': event.id,
        'type': event.type,
        'message': event.message,
        'createdAt': event.created_at.isoformat(),
    }


def tenant_to_dict(tenant: Tenant, events=None, include_secrets: bool = False) -> dict:
    data = {
        'id': str(tenant.id),
        'name': tenant.name,
        'slug': tenant.slug,
        'domain': tenant.domain,
        'stackName': tenant.stack_name,
        'dbName': tenant.db_name,
        'dbUser': tenant.db_user,
        'mauticVersion': tenant.mautic_version,
        'status': tenant.status,
        'errorMessage': tenant.error_message,
        'createdAt': tenant.created_at.isoformat(),
        'updatedAt': tenant.updated_at.isoformat(),
    }
    if include_secrets:
        data['dbPassword'] = tenant.db_password
    if events is not None:
        data['events'] = [event_to_dict(e) for e in events]
    return data


@ensure_csrf_cookie
@require_http_methods(['GET', 'POST'])
def login_view(request):
    if request.method == 'GET':
        return JsonResponse({'authenticated': request.user.is_authenticated})

    try:
        data = _parse_json_body(request)
    except ValidationError:
        return JsonResponse({'success': False, 'error': 'Invalid JSON'}, status=400)

    user = authenticate(request, username=data.get('username'), password=data.get('password'))
    if user is None:
        return JsonResponse({'success': False, 'error': 'Invalid credentials'}, status=401)

    login(request, user)
    return JsonResponse({'success': True})


@require_POST
def logout_view(request):
    logout(request)
    return JsonResponse({'success': True})


@require_GET
def me_view(request):
    user = request.user
    if not user.is_authenticated:
        return _not_authenticated()
    return JsonResponse({
        'id': user.id,
        'username': user.username,
        'email': user.email,
        'role': _role(user),
    })


@require_GET
def versions_view(request):
    if not request.user.is_authenticated:
        return _not_authenticated()
    return JsonResponse({
        'default': get_default_mautic_version(),
        'versions': get_available_mautic_versions(),
    })


@require_http_methods(['GET', 'POST'])
def tenants_view(request):
    if not request.user.is_authenticated:
        return _not_authenticated()
    if request.method == 'POST':
        return _create_tenant(request)

    try:
        tenants = Tenant.objects.prefetch_related(
            Prefetch('events', queryset=TenantEvent.objects.order_by('-created_at', '-id'))
        )
        data = [tenant_to_dict(t, events=list(t.events.all())[:RECENT_EVENTS]) for t in tenants]
    except Exception:
        logger.exception('Get tenants error')
        return _error('Internal server error', 500)
    return JsonResponse({'tenants': data})


def _create_tenant(request):
    if _role(request.user) != ROLE_ADMIN:
        return _error('Only administrators can create tenants', 403)

    options = ProvisioningOptions.from_settings()
    try:
        data = _parse_json_body(request)
        clean_request(
            data.get('name'), data.get('domain'), data.get('mauticVersion'), options.default_version
        )
    except ValidationError as e:
        return _error(' '.join(e.messages), 400)

    try:
        client = PortainerClient.from_settings()
    except ImproperlyConfigured as e:
        logger.error(f'Create tenant error: {e}')
        return _error('Internal server error', 500)

    provisioner = TenantProvisioner(client, options)
    try:
        with client:
            tenant = provisioner.provision(
                name=data.get('name'),
                domain=data.get('domain'),
                mautic_version=data.get('mauticVersion'),
            )
    except ValidationError as e:
        return _error(' '.join(e.messages), 400)
    except TenantConflictError as e:
        return _error(str(e), 409)
    except ProvisioningError as e:
        return _error(
            'Failed to provision tenant',
            500,
            details=str(e),
            tenant=tenant_to_dict(e.tenant),
        )
    except Exception:
        logger.exception('Create tenant error')
        return _error('Internal server error', 500)

    return JsonResponse({'tenant': tenant_to_dict(tenant)}, status=201)


@require_GET
def tenant_detail_view(request, tenant_id):
    if not request.user.is_authenticated:
        return _not_authenticated()

    try:
        tenant = Tenant.objects.get(pk=tenant_id)
    except Tenant.DoesNotExist:
        return _error('Tenant not found', 404)

    events = tenant.events.order_by('-created_at', '-id')
    include_secrets = _role(request.user) == ROLE_ADMIN
    return JsonResponse({'tenant': tenant_to_dict(tenant, events=events, include_secrets=include_secrets)})
