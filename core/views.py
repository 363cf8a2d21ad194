from django.conf import settings
from django.http import JsonResponse


def service_health(service: str, port: int, **extra) -> JsonResponse:
    return JsonResponse({'status': 'ok', 'service': service, **extra, 'port': port})


def home(request):
    """Index of the services mounted by this process."""
    services = {}
    if settings.X402_SERVICE in ('seller', 'all'):
        services['seller'] = {
            'inference': 'POST /inference',
            'health': 'GET /health',
        }
    if settings.X402_SERVICE in ('facilitator', 'all'):
        prefix = '/facilitator' if settings.X402_SERVICE == 'all' else ''
        services['facilitator'] = {
            'verify': f'POST {prefix}/verify',
            'verifications': f'GET {prefix}/verifications/<token>',
            'health': f'GET {prefix}/health',
        }
    return JsonResponse({'service': settings.X402_SERVICE, 'endpoints': services})
