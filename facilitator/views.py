"""
HTTP surface of the verifier.
"""
from django.conf import settings
from loguru import logger
from rest_framework import status
from rest_framework.exceptions import ParseError
from rest_framework.response import Response
from rest_framework.views import APIView

from core.views import service_health
from facilitator.admission import supported_modes
from facilitator.services import get_verifier
from facilitator.verifier import INVALID_REQUEST


class VerifyView(APIView):
    """
    Verify a payment proof and mint a verification token.

    200 with ``{ok: true, verification, settled, timestamp}`` on success,
    400 with ``{ok: false, error, detail}`` otherwise.
    """
    authentication_classes: list = []
    permission_classes: list = []

    def post(self, request, *args, **kwargs):
        try:
            data = request.data
        except ParseError as exc:
            logger.info('verify request body rejected: {}', exc.detail)
            return Response(
                {'ok': False, 'error': INVALID_REQUEST, 'detail': str(exc.detail)},
                status=status.HTTP_400_BAD_REQUEST,
            )

        result = get_verifier().verify(data)
        return Response(
            result.to_wire(),
            status=status.HTTP_200_OK if result.ok else status.HTTP_400_BAD_REQUEST,
        )


class VerificationLookupView(APIView):
    """Look up a previously minted verification token."""
    authentication_classes: list = []
    permission_classes: list = []

    def get(self, request, token, *args, **kwargs):
        record = get_verifier().lookup(token)
        if record is None:
            return Response(
                {'ok': False, 'error': 'unknown_token', 'detail': f'Unknown verification token: {token}'},
                status=status.HTTP_404_NOT_FOUND,
            )
        return Response({'ok': True, **record.to_wire()}, status=status.HTTP_200_OK)


def health(request):
    return service_health('mock-facilitator', settings.FACILITATOR_PORT,
                          mode=settings.FACILITATOR_MODE, supported_modes=supported_modes())
