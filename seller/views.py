"""
Protected inference endpoint of the resource server.
"""
from django.conf import settings
from loguru import logger
from rest_framework import status
from rest_framework.exceptions import ParseError
from rest_framework.response import Response
from rest_framework.views import APIView

from x402sdk.types import PAYMENT_HEADER

from core.views import service_health
from seller.gate import AcceptDecision
from seller.services import get_gate


class InferenceView(APIView):
    """
    Pay-per-request inference.

    No ``X-PAYMENT`` header: 402 with fresh payment requirements.
    Header present but rejected (including empty): 403.
    Header accepted: 200 with the inference result.
    """
    authentication_classes: list = []
    permission_classes: list = []

    def post(self, request, *args, **kwargs):
        gate = get_gate()
        token = request.headers.get(PAYMENT_HEADER)

        if token is None:
            requirement = gate.issue_requirement()
            logger.info('[402] Payment required for request. ID: {}', requirement.requirement_id)
            return Response(
                {
                    'error': 'payment_required',
                    'message': 'Payment is required to access this resource',
                    'payment_requirements': requirement.to_wire(),
                },
                status=status.HTTP_402_PAYMENT_REQUIRED,
            )

        if gate.accept_token(token) is AcceptDecision.REJECT:
            logger.info('[403] Invalid payment token')
            return Response(
                {
                    'error': 'invalid_payment',
                    'message': 'The provided payment token is invalid',
                },
                status=status.HTTP_403_FORBIDDEN,
            )

        try:
            body = request.data
        except ParseError as exc:
            return Response(
                {'error': 'invalid_request', 'message': str(exc.detail)},
                status=status.HTTP_400_BAD_REQUEST,
            )

        result = gate.serve(body)
        logger.info('[200] Request authorized. Processing: {}', result['result'])
        return Response(result, status=status.HTTP_200_OK)


def health(request):
    return service_health('mock-seller', settings.SELLER_PORT)
