ROOT_URLCONFS = {
    'seller': 'core.urls_seller',
    'facilitator': 'core.urls_facilitator',
    'all': 'core.urls',
}


def default_facilitator_url(service: str, seller_port: int, facilitator_port: int) -> str:
    """
    Verifier endpoint advertised in payment requirements when none is configured.

    A combined process (``all``) serves the verifier itself under ``/facilitator/``.
    """
    if service == 'all':
        return f'http://localhost:{seller_port}/facilitator/verify'
    return f'http://localhost:{facilitator_port}/verify'
