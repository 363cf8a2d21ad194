from django.apps import AppConfig


class FacilitatorAppConfig(AppConfig):
    name = 'facilitator'
    verbose_name = 'x402 verifier'

    def ready(self):
        from facilitator.services import connect_signals
        connect_signals()
