from django.apps import AppConfig


class SellerAppConfig(AppConfig):
    name = 'seller'
    verbose_name = 'x402 resource server'

    def ready(self):
        from seller.services import connect_signals
        connect_signals()
