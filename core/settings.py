from environs import Env
from pathlib import Path

from x402sdk.tokens import DEFAULT_ACCEPTED_PREFIXES
from x402sdk.types import DEFAULT_REQUIREMENT_TTL_SECONDS

from core.services import ROOT_URLCONFS, default_facilitator_url

BASE_DIR = Path(__file__).resolve().parent.parent

env = Env()
env.read_env(BASE_DIR / '.env')

APP_ENV = env.str('APP_ENV', 'local')

SECRET_KEY = env.str('APP_SECRET_KEY', 'change-me')

DEBUG = APP_ENV != 'production'

ALLOWED_HOSTS = env.list('ALLOWED_HOSTS', default=['*'])

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'django.contrib.auth',
    'rest_framework',
    'core',
    'seller.apps.SellerAppConfig',
    'facilitator.apps.FacilitatorAppConfig',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

# seller, facilitator or all (seller at /, facilitator under /facilitator/)
X402_SERVICE = env.str('X402_SERVICE', 'all')

ROOT_URLCONF = ROOT_URLCONFS.get(X402_SERVICE, 'core.urls')

APPEND_SLASH = False

WSGI_APPLICATION = 'core.wsgi.application'

# All state is process-lifetime; no database.
DATABASES = {}


LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = False

USE_TZ = True


REST_FRAMEWORK = {
    'DEFAULT_RENDERER_CLASSES': [
        'rest_framework.renderers.JSONRenderer',
    ],
    'UNAUTHENTICATED_USER': None,
}

# Resource server
SELLER_PORT = env.int('SELLER_PORT', 4000)
FACILITATOR_PORT = env.int('FACILITATOR_PORT', 5000)
FACILITATOR_URL = env.str(
    'FACILITATOR_URL', default_facilitator_url(X402_SERVICE, SELLER_PORT, FACILITATOR_PORT))
PRODUCT_ID = env.str('PRODUCT_ID', 'api_inference_v1')
PRODUCT_AMOUNT = env.int('PRODUCT_AMOUNT', 1000)
PRODUCT_CURRENCY = env.str('PRODUCT_CURRENCY', 'USDC')
PRODUCT_CHAIN = env.str('PRODUCT_CHAIN', 'solana')
SELLER_WALLET_ADDRESS = env.str('SELLER_WALLET_ADDRESS', '')
X402_REQUIREMENT_TTL_SECONDS = env.int(
    'X402_REQUIREMENT_TTL_SECONDS', DEFAULT_REQUIREMENT_TTL_SECONDS)
X402_ACCEPTED_TOKEN_PREFIXES = env.list(
    'X402_ACCEPTED_TOKEN_PREFIXES', default=list(DEFAULT_ACCEPTED_PREFIXES))
X402_SELLER_VERIFY_TOKENS = env.bool('X402_SELLER_VERIFY_TOKENS', False)
X402_SELLER_LOOKUP_TIMEOUT_SECONDS = env.float('X402_SELLER_LOOKUP_TIMEOUT_SECONDS', 5.0)

# Verifier
FACILITATOR_MODE = env.str('FACILITATOR_MODE', 'mock')
SOLANA_RPC_URL = env.str('SOLANA_RPC_URL', 'https://api.devnet.solana.com')
SOLANA_RPC_TIMEOUT_SECONDS = env.float('SOLANA_RPC_TIMEOUT_SECONDS', 10.0)
X402_ENFORCE_REQUIREMENT_EXPIRY = env.bool('X402_ENFORCE_REQUIREMENT_EXPIRY', False)

# Launcher
LAUNCHER_NUM_SELLERS = env.int('LAUNCHER_NUM_SELLERS', 3)
LAUNCHER_BASE_PORT = env.int('LAUNCHER_BASE_PORT', 4000)
