"""
Configurações para o projeto Natucart.
"""

import os
from decouple import config, Csv
from pathlib import Path

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent


# ====================================================================
# CONFIGURAÇÕES BÁSICAS
# ====================================================================

# A SECRET_KEY deve ser lida de uma variável de ambiente por segurança.
SECRET_KEY = config('SECRET_KEY', default='django-insecure-default-key-for-development')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = config('DEBUG', default=False, cast=bool)

ALLOWED_HOSTS = config('ALLOWED_HOSTS', default='localhost,127.0.0.1,testserver', cast=Csv())


# ====================================================================
# APLICAÇÕES INSTALADAS
# ====================================================================

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # Aplicações de Terceiros (Primeiro)
    'rest_framework',
    'drf_spectacular',

    # Nossas Aplicações (Nessa ordem para referências de Models)
    'natucart.core.apps.CoreConfig', # Entidades e Lógica Pura
    'natucart.infrastructure.apps.InfrastructureConfig', # Models, Repositórios e Gateways
    'natucart.presentation.apps.PresentationConfig', # Views e Serializers da API
]


# ====================================================================
# MIDDLEWARE E TEMPLATES
# ====================================================================

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'natucart.urls'

# Apenas o Admin e as páginas de documentação da API usam templates.
TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'natucart.wsgi.application'


# ====================================================================
# CONFIGURAÇÃO DO BANCO DE DADOS
# ====================================================================

DATABASE_ENGINE = config('DATABASE_ENGINE', default='django.db.backends.sqlite3')

if DATABASE_ENGINE.endswith('sqlite3'):
    DATABASES = {
        'default': {
            'ENGINE': DATABASE_ENGINE,
            'NAME': config('DATABASE_NAME', default=str(BASE_DIR / 'db.sqlite3')),
        }
    }
else:
    # PostgreSQL em produção (psycopg2)
    DATABASES = {
        'default': {
            'ENGINE': DATABASE_ENGINE,
            'NAME': config('DATABASE_NAME', default='natucart'),
            'USER': config('DATABASE_USER', default='natucart'),
            'PASSWORD': config('DATABASE_PASSWORD', default=''),
            'HOST': config('DATABASE_HOST', default='localhost'),
            'PORT': config('DATABASE_PORT', default=5432, cast=int),
        }
    }

# O carrinho e o pedido pendente ficam na sessão do navegador.
SESSION_ENGINE = 'django.contrib.sessions.backends.db'


# ====================================================================
# INTERNACIONALIZAÇÃO
# ====================================================================

LANGUAGE_CODE = 'pt-br'

TIME_ZONE = 'America/Sao_Paulo'

USE_I18N = True

USE_TZ = True


# ====================================================================
# ARQUIVOS ESTÁTICOS
# ====================================================================

STATIC_URL = '/static/'
STATIC_ROOT = os.path.join(BASE_DIR, 'staticfiles')

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# ====================================================================
# CONFIGURAÇÕES DO DJANGO REST FRAMEWORK (DRF) E DOCS (SPECTACULAR)
# ====================================================================

SPECTACULAR_SETTINGS = {
    'TITLE': 'API do Natucart',
    'DESCRIPTION': 'Carrinho, frete, pagamentos e webhooks da loja Natucart.',
    'VERSION': '1.0.0',
    'SERVE_INCLUDE_SCHEMA': False,
}

REST_FRAMEWORK = {
    # A loja não tem login: os endpoints são públicos e o estado do comprador fica na sessão.
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.AllowAny',
    ],
    'UNAUTHENTICATED_USER': None,
    'DEFAULT_SCHEMA_CLASS': 'drf_spectacular.openapi.AutoSchema',
}


# ====================================================================
# CONFIGURAÇÕES DE SERVIÇOS EXTERNOS (Pagamento, Frete e Automação)
# ====================================================================

# URL pública da loja (usada nas back_urls e no redirecionamento pós-pagamento)
STORE_BASE_URL = config('STORE_BASE_URL', default='https://natucart.vercel.app')

# Mercado Pago (NUNCA exponha o Access Token no frontend)
MP_ACCESS_TOKEN = config('MP_ACCESS_TOKEN', default='')
MP_PUBLIC_KEY = config('MP_PUBLIC_KEY', default='')
MP_WEBHOOK_SECRET = config('MP_WEBHOOK_SECRET', default='')
MP_NOTIFICATION_URL = config('MP_NOTIFICATION_URL', default='')

# AbacatePay
ABACATEPAY_API_KEY = config('ABACATEPAY_API_KEY', default='')
ABACATEPAY_BASE_URL = config('ABACATEPAY_BASE_URL', default='https://api.abacatepay.com/v1')

# Transportadora usada na cotação: 'melhorenvio' ou 'frenet'
FREIGHT_CARRIER = config('FREIGHT_CARRIER', default='melhorenvio')

# Melhor Envio
MELHORENVIO_TOKEN = config('MELHORENVIO_TOKEN', default='')
MELHORENVIO_BASE_URL = config('MELHORENVIO_BASE_URL', default='https://melhorenvio.com.br/api/v2')

# Frenet
FRENET_TOKEN = config('FRENET_TOKEN', default='')
FRENET_PASSWORD = config('FRENET_PASSWORD', default='')
FRENET_BASE_URL = config('FRENET_BASE_URL', default='https://api.frenet.com.br/shipping')

# Remetente
SELLER_POSTAL_CODE = config('SELLER_POSTAL_CODE', default='01001000')
SELLER_NAME = config('SELLER_NAME', default='NATUCART')
SELLER_EMAIL = config('SELLER_EMAIL', default='alladistribuidora@gmail.com')

# Webhook de automação (n8n) que recebe cópia das notificações de pagamento
N8N_RELAY_URL = config('N8N_RELAY_URL', default='')

# Timeouts (segundos) das chamadas externas
PAYMENT_TIMEOUT = config('PAYMENT_TIMEOUT', default=15, cast=int)
PAYMENT_LOOKUP_TIMEOUT = config('PAYMENT_LOOKUP_TIMEOUT', default=10, cast=int)
SHIPPING_TIMEOUT = config('SHIPPING_TIMEOUT', default=30, cast=int)


# ====================================================================
# CONFIGURAÇÕES DE LOGGING
# ====================================================================

LOG_FILE = config('LOG_FILE', default=str(BASE_DIR / 'logs' / 'natucart.log'))
os.makedirs(os.path.dirname(LOG_FILE), exist_ok=True)

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'handlers': {
        'file': {
            'level': config('LOG_LEVEL', default='INFO'),
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': LOG_FILE,
            'maxBytes': 1024 * 1024 * 5,  # 5 MB
            'backupCount': 5,
            'formatter': 'verbose',
        },
        'console': {
            'level': 'WARNING',
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {name} {process:d} {thread:d} {message}',
            'style': '{',
        },
    },
    'loggers': {
        'django': {
            'handlers': ['file'],
            'level': 'WARNING',
            'propagate': True,
        },
        'natucart': {
            'handlers': ['file', 'console'],
            'level': config('LOG_LEVEL', default='INFO'),
            'propagate': False,
        },
    },
}
