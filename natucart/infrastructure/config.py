"""
Configuração dos serviços externos.

Cada gateway recebe um objeto de configuração explícito, montado a partir do
settings.py (que lê o .env via python-decouple) e validado na construção.
"""
from dataclasses import dataclass, field
from typing import Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

FREIGHT_CARRIERS = ('melhorenvio', 'frenet')


def _check_timeout(name: str, value):
    if not value or value <= 0:
        raise ImproperlyConfigured(f"{name} deve ser um número positivo de segundos.")


@dataclass(frozen=True)
class MercadoPagoConfig:
    access_token: str = ''
    public_key: str = ''
    webhook_secret: str = ''
    notification_url: str = ''
    base_url: str = 'https://api.mercadopago.com'
    timeout: int = 15
    lookup_timeout: int = 10

    def __post_init__(self):
        _check_timeout('PAYMENT_TIMEOUT', self.timeout)
        _check_timeout('PAYMENT_LOOKUP_TIMEOUT', self.lookup_timeout)

    @classmethod
    def from_settings(cls) -> 'MercadoPagoConfig':
        return cls(
            access_token=settings.MP_ACCESS_TOKEN,
            public_key=settings.MP_PUBLIC_KEY,
            webhook_secret=settings.MP_WEBHOOK_SECRET,
            notification_url=settings.MP_NOTIFICATION_URL,
            timeout=settings.PAYMENT_TIMEOUT,
            lookup_timeout=settings.PAYMENT_LOOKUP_TIMEOUT,
        )


@dataclass(frozen=True)
class AbacatePayConfig:
    api_key: str = ''
    base_url: str = 'https://api.abacatepay.com/v1'
    return_url: str = ''
    completion_url: str = ''
    timeout: int = 15

    def __post_init__(self):
        _check_timeout('PAYMENT_TIMEOUT', self.timeout)

    @classmethod
    def from_settings(cls) -> 'AbacatePayConfig':
        base = settings.STORE_BASE_URL.rstrip('/')
        return cls(
            api_key=settings.ABACATEPAY_API_KEY,
            base_url=settings.ABACATEPAY_BASE_URL,
            return_url=base,
            completion_url=f"{base}?payment=completed",
            timeout=settings.PAYMENT_TIMEOUT,
        )


@dataclass(frozen=True)
class SellerConfig:
    postal_code: str = '01001000'
    name: str = 'NATUCART'
    email: str = ''

    def __post_init__(self):
        if len(self.postal_code) != 8 or not self.postal_code.isdigit():
            raise ImproperlyConfigured("SELLER_POSTAL_CODE deve ter 8 dígitos.")

    @classmethod
    def from_settings(cls) -> 'SellerConfig':
        return cls(
            postal_code=settings.SELLER_POSTAL_CODE,
            name=settings.SELLER_NAME,
            email=settings.SELLER_EMAIL,
        )


@dataclass(frozen=True)
class MelhorEnvioConfig:
    token: str = ''
    base_url: str = 'https://melhorenvio.com.br/api/v2'
    seller: SellerConfig = field(default_factory=SellerConfig)
    services: str = '1,2,3,4,17'
    timeout: int = 30

    def __post_init__(self):
        _check_timeout('SHIPPING_TIMEOUT', self.timeout)

    @property
    def mock_mode(self) -> bool:
        return not self.token

    @classmethod
    def from_settings(cls) -> 'MelhorEnvioConfig':
        return cls(
            token=settings.MELHORENVIO_TOKEN,
            base_url=settings.MELHORENVIO_BASE_URL,
            seller=SellerConfig.from_settings(),
            timeout=settings.SHIPPING_TIMEOUT,
        )


@dataclass(frozen=True)
class FrenetConfig:
    token: str = ''
    password: str = ''
    base_url: str = 'https://api.frenet.com.br/shipping'
    seller_postal_code: str = '01001000'
    timeout: int = 30

    def __post_init__(self):
        _check_timeout('SHIPPING_TIMEOUT', self.timeout)

    @property
    def mock_mode(self) -> bool:
        return not self.token or not self.password

    @classmethod
    def from_settings(cls) -> 'FrenetConfig':
        return cls(
            token=settings.FRENET_TOKEN,
            password=settings.FRENET_PASSWORD,
            base_url=settings.FRENET_BASE_URL,
            seller_postal_code=settings.SELLER_POSTAL_CODE,
            timeout=settings.SHIPPING_TIMEOUT,
        )


@dataclass(frozen=True)
class RelayConfig:
    url: str = ''
    timeout: int = 30

    def __post_init__(self):
        _check_timeout('SHIPPING_TIMEOUT', self.timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    @classmethod
    def from_settings(cls) -> 'RelayConfig':
        return cls(url=settings.N8N_RELAY_URL, timeout=settings.SHIPPING_TIMEOUT)


@dataclass(frozen=True)
class StoreConfig:
    base_url: str = 'https://natucart.vercel.app'
    freight_carrier: str = 'melhorenvio'
    order_api_url: Optional[str] = None

    def __post_init__(self):
        if self.freight_carrier not in FREIGHT_CARRIERS:
            raise ImproperlyConfigured(
                f"FREIGHT_CARRIER inválido: {self.freight_carrier}. Use {' ou '.join(FREIGHT_CARRIERS)}."
            )

    @classmethod
    def from_settings(cls) -> 'StoreConfig':
        base = settings.STORE_BASE_URL.rstrip('/')
        return cls(
            base_url=base,
            freight_carrier=settings.FREIGHT_CARRIER,
            order_api_url=f"{base}/api/pedidos/consultar/",
        )
