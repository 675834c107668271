# natucart/core/dependency_injection.py
"""
Módulo de Injeção de Dependência (DI).
Responsável por instanciar os Use Cases com suas dependências de Repositórios/Gateways
concretos da camada de Infraestrutura.

As configurações são lidas a cada chamada, para que override_settings valha nos testes.
"""
import logging

from natucart.infrastructure.config import (
    AbacatePayConfig,
    FrenetConfig,
    MelhorEnvioConfig,
    MercadoPagoConfig,
    RelayConfig,
    StoreConfig,
)
from natucart.infrastructure.gateways import (
    AbacatePayGateway,
    FrenetGateway,
    MelhorEnvioGateway,
    MercadoPagoCardTokenizer,
    MercadoPagoGateway,
    WorkflowRelayGateway,
)
from natucart.infrastructure.repositories import OrderRepositoryDjango
from natucart.infrastructure.storage import SessionCartStorage, SessionPendingOrderCache

from .cart import CartStore
from .checkout import (
    ChargePaymentUseCase,
    CreatePreferenceUseCase,
    LocalPaymentBackend,
    PaymentOrchestrator,
)
from .use_cases import (
    FreightQuoter,
    FulfillmentTrigger,
    GetOrderUseCase,
    OrderDraftBuilder,
    ProcessPaymentNotificationUseCase,
)

logger = logging.getLogger('natucart')


# ====================================================================
# Repositórios e Gateways Concretos
# ====================================================================

def get_order_repository() -> OrderRepositoryDjango:
    return OrderRepositoryDjango()


def get_payment_gateway() -> MercadoPagoGateway:
    return MercadoPagoGateway(MercadoPagoConfig.from_settings())


def get_freight_carrier():
    """Transportadora de cotação escolhida por FREIGHT_CARRIER."""
    if StoreConfig.from_settings().freight_carrier == FrenetGateway.name:
        return FrenetGateway(FrenetConfig.from_settings())
    return MelhorEnvioGateway(MelhorEnvioConfig.from_settings())


def get_shipment_carrier() -> MelhorEnvioGateway:
    # Envios e etiquetas sempre pelo Melhor Envio
    return MelhorEnvioGateway(MelhorEnvioConfig.from_settings())


def get_abacatepay_gateway() -> AbacatePayGateway:
    return AbacatePayGateway(AbacatePayConfig.from_settings())


# ====================================================================
# Use Cases de Carrinho e Frete
# ====================================================================

def get_cart_store(session) -> CartStore:
    return CartStore(SessionCartStorage(session), logger=logger.getChild('cart'))


def get_freight_quoter() -> FreightQuoter:
    return FreightQuoter(get_freight_carrier(), logger=logger.getChild('freight'))


# ====================================================================
# Use Cases de Pedido e Pagamento
# ====================================================================

def get_order_draft_builder() -> OrderDraftBuilder:
    return OrderDraftBuilder(get_order_repository(), logger=logger.getChild('draft'))


def get_get_order_use_case() -> GetOrderUseCase:
    return GetOrderUseCase(get_order_repository())


def get_charge_payment_use_case() -> ChargePaymentUseCase:
    return ChargePaymentUseCase(
        get_payment_gateway(),
        notification_url=MercadoPagoConfig.from_settings().notification_url or None,
        logger=logger.getChild('payment'),
    )


def get_create_preference_use_case() -> CreatePreferenceUseCase:
    return CreatePreferenceUseCase(get_payment_gateway(), logger=logger.getChild('payment'))


def get_payment_orchestrator(session, listener=None) -> PaymentOrchestrator:
    mp_config = MercadoPagoConfig.from_settings()
    cart = get_cart_store(session)
    return PaymentOrchestrator(
        cart=cart,
        draft_builder=get_order_draft_builder(),
        backend=LocalPaymentBackend(get_charge_payment_use_case(), get_create_preference_use_case()),
        tokenizer=MercadoPagoCardTokenizer(mp_config),
        pending_cache=SessionPendingOrderCache(session),
        store_base_url=StoreConfig.from_settings().base_url,
        notification_url=mp_config.notification_url or None,
        listener=listener,
        logger=logger.getChild('checkout'),
    )


# ====================================================================
# Webhook e Envio
# ====================================================================

def get_fulfillment_trigger() -> FulfillmentTrigger:
    return FulfillmentTrigger(
        get_shipment_carrier(), get_order_repository(), logger=logger.getChild('fulfillment')
    )


def get_process_notification_use_case() -> ProcessPaymentNotificationUseCase:
    relay_config = RelayConfig.from_settings()
    return ProcessPaymentNotificationUseCase(
        order_repo=get_order_repository(),
        payment_gateway=get_payment_gateway(),
        fulfillment=get_fulfillment_trigger(),
        relay=WorkflowRelayGateway(relay_config) if relay_config.enabled else None,
        order_api_url=StoreConfig.from_settings().order_api_url,
        logger=logger.getChild('webhook'),
    )
