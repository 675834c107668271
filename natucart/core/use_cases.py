# natucart/core/use_cases.py
"""
Implementação dos Casos de Uso (Lógica de Negócio) da aplicação.
Esta camada depende apenas das Entidades e Portas (Interfaces) do Core,
garantindo o isolamento da lógica de negócio.
"""
import logging
import secrets
import string
import time
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Tuple

# Entidades e Exceções
from natucart.core.entities import (
    Address, CartSnapshot, Customer, FreightQuote, OrderContext, OrderRecord,
    OrderStatus, OrderTotals, PaymentInfo, ShipmentResult, money, only_digits
)
from natucart.core.exceptions import (
    CoreError,
    DraftPersistError,
    EmptyCartError,
    ExternalServiceError,
    InvalidAddressError,
    InvalidCustomerError,
    InvalidInputError,
    MissingFreightError,
    NoServiceAvailableError,
    NotFoundError,
    OrderLockedError,
    OrderNotFoundError,
    StorageError,
)
from natucart.core.packaging import build_packages

# Portas (Interfaces) - Importadas do natucart/core/ports.py
from natucart.core.ports import (
    IDraftStore,
    IFreightCarrier,
    INotificationRelay,
    IOrderRepository,
    IPaymentGateway,
    IShipmentCarrier,
)

if TYPE_CHECKING:
    from natucart.core.cart import CartStore


_ORDER_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_order_id() -> str:
    """Gera o ID do pedido no formato natucart_<epoch-ms>_<9 caracteres>."""
    suffix = ''.join(secrets.choice(_ORDER_ID_ALPHABET) for _ in range(9))
    return f"natucart_{int(time.time() * 1000)}_{suffix}"


# ====================================================================
# 1. FRETE
# ====================================================================

class FreightQuoter:
    """
    Cota o frete do carrinho em UMA transportadora (escolhida pela configuração).

    A cotação nunca escolhe uma opção sozinha: quem chama decide e vincula
    a opção ao carrinho com `bind_freight`.
    """
    def __init__(self, carrier: IFreightCarrier, logger: Optional[logging.Logger] = None):
        self.carrier = carrier
        self.logger = logger or logging.getLogger(__name__)

    def get_freight_rates(
        self,
        postal_code: str,
        cart_snapshot: CartSnapshot,
        address: Optional[Address] = None
    ) -> FreightQuote:
        cep = only_digits(postal_code)
        if len(cep) != 8:
            raise InvalidInputError("Informe um CEP válido com 8 dígitos.", field='postalCode', section='address')
        if cart_snapshot.is_empty:
            raise InvalidInputError("Adicione produtos ao carrinho antes de calcular o frete.", field='items', section='cart')

        packages = build_packages(cart_snapshot.items)
        carrier_name = getattr(self.carrier, 'name', type(self.carrier).__name__)

        try:
            options = self.carrier.quote(cep, packages, address)
        except ExternalServiceError as e:
            self.logger.error("Falha na cotação de frete (%s) para o CEP %s: %s", carrier_name, cep, e.message)
            raise NoServiceAvailableError(service=carrier_name, status_code=e.status_code, detail=e.detail) from e

        if not options:
            self.logger.warning("Nenhum serviço de frete retornado por %s para o CEP %s.", carrier_name, cep)
            raise NoServiceAvailableError(service=carrier_name)

        self.logger.info("Frete cotado para o CEP %s: %d opção(ões) via %s.", cep, len(options), carrier_name)
        return FreightQuote(options=list(options), postal_code=cep)

    def bind_freight(self, cart: 'CartStore', quote: FreightQuote, service_code: str) -> CartSnapshot:
        """Vincula ao carrinho a opção escolhida pelo comprador."""
        option = quote.find(service_code)
        if option is None:
            raise InvalidInputError(
                f"Opção de frete '{service_code}' não está entre as cotadas.",
                field='serviceCode',
                section='freight',
            )
        return cart.set_freight(option)


# ====================================================================
# 2. RASCUNHO DO PEDIDO
# ====================================================================

class OrderDraftBuilder:
    """
    Monta o OrderContext a partir do formulário + carrinho e grava o rascunho
    (status pending_payment) ANTES de qualquer chamada ao gateway.
    """
    def __init__(
        self,
        draft_store: IDraftStore,
        logger: Optional[logging.Logger] = None,
        id_factory: Callable[[], str] = generate_order_id
    ):
        self.draft_store = draft_store
        self.logger = logger or logging.getLogger(__name__)
        self.id_factory = id_factory

    def validate(self, customer: Customer, address: Address, cart_snapshot: CartSnapshot):
        """Valida na ordem: carrinho, cliente (nome, e-mail, telefone, CPF), frete, endereço."""
        if cart_snapshot.is_empty:
            raise EmptyCartError(field='items')

        if not (customer.name or '').strip():
            raise InvalidCustomerError("Informe o nome completo.", field='name')
        if '@' not in (customer.email or ''):
            raise InvalidCustomerError("Informe um e-mail válido.", field='email')
        if not only_digits(customer.phone):
            raise InvalidCustomerError("Informe um telefone para contato.", field='phone')
        if len(only_digits(customer.tax_id)) != 11:
            raise InvalidCustomerError("O CPF deve ter 11 dígitos.", field='taxId')

        if cart_snapshot.freight is None:
            raise MissingFreightError(field='freight')

        if not only_digits(address.postal_code):
            raise InvalidAddressError("Informe o CEP de entrega.", field='postalCode')

    def build(
        self,
        customer: Customer,
        address: Address,
        cart_snapshot: CartSnapshot,
        order_id: Optional[str] = None
    ) -> OrderContext:
        self.validate(customer, address, cart_snapshot)

        # Snapshot: cópias dos itens, totais recalculados a partir deles.
        items = [replace(item) for item in cart_snapshot.items]
        subtotal = sum((item.unit_price * item.quantity for item in items), Decimal('0'))
        totals = OrderTotals.from_values(subtotal, cart_snapshot.freight.price)

        order_id = order_id or self.id_factory()
        return OrderContext(
            order_id=order_id,
            customer=Customer(
                name=customer.name.strip(),
                email=customer.email.strip(),
                phone=only_digits(customer.phone),
                tax_id=only_digits(customer.tax_id),
            ),
            address=Address(
                postal_code=only_digits(address.postal_code),
                state=address.state,
                city=address.city,
                street=address.street,
                number=address.number,
                district=address.district,
                complement=address.complement,
            ),
            freight=cart_snapshot.freight,
            items=items,
            totals=totals,
            metadata={
                'source': 'natucart_checkout',
                'itemsCount': sum(item.quantity for item in items),
                'freightService': cart_snapshot.freight.service,
            },
        )

    def persist(self, context: OrderContext) -> OrderContext:
        try:
            self.draft_store.save_draft(context)
        except (StorageError, ExternalServiceError, OrderLockedError) as e:
            self.logger.error("Falha ao salvar o rascunho do pedido %s: %s", context.order_id, e.message)
            raise DraftPersistError() from e
        self.logger.info("Rascunho do pedido %s salvo (total %s).", context.order_id, context.totals.total)
        return context

    def build_and_persist_draft(
        self,
        customer: Customer,
        address: Address,
        cart_snapshot: CartSnapshot,
        order_id: Optional[str] = None
    ) -> OrderContext:
        """Valida, monta e grava o rascunho. Se a gravação falhar, o pagamento não pode seguir."""
        context = self.build(customer, address, cart_snapshot, order_id=order_id)
        return self.persist(context)


class GetOrderUseCase:
    """Busca um pedido persistido pelo ID (= external_reference)."""
    def __init__(self, order_repo: IOrderRepository):
        self.order_repo = order_repo

    def execute(self, order_id: str) -> OrderRecord:
        order = self.order_repo.get(order_id)
        if not order:
            raise OrderNotFoundError(f"Pedido {order_id} não encontrado.")
        return order


# ====================================================================
# 3. STATUS DO PEDIDO
# ====================================================================

# Transições permitidas. shipping_created é final; approved só é
# cancelado por estorno/chargeback (ver _CANCEL_AFTER_APPROVAL).
_ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING_PAYMENT: {OrderStatus.APPROVED, OrderStatus.REJECTED, OrderStatus.CANCELLED},
    OrderStatus.REJECTED: {OrderStatus.APPROVED, OrderStatus.CANCELLED},
    OrderStatus.CANCELLED: {OrderStatus.APPROVED},
    OrderStatus.APPROVED: {OrderStatus.SHIPPING_CREATED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPING_CREATED: set(),
}

_CANCEL_AFTER_APPROVAL = {'refunded', 'charged_back'}

# Status do gateway -> status do pedido. Ausentes (pending, in_process...) não mudam o status.
_PAYMENT_STATUS_MAP = {
    'approved': OrderStatus.APPROVED,
    'rejected': OrderStatus.REJECTED,
    'cancelled': OrderStatus.CANCELLED,
    'refunded': OrderStatus.CANCELLED,
    'charged_back': OrderStatus.CANCELLED,
}

PENDING_PAYMENT_STATUSES = {'pending', 'in_process', 'authorized'}


def can_transition(current: str, new: str, payment_status: Optional[str] = None) -> bool:
    if new not in _ALLOWED_TRANSITIONS.get(current, set()):
        return False
    if current == OrderStatus.APPROVED and new == OrderStatus.CANCELLED:
        return payment_status in _CANCEL_AFTER_APPROVAL
    return True


# ====================================================================
# 4. ENVIO (pós-pagamento)
# ====================================================================

class FulfillmentTrigger:
    """
    Cria o envio na transportadora para um pedido aprovado.

    Criar envio -> gerar etiqueta (falha não é fatal) -> obter URL da etiqueta.
    O pedido só vira shipping_created com um ID de envio em mãos.
    """
    def __init__(
        self,
        carrier: IShipmentCarrier,
        order_repo: IOrderRepository,
        logger: Optional[logging.Logger] = None
    ):
        self.carrier = carrier
        self.order_repo = order_repo
        self.logger = logger or logging.getLogger(__name__)

    def create_shipment(self, order: OrderRecord) -> Optional[ShipmentResult]:
        if order.status == OrderStatus.SHIPPING_CREATED:
            self.logger.info("Pedido %s já possui envio; nada a fazer.", order.order_id)
            return None
        if not order.items or not only_digits(order.address.postal_code):
            self.logger.error("Pedido %s sem itens ou sem CEP; envio não criado.", order.order_id)
            return None

        packages = build_packages(order.items)

        try:
            shipment_id = self.carrier.create_shipment(order, packages)
        except ExternalServiceError as e:
            self.logger.error(
                "Falha ao criar envio do pedido %s: %s (%s)", order.order_id, e.message, e.detail
            )
            return None
        if not shipment_id:
            self.logger.error("Envio do pedido %s criado sem ID.", order.order_id)
            return None

        label_generated = False
        label_url = None
        try:
            label_generated = bool(self.carrier.generate_label(shipment_id))
        except ExternalServiceError as e:
            self.logger.warning("Etiqueta do envio %s não gerada: %s", shipment_id, e.message)

        if label_generated:
            try:
                label_url = self.carrier.get_label_url(shipment_id)
            except ExternalServiceError as e:
                self.logger.warning("URL da etiqueta do envio %s indisponível: %s", shipment_id, e.message)

        result = ShipmentResult(shipment_id=str(shipment_id), label_url=label_url, label_generated=label_generated)

        try:
            self.order_repo.merge(
                order.order_id,
                status=OrderStatus.SHIPPING_CREATED,
                shipment=result.to_snapshot(),
            )
        except (StorageError, NotFoundError) as e:
            self.logger.error(
                "Envio %s criado mas não registrado no pedido %s: %s", shipment_id, order.order_id, e.message
            )
            return result

        self.logger.info("Envio %s criado para o pedido %s.", shipment_id, order.order_id)
        return result


# ====================================================================
# 5. WEBHOOK DE PAGAMENTO
# ====================================================================

MERCHANT_ORDER_TOPICS = {'merchant_order', 'topic_merchant_order_wh'}


@dataclass
class NotificationOutcome:
    processed: bool
    reason: str
    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    order_status: Optional[str] = None
    payment_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': 'ok',
            'processed': self.processed,
            'reason': self.reason,
            'paymentId': self.payment_id,
            'orderId': self.order_id,
            'orderStatus': self.order_status,
        }


def parse_notification(query: Mapping, body: Optional[Mapping]) -> Tuple[Optional[str], Optional[str]]:
    """
    Extrai (tópico, id do pagamento) da query (?topic=&id= / ?type=&data.id=)
    ou do corpo JSON ({"type": ..., "data": {"id": ...}}).
    """
    body = body if isinstance(body, Mapping) else {}
    data = body.get('data') if isinstance(body.get('data'), Mapping) else {}

    topic = query.get('topic') or query.get('type') or body.get('type') or body.get('topic')
    payment_id = (
        query.get('data.id')
        or query.get('data_id')
        or query.get('id')
        or data.get('id')
    )
    if payment_id is not None:
        payment_id = str(payment_id).strip() or None
    return topic, payment_id


class ProcessPaymentNotificationUseCase:
    """
    Use Case para atualizar o pedido a partir da notificação do gateway (Webhook/IPN).

    Entrega é at-least-once e fora de ordem: o status é sempre reconsultado no
    gateway, nunca regride, e o envio só é criado uma vez. Nenhum erro sobe:
    o gateway sempre recebe confirmação.
    """
    def __init__(
        self,
        order_repo: IOrderRepository,
        payment_gateway: IPaymentGateway,
        fulfillment: FulfillmentTrigger,
        relay: Optional[INotificationRelay] = None,
        order_api_url: Optional[str] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.order_repo = order_repo
        self.payment_gateway = payment_gateway
        self.fulfillment = fulfillment
        self.relay = relay
        self.order_api_url = order_api_url
        self.logger = logger or logging.getLogger(__name__)

    def execute(
        self,
        topic: Optional[str],
        payment_id: Optional[str],
        signature_valid: Optional[bool] = None
    ) -> NotificationOutcome:
        if not payment_id:
            self.logger.warning("Notificação sem ID de pagamento (tópico %s); ignorada.", topic)
            return NotificationOutcome(processed=False, reason='missing_payment_id')

        if topic in MERCHANT_ORDER_TOPICS:
            self.logger.info("Notificação merchant_order %s reconhecida sem processamento.", payment_id)
            return NotificationOutcome(processed=False, reason='merchant_order', payment_id=payment_id)

        try:
            outcome, payment = self._process(payment_id)
        except CoreError as e:
            self.logger.error("Erro ao processar notificação do pagamento %s: %s", payment_id, e.message)
            outcome, payment = NotificationOutcome(processed=False, reason='error', payment_id=payment_id), None

        self._forward(topic, payment_id, signature_valid, payment, outcome)
        return outcome

    def _process(self, payment_id: str) -> Tuple[NotificationOutcome, Optional[PaymentInfo]]:
        try:
            payment = self.payment_gateway.get_payment(payment_id)
        except NotFoundError:
            self.logger.warning("Pagamento %s não encontrado no gateway.", payment_id)
            return NotificationOutcome(processed=False, reason='payment_not_found', payment_id=payment_id), None

        reference = payment.external_reference
        if not reference:
            self.logger.warning("Pagamento %s sem external_reference.", payment_id)
            return NotificationOutcome(
                processed=False, reason='missing_reference', payment_id=payment_id, payment_status=payment.status
            ), payment

        order = self.order_repo.get(reference)
        if order is None:
            self.logger.warning("Pedido %s (pagamento %s) não encontrado.", reference, payment_id)
            return NotificationOutcome(
                processed=False, reason='order_not_found', payment_id=payment_id,
                order_id=reference, payment_status=payment.status
            ), payment

        return self._apply(order, payment), payment

    def _apply(self, order: OrderRecord, payment: PaymentInfo) -> NotificationOutcome:
        outcome = NotificationOutcome(
            processed=True,
            reason='ignored',
            payment_id=payment.payment_id,
            order_id=order.order_id,
            order_status=order.status,
            payment_status=payment.status,
        )

        if payment.status == 'approved':
            if order.status == OrderStatus.SHIPPING_CREATED:
                self.logger.info("Pedido %s já enviado; notificação duplicada ignorada.", order.order_id)
                outcome.reason = 'already_fulfilled'
                return outcome

            if order.status != OrderStatus.APPROVED:
                if not can_transition(order.status, OrderStatus.APPROVED):
                    outcome.reason = 'transition_refused'
                    return outcome
                order = self.order_repo.merge(
                    order.order_id, status=OrderStatus.APPROVED, payment=payment.to_snapshot()
                )
                self.logger.info("Pedido %s aprovado (pagamento %s).", order.order_id, payment.payment_id)

            # Também cobre uma tentativa anterior de envio que falhou.
            shipment = self.fulfillment.create_shipment(order)
            outcome.order_status = OrderStatus.SHIPPING_CREATED if shipment else OrderStatus.APPROVED
            outcome.reason = 'approved'
            return outcome

        new_status = _PAYMENT_STATUS_MAP.get(payment.status)
        if new_status is not None:
            if order.status == new_status:
                outcome.reason = 'unchanged'
                return outcome
            if not can_transition(order.status, new_status, payment.status):
                self.logger.warning(
                    "Transição %s -> %s recusada para o pedido %s (pagamento %s).",
                    order.status, new_status, order.order_id, payment.status
                )
                outcome.reason = 'transition_refused'
                return outcome
            self.order_repo.merge(order.order_id, status=new_status, payment=payment.to_snapshot())
            self.logger.info("Pedido %s atualizado para %s.", order.order_id, new_status)
            outcome.order_status = new_status
            outcome.reason = new_status
            return outcome

        if payment.status in PENDING_PAYMENT_STATUSES:
            if order.status == OrderStatus.PENDING_PAYMENT:
                self.order_repo.merge(order.order_id, payment=payment.to_snapshot())
            outcome.reason = 'pending'
            return outcome

        self.logger.warning("Status de pagamento desconhecido '%s' (pedido %s).", payment.status, order.order_id)
        return outcome

    def _forward(self, topic, payment_id, signature_valid, payment, outcome):
        if self.relay is None:
            return
        summary = {
            'paymentId': payment_id,
            'topic': topic,
            'signatureValid': signature_valid,
            'processed': outcome.processed,
            'reason': outcome.reason,
            'orderStatus': outcome.order_status,
            'payment': {
                'status': payment.status,
                'statusDetail': payment.status_detail,
                'externalReference': payment.external_reference,
                'transactionAmount': str(money(payment.transaction_amount)) if payment.transaction_amount is not None else None,
                'paymentMethodId': payment.payment_method_id,
            } if payment else None,
        }
        if self.order_api_url and payment and payment.external_reference:
            summary['orderApiUrl'] = f"{self.order_api_url}?orderId={payment.external_reference}"
        try:
            self.relay.forward(summary)
        except ExternalServiceError as e:
            self.logger.warning("Falha ao repassar notificação %s para a automação: %s", payment_id, e.message)
