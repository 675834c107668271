# natucart/core/checkout.py
"""
Orquestração do pagamento.

Lado do comprador: `PaymentOrchestrator` conduz uma tentativa de checkout
(validação -> rascunho -> cobrança) e publica o resultado como eventos.

Lado do servidor: `ChargePaymentUseCase` e `CreatePreferenceUseCase` montam
as requisições do Mercado Pago e normalizam as respostas de erro.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, List, Optional, Tuple, Union

from natucart.core.cart import CartStore
from natucart.core.entities import Address, Customer, OrderContext, money, only_digits
from natucart.core.exceptions import (
    CheckoutInProgressError,
    DraftPersistError,
    ExternalServiceError,
    GatewayConnectionError,
    InputValidationError,
    InvalidInputError,
)
from natucart.core.ports import ICardTokenizer, IPaymentBackend, IPaymentGateway, IPendingOrderCache
from natucart.core.use_cases import OrderDraftBuilder, PENDING_PAYMENT_STATUSES


# ====================================================================
# 1. DADOS DE ENTRADA
# ====================================================================

class PaymentMethod:
    CARD = 'card'
    PIX = 'pix'
    BOLETO = 'boleto'

    ALL = (CARD, PIX, BOLETO)


# payment_method_id do Mercado Pago para cada método sem cartão
PIX_METHOD_ID = 'pix'
BOLETO_METHOD_ID = 'bolbradesco'


@dataclass
class CardData:
    """Dados brutos do cartão. Usados só para tokenizar; nunca são gravados."""
    number: str = field(repr=False)
    holder_name: str
    expiration_month: str
    expiration_year: str
    security_code: str = field(repr=False)


@dataclass
class PaymentRequest:
    method: str
    card: Optional[CardData] = field(default=None, repr=False)
    installments: int = 1
    payment_method_id: Optional[str] = None  # bandeira (visa, master...) no cartão
    issuer_id: Optional[str] = None
    idempotency_key: Optional[str] = None


# ====================================================================
# 2. ESTADOS E EVENTOS
# ====================================================================

class CheckoutState:
    IDLE = 'idle'
    VALIDATING = 'validating'
    DRAFT_PERSISTED = 'draft_persisted'
    SUBMITTING = 'submitting'
    AWAITING_CONFIRMATION = 'awaiting_confirmation'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


@dataclass
class Succeeded:
    order_id: str
    payment_id: Optional[str]
    redirect_url: str
    kind: ClassVar[str] = 'succeeded'


@dataclass
class Pending:
    order_id: str
    payment_id: Optional[str]
    status: str
    status_detail: Optional[str] = None
    kind: ClassVar[str] = 'pending'


@dataclass
class Failed:
    """reason: validation | draft | gateway | rejected."""
    reason: str
    message: str
    order_id: Optional[str] = None
    field: Optional[str] = None
    section: Optional[str] = None
    status_detail: Optional[str] = None
    kind: ClassVar[str] = 'failed'


@dataclass
class QrGenerated:
    order_id: str
    payment_id: Optional[str]
    qr_code: Optional[str]
    qr_code_base64: Optional[str]
    ticket_url: Optional[str] = None
    kind: ClassVar[str] = 'pix_generated'


@dataclass
class BarcodeGenerated:
    order_id: str
    payment_id: Optional[str]
    barcode: Optional[str]
    ticket_url: Optional[str]
    kind: ClassVar[str] = 'boleto_generated'


CheckoutEvent = Union[Succeeded, Pending, Failed, QrGenerated, BarcodeGenerated]


@dataclass
class CheckoutResult:
    state: str
    order_id: Optional[str] = None
    events: List[CheckoutEvent] = field(default_factory=list)
    payment: Optional[Dict[str, Any]] = None

    @property
    def last_event(self) -> Optional[CheckoutEvent]:
        return self.events[-1] if self.events else None


# ====================================================================
# 3. MENSAGENS DE RECUSA
# ====================================================================

GENERIC_REJECTION_MESSAGE = "Pagamento recusado. Verifique os dados ou escolha outra forma de pagamento."

STATUS_DETAIL_MESSAGES = {
    'cc_rejected_bad_filled_card_number': "Revise o número do cartão.",
    'cc_rejected_bad_filled_date': "Revise a data de vencimento do cartão.",
    'cc_rejected_bad_filled_other': "Revise os dados do cartão.",
    'cc_rejected_bad_filled_security_code': "Revise o código de segurança do cartão.",
    'cc_rejected_blacklist': "Não foi possível processar seu pagamento.",
    'cc_rejected_call_for_authorize': "Autorize o pagamento junto ao emissor do cartão.",
    'cc_rejected_card_disabled': "Ligue para o emissor do cartão para ativá-lo.",
    'cc_rejected_card_error': "Não foi possível processar seu pagamento.",
    'cc_rejected_duplicated_payment': "Você já efetuou um pagamento com esse valor.",
    'cc_rejected_high_risk': "Seu pagamento foi recusado. Escolha outra forma de pagamento.",
    'cc_rejected_insufficient_amount': "O cartão possui saldo insuficiente.",
    'cc_rejected_invalid_installments': "O cartão não aceita essa quantidade de parcelas.",
    'cc_rejected_max_attempts': "Limite de tentativas atingido. Use outro cartão ou outra forma de pagamento.",
    'cc_rejected_other_reason': "O emissor do cartão não processou o pagamento.",
}


def message_for_status_detail(status_detail: Optional[str]) -> str:
    return STATUS_DETAIL_MESSAGES.get(status_detail or '', GENERIC_REJECTION_MESSAGE)


# ====================================================================
# 4. ORQUESTRADOR (uma instância por sessão)
# ====================================================================

class PaymentOrchestrator:
    """
    Conduz uma tentativa de checkout:
    idle -> validating -> draft_persisted -> submitting ->
    awaiting_confirmation | succeeded | failed.

    Só uma tentativa pode estar em voo por sessão; o marcador é sempre
    liberado ao final, inclusive em caso de erro.
    """

    def __init__(
        self,
        cart: CartStore,
        draft_builder: OrderDraftBuilder,
        backend: IPaymentBackend,
        tokenizer: ICardTokenizer,
        pending_cache: IPendingOrderCache,
        store_base_url: str,
        notification_url: Optional[str] = None,
        listener: Optional[Callable[[CheckoutEvent], None]] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.cart = cart
        self.draft_builder = draft_builder
        self.backend = backend
        self.tokenizer = tokenizer
        self.pending_cache = pending_cache
        self.store_base_url = store_base_url.rstrip('/')
        self.notification_url = notification_url
        self.listener = listener
        self.logger = logger or logging.getLogger(__name__)
        self.state = CheckoutState.IDLE

    # ------------------------------------------------------------------
    # API pública
    # ------------------------------------------------------------------

    def submit(self, customer: Customer, address: Address, payment: PaymentRequest) -> CheckoutResult:
        """Nova tentativa: valida, grava o rascunho e cobra."""
        self._acquire()
        result = CheckoutResult(state=self.state)
        try:
            self._set_state(CheckoutState.VALIDATING, result)
            try:
                context = self.draft_builder.build(customer, address, self.cart.get_snapshot())
                self._validate_payment(payment, context.address)
                self.draft_builder.persist(context)
            except InputValidationError as e:
                self._emit(result, Failed(
                    reason='validation', message=e.message, field=e.field, section=e.section
                ))
                # Erro de formulário: o comprador corrige e reenvia.
                self._set_state(CheckoutState.IDLE, result)
                return result
            except DraftPersistError as e:
                self._emit(result, Failed(reason='draft', message=e.message))
                self._set_state(CheckoutState.FAILED, result)
                return result

            result.order_id = context.order_id
            self._set_state(CheckoutState.DRAFT_PERSISTED, result)
            self.pending_cache.store({
                'orderId': context.order_id,
                'order': context.to_dict(),
                'attempts': 0,
                'payment': None,
            })
            return self._charge(context, payment, result)
        finally:
            self.pending_cache.release()

    def retry(self, payment: PaymentRequest) -> CheckoutResult:
        """Nova cobrança para o mesmo rascunho/orderId, com nova chave de idempotência."""
        self._acquire()
        result = CheckoutResult(state=self.state)
        try:
            cached = self.pending_cache.load() or {}
            if not cached.get('order'):
                self._emit(result, Failed(reason='validation', message="Nenhum pedido pendente para tentar novamente."))
                self._set_state(CheckoutState.IDLE, result)
                return result

            last_payment = cached.get('payment') or {}
            if last_payment.get('status') == 'approved':
                self._emit(result, Failed(
                    reason='validation', message="Este pedido já foi pago.", order_id=cached.get('orderId')
                ))
                return result

            # Cobrança ainda em aberto: uma nova chave criaria um segundo pagamento.
            if last_payment.get('status') in PENDING_PAYMENT_STATUSES or last_payment.get('status') == 'redirect':
                self._emit(result, Failed(
                    reason='validation',
                    message="Já existe um pagamento aguardando confirmação para este pedido. "
                            "Use o PIX, boleto ou link gerado anteriormente.",
                    order_id=cached.get('orderId'),
                    status_detail=last_payment.get('statusDetail'),
                ))
                return result

            context = OrderContext.from_dict(cached['order'])
            result.order_id = context.order_id
            try:
                self._validate_payment(payment, context.address)
            except InputValidationError as e:
                self._emit(result, Failed(
                    reason='validation', message=e.message, order_id=context.order_id,
                    field=e.field, section=e.section
                ))
                return result

            if not payment.idempotency_key or payment.idempotency_key == last_payment.get('idempotencyKey'):
                payment.idempotency_key = str(uuid.uuid4())
            self._set_state(CheckoutState.DRAFT_PERSISTED, result)
            return self._charge(context, payment, result)
        finally:
            self.pending_cache.release()

    def create_redirect_checkout(self, customer: Customer, address: Address) -> str:
        """
        Fluxo por redirecionamento (Checkout Pro): grava o rascunho, cria a
        preferência e retorna a URL `init_point`.
        """
        self._acquire()
        try:
            context = self.draft_builder.build_and_persist_draft(customer, address, self.cart.get_snapshot())
            preference = build_preference_payload(context, self.store_base_url, self.notification_url)
            status_code, body = self.backend.create_preference(preference)
            if status_code >= 400 or not body.get('init_point'):
                raise ExternalServiceError(
                    body.get('message') or "Não foi possível iniciar o pagamento.",
                    service='mercadopago', status_code=status_code, detail=body.get('detail'),
                )
            self.pending_cache.store({
                'orderId': context.order_id,
                'order': context.to_dict(),
                'attempts': 0,
                'payment': {'status': 'redirect', 'preferenceId': body.get('id')},
            })
            return body['init_point']
        finally:
            self.pending_cache.release()

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------

    def _acquire(self):
        if not self.pending_cache.acquire():
            raise CheckoutInProgressError()

    def _validate_payment(self, payment: PaymentRequest, address: Address):
        if payment.method not in PaymentMethod.ALL:
            raise InvalidInputError("Forma de pagamento inválida.", field='method', section='payment')
        if payment.method == PaymentMethod.CARD:
            if payment.card is None:
                raise InvalidInputError("Informe os dados do cartão.", field='card', section='payment')
            if not payment.payment_method_id:
                raise InvalidInputError("Bandeira do cartão não identificada.", field='paymentMethodId', section='payment')
            if payment.installments < 1:
                raise InvalidInputError("Número de parcelas inválido.", field='installments', section='payment')
        if payment.method == PaymentMethod.BOLETO:
            if not (address.street and address.number and address.city and address.state):
                raise InvalidInputError(
                    "Endereço completo é obrigatório para boleto.", field='street', section='address'
                )

    def _charge(self, context: OrderContext, payment: PaymentRequest, result: CheckoutResult) -> CheckoutResult:
        self._set_state(CheckoutState.SUBMITTING, result)
        idempotency_key = payment.idempotency_key or str(uuid.uuid4())

        try:
            payment_data = self._payment_data(context, payment)
        except InputValidationError as e:
            self._emit(result, Failed(
                reason='validation', message=e.message, order_id=context.order_id,
                field=e.field, section=e.section
            ))
            self._set_state(CheckoutState.FAILED, result)
            return result
        except ExternalServiceError as e:
            self.logger.error("Falha ao tokenizar cartão do pedido %s: %s", context.order_id, e.message)
            self._emit(result, Failed(reason='gateway', message=e.message, order_id=context.order_id))
            self._set_state(CheckoutState.FAILED, result)
            return result
        finally:
            # Os dados do cartão não sobrevivem à tokenização.
            payment.card = None

        order = context.to_dict()
        if self.notification_url:
            order['notificationUrl'] = self.notification_url

        try:
            status_code, body = self.backend.charge(payment_data, order, idempotency_key)
        except ExternalServiceError as e:
            self.logger.error("Falha de comunicação na cobrança do pedido %s: %s", context.order_id, e.message)
            self._record(context, {'status': 'error', 'idempotencyKey': idempotency_key})
            self._emit(result, Failed(reason='gateway', message=e.message, order_id=context.order_id))
            self._set_state(CheckoutState.FAILED, result)
            return result

        result.payment = body
        if status_code >= 400:
            message = body.get('message') or body.get('error') or GENERIC_REJECTION_MESSAGE
            self.logger.warning("Cobrança do pedido %s respondeu %s: %s", context.order_id, status_code, message)
            self._record(context, {'status': 'error', 'idempotencyKey': idempotency_key})
            self._emit(result, Failed(
                reason='validation' if status_code == 422 else 'gateway',
                message=message,
                order_id=context.order_id,
                status_detail=body.get('status_detail'),
            ))
            self._set_state(CheckoutState.FAILED, result)
            return result

        return self._normalize(context, payment, body, idempotency_key, result)

    def _normalize(self, context, payment, body, idempotency_key, result) -> CheckoutResult:
        status = body.get('status')
        status_detail = body.get('status_detail')
        payment_id = str(body['id']) if body.get('id') is not None else None
        self._record(context, {
            'id': payment_id,
            'status': status,
            'statusDetail': status_detail,
            'method': payment.method,
            'idempotencyKey': idempotency_key,
        })

        if status == 'approved':
            self.cart.clear()
            redirect_url = f"{self.store_base_url}/checkout.html?payment=completed&order={context.order_id}"
            self._emit(result, Succeeded(order_id=context.order_id, payment_id=payment_id, redirect_url=redirect_url))
            self._set_state(CheckoutState.SUCCEEDED, result)
            self.logger.info("Pagamento %s aprovado para o pedido %s.", payment_id, context.order_id)
            return result

        if status in PENDING_PAYMENT_STATUSES:
            if payment.method == PaymentMethod.PIX:
                transaction_data = (body.get('point_of_interaction') or {}).get('transaction_data') or {}
                self._emit(result, QrGenerated(
                    order_id=context.order_id,
                    payment_id=payment_id,
                    qr_code=transaction_data.get('qr_code'),
                    qr_code_base64=transaction_data.get('qr_code_base64'),
                    ticket_url=transaction_data.get('ticket_url'),
                ))
            elif payment.method == PaymentMethod.BOLETO:
                self._emit(result, BarcodeGenerated(
                    order_id=context.order_id,
                    payment_id=payment_id,
                    barcode=(body.get('barcode') or {}).get('content'),
                    ticket_url=(body.get('transaction_details') or {}).get('external_resource_url'),
                ))
            self._emit(result, Pending(
                order_id=context.order_id, payment_id=payment_id, status=status, status_detail=status_detail
            ))
            self._set_state(CheckoutState.AWAITING_CONFIRMATION, result)
            return result

        self.logger.info("Pagamento do pedido %s recusado (%s / %s).", context.order_id, status, status_detail)
        self._emit(result, Failed(
            reason='rejected',
            message=message_for_status_detail(status_detail),
            order_id=context.order_id,
            status_detail=status_detail,
        ))
        self._set_state(CheckoutState.FAILED, result)
        return result

    def _payment_data(self, context: OrderContext, payment: PaymentRequest) -> Dict[str, Any]:
        payer = {
            'email': context.customer.email,
            'identification': {'type': 'CPF', 'number': only_digits(context.customer.tax_id)},
        }
        if payment.method == PaymentMethod.PIX:
            return {'payment_method_id': PIX_METHOD_ID, 'payer': payer}
        if payment.method == PaymentMethod.BOLETO:
            return {'payment_method_id': BOLETO_METHOD_ID, 'payer': payer}

        token = self.tokenizer.tokenize(payment.card)
        data = {
            'payment_method_id': payment.payment_method_id,
            'token': token,
            'installments': payment.installments,
            'payer': payer,
        }
        if payment.issuer_id:
            data['issuer_id'] = payment.issuer_id
        return data

    def _record(self, context: OrderContext, payment_snapshot: Dict[str, Any]):
        cached = self.pending_cache.load() or {}
        if cached.get('orderId') != context.order_id:
            cached = {'orderId': context.order_id, 'order': context.to_dict(), 'attempts': 0}
        cached['attempts'] = cached.get('attempts', 0) + 1
        cached['payment'] = payment_snapshot
        self.pending_cache.store(cached)

    def _set_state(self, state: str, result: CheckoutResult):
        self.state = state
        result.state = state

    def _emit(self, result: CheckoutResult, event: CheckoutEvent):
        result.events.append(event)
        if self.listener is None:
            return
        try:
            self.listener(event)
        except Exception:
            self.logger.exception("Erro no ouvinte de eventos do checkout.")


# ====================================================================
# 5. PAYLOADS DO MERCADO PAGO
# ====================================================================

def _split_name(full_name: str) -> Tuple[str, str]:
    parts = (full_name or '').split()
    if not parts:
        return '', ''
    first = parts[0]
    last = ' '.join(parts[1:]) or first
    return first, last


def build_payment_payload(
    payment_data: Dict[str, Any],
    order: Dict[str, Any],
    notification_url: Optional[str] = None
) -> Dict[str, Any]:
    """Monta o corpo do POST /v1/payments a partir dos dados do comprador e do pedido."""
    customer = order.get('customer') or {}
    address = order.get('address') or {}
    items = order.get('items') or []
    metadata = order.get('metadata') or {}

    first_name, last_name = _split_name(customer.get('name', ''))
    identification = (payment_data.get('payer') or {}).get('identification') or {}
    method_id = payment_data.get('payment_method_id', '')
    phone = only_digits(customer.get('cellphone') or customer.get('phone'))

    payload = {
        'transaction_amount': float(_transaction_amount(order)),
        'description': order.get('description') or f"Pedido {order.get('orderId', '')} - Natucart",
        'payment_method_id': method_id,
        'external_reference': order.get('externalReference') or order.get('orderId'),
        'statement_descriptor': (order.get('statementDescriptor') or 'NATUCART')[:22],
        'payer': {
            'email': customer.get('email') or (payment_data.get('payer') or {}).get('email', ''),
            'first_name': first_name,
            'last_name': last_name,
            'identification': {
                'type': identification.get('type') or 'CPF',
                'number': only_digits(identification.get('number') or customer.get('taxId')),
            },
        },
        'metadata': {
            'orderId': order.get('orderId'),
            'customerEmail': customer.get('email'),
            'source': 'natucart_checkout',
            **metadata,
        },
    }

    url = order.get('notificationUrl') or notification_url
    if url:
        payload['notification_url'] = url

    if method_id == PIX_METHOD_ID:
        payload['installments'] = 1
    elif method_id == BOLETO_METHOD_ID:
        payload['installments'] = 1
        payload['payer']['address'] = {
            'zip_code': only_digits(address.get('postalCode')),
            'street_name': address.get('street', ''),
            'street_number': str(address.get('number', '')),
            'neighborhood': address.get('district', ''),
            'city': address.get('city', ''),
            'federal_unit': address.get('state', ''),
        }
    else:
        payload['token'] = payment_data.get('token')
        payload['installments'] = int(payment_data.get('installments') or 1)
        if payment_data.get('issuer_id'):
            payload['issuer_id'] = payment_data['issuer_id']

    # Informações adicionais (ajudam no antifraude)
    payload['additional_info'] = {
        'items': [
            {
                'id': item.get('id') or item.get('sku'),
                'title': item.get('name') or 'Produto',
                'description': item.get('name') or 'Produto Natucart',
                'quantity': int(item.get('quantity') or 1),
                'unit_price': float(money(item.get('price'))),
                'category_id': 'others',
            }
            for item in items
        ],
        'payer': {
            'first_name': first_name,
            'last_name': last_name,
            'phone': {'area_code': phone[:2], 'number': phone[2:]},
            'address': {
                'zip_code': only_digits(address.get('postalCode')),
                'street_name': address.get('street', ''),
                'street_number': str(address.get('number', '')),
            },
        },
        'shipments': {
            'receiver_address': {
                'zip_code': only_digits(address.get('postalCode')),
                'street_name': address.get('street', ''),
                'street_number': str(address.get('number', '')),
                'floor': '',
                'apartment': address.get('complement', ''),
            },
        },
    }
    return payload


def build_preference_payload(
    context: OrderContext,
    store_base_url: str,
    notification_url: Optional[str] = None,
    installments: int = 12
) -> Dict[str, Any]:
    """Preferência do Checkout Pro: itens + linha de frete, back_urls e referência externa."""
    base_url = store_base_url.rstrip('/')
    items = [
        {'title': item.name, 'quantity': item.quantity, 'unit_price': float(item.unit_price), 'currency_id': 'BRL'}
        for item in context.items
    ]
    if context.freight and context.freight.price:
        items.append({
            'title': f"Frete - {context.freight.service or 'Entrega'}",
            'quantity': 1,
            'unit_price': float(context.freight.price),
            'currency_id': 'BRL',
        })

    payload = {
        'items': items,
        'payer': {
            'name': context.customer.name,
            'email': context.customer.email,
            'identification': {'type': 'CPF', 'number': only_digits(context.customer.tax_id)},
        },
        'back_urls': {
            'success': f"{base_url}/checkout.html?payment=completed",
            'failure': f"{base_url}/checkout.html?payment=failed",
            'pending': f"{base_url}/checkout.html?payment=pending",
        },
        'auto_return': 'approved',
        'external_reference': context.external_reference,
        'statement_descriptor': 'NATUCART',
        'payment_methods': {
            'excluded_payment_methods': [],
            'excluded_payment_types': [],
            'installments': installments,
        },
        'binary_mode': False,
        'metadata': {'orderId': context.order_id, 'customerEmail': context.customer.email},
    }
    if notification_url:
        payload['notification_url'] = notification_url
    return payload


def _transaction_amount(order: Dict[str, Any]):
    amount = order.get('transactionAmount')
    if amount in (None, ''):
        amount = (order.get('totals') or {}).get('total')
    return money(amount)


def normalize_gateway_error(body: Any, default_message: str, include_status: bool = True) -> Dict[str, Any]:
    """Resposta de erro do gateway -> {error, message, [status, status_detail], detail}."""
    body = body if isinstance(body, dict) else {}
    message = default_message
    causes = body.get('cause')
    if isinstance(causes, list):
        descriptions = [c.get('description') for c in causes if isinstance(c, dict) and c.get('description')]
        if descriptions:
            message = ' '.join(descriptions)
    elif body.get('message'):
        message = body['message']

    normalized = {'error': body.get('error') or 'mp_error', 'message': message}
    if include_status:
        normalized['status'] = body.get('status') or 'error'
        normalized['status_detail'] = body.get('status_detail')
    normalized['detail'] = causes if causes is not None else body
    return normalized


def _error_response(e: ExternalServiceError) -> Tuple[int, Dict[str, Any]]:
    if isinstance(e, GatewayConnectionError) or not e.status_code:
        return 502, {'error': 'connection_error', 'message': e.message, 'detail': e.detail}
    return e.status_code, {'error': 'invalid_response', 'message': e.message, 'detail': e.detail}


# ====================================================================
# 6. CASOS DE USO DO SERVIDOR
# ====================================================================

class ChargePaymentUseCase:
    """
    Endpoint de cobrança (Checkout Transparente): valida localmente, monta o
    payload e repassa ao gateway com X-Idempotency-Key.

    Sempre retorna (status HTTP, corpo): 422 na validação local, 502 sem
    conexão, e o status do gateway nos demais casos.
    """
    def __init__(
        self,
        payment_gateway: IPaymentGateway,
        notification_url: Optional[str] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.payment_gateway = payment_gateway
        self.notification_url = notification_url
        self.logger = logger or logging.getLogger(__name__)

    def execute(
        self,
        payment_data: Optional[Dict[str, Any]],
        order: Optional[Dict[str, Any]],
        idempotency_key: Optional[str] = None
    ) -> Tuple[int, Dict[str, Any]]:
        try:
            self._validate(payment_data, order)
        except InvalidInputError as e:
            return 422, {'error': 'validation_error', 'message': e.message, 'field': e.field}

        payload = build_payment_payload(payment_data, order, self.notification_url)
        idempotency_key = idempotency_key or str(uuid.uuid4())

        try:
            status_code, body = self.payment_gateway.create_payment(payload, idempotency_key)
        except ExternalServiceError as e:
            self.logger.error(
                "Erro ao cobrar o pedido %s no Mercado Pago: %s (%s)",
                payload.get('external_reference'), e.message, e.detail
            )
            return _error_response(e)

        if status_code >= 400:
            normalized = normalize_gateway_error(body, "Erro ao processar pagamento.")
            self.logger.warning(
                "Mercado Pago recusou a cobrança do pedido %s (HTTP %s): %s",
                payload.get('external_reference'), status_code, normalized['message']
            )
            return status_code, normalized

        self.logger.info(
            "Cobrança do pedido %s criada: pagamento %s com status %s.",
            payload.get('external_reference'), body.get('id'), body.get('status')
        )
        return status_code, body

    def _validate(self, payment_data, order):
        if not payment_data or not order:
            raise InvalidInputError("Dados do pagamento ou do pedido não foram enviados.")
        try:
            amount = _transaction_amount(order)
        except ArithmeticError:
            raise InvalidInputError("Valor da transação inválido.", field='transactionAmount')
        if amount <= 0:
            raise InvalidInputError("Valor da transação inválido.", field='transactionAmount')
        method_id = payment_data.get('payment_method_id')
        if not method_id:
            raise InvalidInputError("Forma de pagamento não informada.", field='payment_method_id')
        if method_id not in (PIX_METHOD_ID, BOLETO_METHOD_ID) and not payment_data.get('token'):
            raise InvalidInputError("Token do cartão não fornecido.", field='token')


class CreatePreferenceUseCase:
    """Repassa a preferência do Checkout Pro ao gateway (fluxo por redirecionamento)."""
    def __init__(self, payment_gateway: IPaymentGateway, logger: Optional[logging.Logger] = None):
        self.payment_gateway = payment_gateway
        self.logger = logger or logging.getLogger(__name__)

    def execute(self, preference: Optional[Dict[str, Any]]) -> Tuple[int, Dict[str, Any]]:
        if not preference or not preference.get('items') or not (preference.get('payer') or {}).get('email'):
            return 422, {'error': 'Dados obrigatórios ausentes (items ou payer).'}

        try:
            status_code, body = self.payment_gateway.create_preference(preference)
        except ExternalServiceError as e:
            self.logger.error("Erro ao criar preferência no Mercado Pago: %s", e.message)
            return _error_response(e)

        if status_code >= 400:
            return status_code, normalize_gateway_error(
                body, "Erro ao criar preferência de pagamento.", include_status=False
            )
        return status_code, body


class LocalPaymentBackend:
    """Liga o orquestrador direto aos casos de uso, sem passar por HTTP."""
    def __init__(self, charge_use_case: ChargePaymentUseCase, preference_use_case: CreatePreferenceUseCase):
        self.charge_use_case = charge_use_case
        self.preference_use_case = preference_use_case

    def charge(self, payment_data, order, idempotency_key):
        return self.charge_use_case.execute(payment_data, order, idempotency_key)

    def create_preference(self, preference):
        return self.preference_use_case.execute(preference)
