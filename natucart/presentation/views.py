import logging

from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from natucart.core import dependency_injection as di
from natucart.core.entities import Address, Customer, FreightQuote, FreightOption, OrderContext
from natucart.core.exceptions import (
    CheckoutInProgressError,
    CoreError,
    DraftPersistError,
    ExternalServiceError,
    InputValidationError,
    InvalidInputError,
    NotFoundError,
    OrderLockedError,
    StorageError,
)
from natucart.core.use_cases import parse_notification
from natucart.infrastructure.config import MercadoPagoConfig
from natucart.infrastructure.mappers import OrderRecordMapper
from natucart.infrastructure.signatures import verify_mercadopago_signature

from .serializers import (
    BillingSerializer,
    CartItemInputSerializer,
    ChargeSerializer,
    CheckoutSerializer,
    DraftSaveSerializer,
    FreightQuoteInputSerializer,
    FreightSelectInputSerializer,
    RedirectCheckoutSerializer,
    cart_snapshot_data,
    checkout_result_data,
)

logger = logging.getLogger(__name__)

FREIGHT_QUOTE_SESSION_KEY = 'natucart_freight_quote'


# ====================================================================
# BASE: CORS, sem autenticação e tradução das exceções do Core.
# ====================================================================

def error_response(e: CoreError) -> Response:
    """Converte uma exceção do Core em Response com corpo {error, message}."""
    if isinstance(e, InputValidationError):
        body = {'error': 'validation_error', 'message': e.message}
        if e.field:
            body['field'] = e.field
        if e.section:
            body['section'] = e.section
        return Response(body, status=status.HTTP_400_BAD_REQUEST)
    if isinstance(e, NotFoundError):
        return Response({'error': 'not_found', 'message': e.message}, status=status.HTTP_404_NOT_FOUND)
    if isinstance(e, ExternalServiceError):
        return Response({'error': 'external_service_error', 'message': e.message}, status=status.HTTP_502_BAD_GATEWAY)
    if isinstance(e, CheckoutInProgressError):
        return Response({'error': 'checkout_in_progress', 'message': e.message}, status=status.HTTP_409_CONFLICT)
    if isinstance(e, OrderLockedError):
        return Response({'error': 'order_locked', 'message': e.message}, status=status.HTTP_409_CONFLICT)
    logger.error("Erro interno: %s", e.message)
    return Response({'error': 'internal_error', 'message': e.message}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)


class PublicAPIView(APIView):
    """
    Endpoints públicos da loja: sem autenticação, com CORS aberto e
    preflight OPTIONS respondido com 204.
    """
    authentication_classes = []
    permission_classes = [AllowAny]

    def options(self, request, *args, **kwargs):
        return Response(status=status.HTTP_204_NO_CONTENT)

    def finalize_response(self, request, response, *args, **kwargs):
        response = super().finalize_response(request, response, *args, **kwargs)
        response['Access-Control-Allow-Origin'] = '*'
        response['Access-Control-Allow-Methods'] = ', '.join(self.allowed_methods)
        response['Access-Control-Allow-Headers'] = 'Content-Type, X-Idempotency-Key'
        return response


# ====================================================================
# CARRINHO E FRETE
# ====================================================================

class CartAPIView(PublicAPIView):
    """
    Carrinho da sessão.
    GET lê, POST adiciona, PATCH altera a quantidade e DELETE remove o item
    (ou esvazia o carrinho quando nenhum productId é enviado).
    """

    def get(self, request):
        cart = di.get_cart_store(request.session)
        return Response(cart_snapshot_data(cart.get_snapshot()))

    def post(self, request):
        serializer = CartItemInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        cart = di.get_cart_store(request.session)
        snapshot = cart.add_item(serializer.validated_data['productId'], serializer.validated_data['quantity'])
        return Response(cart_snapshot_data(snapshot), status=status.HTTP_201_CREATED)

    def patch(self, request):
        serializer = CartItemInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        cart = di.get_cart_store(request.session)
        snapshot = cart.update_quantity(
            serializer.validated_data['productId'], serializer.validated_data['quantity']
        )
        return Response(cart_snapshot_data(snapshot))

    def delete(self, request):
        cart = di.get_cart_store(request.session)
        product_id = request.data.get('productId') or request.query_params.get('productId')
        snapshot = cart.remove_item(product_id) if product_id else cart.clear()
        return Response(cart_snapshot_data(snapshot))


class FreightQuoteAPIView(PublicAPIView):
    """Cota o frete do carrinho da sessão. A opção mais barata é só sugerida, nunca aplicada."""

    def post(self, request):
        serializer = FreightQuoteInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        cart = di.get_cart_store(request.session)

        try:
            quote = di.get_freight_quoter().get_freight_rates(
                data['postalCode'],
                cart.get_snapshot(),
                Address.from_dict(data['address']) if data.get('address') else None,
            )
        except CoreError as e:
            return error_response(e)

        options = [option.to_dict() for option in quote.options]
        request.session[FREIGHT_QUOTE_SESSION_KEY] = {'postalCode': quote.postal_code, 'options': options}
        return Response({
            'options': options,
            'postalCode': quote.postal_code,
            'suggested': quote.cheapest.to_dict() if quote.cheapest else None,
        })


class FreightSelectAPIView(PublicAPIView):
    """Aplica ao carrinho uma das opções da última cotação."""

    def post(self, request):
        serializer = FreightSelectInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        cached = request.session.get(FREIGHT_QUOTE_SESSION_KEY)
        if not cached:
            return error_response(InvalidInputError("Cote o frete antes de escolher uma opção.", field='serviceCode'))
        quote = FreightQuote(
            options=[FreightOption.from_dict(option) for option in cached['options']],
            postal_code=cached['postalCode'],
        )

        cart = di.get_cart_store(request.session)
        try:
            snapshot = di.get_freight_quoter().bind_freight(cart, quote, serializer.validated_data['serviceCode'])
        except CoreError as e:
            return error_response(e)
        return Response(cart_snapshot_data(snapshot))


# ====================================================================
# CHECKOUT
# ====================================================================

# Status HTTP por motivo de falha; recusas do gateway respondem 200 com o evento.
_FAILURE_STATUS = {
    'validation': status.HTTP_400_BAD_REQUEST,
    'draft': status.HTTP_500_INTERNAL_SERVER_ERROR,
    'gateway': status.HTTP_502_BAD_GATEWAY,
}


class CheckoutAPIView(PublicAPIView):
    """
    Checkout transparente (cartão, PIX ou boleto) do carrinho da sessão.
    Responde com o estado final e os eventos da tentativa.
    """

    def post(self, request):
        serializer = CheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        orchestrator = di.get_payment_orchestrator(request.session)

        try:
            if serializer.validated_data['retry']:
                result = orchestrator.retry(serializer.payment_request())
            else:
                result = orchestrator.submit(
                    serializer.customer_entity(), serializer.address_entity(), serializer.payment_request()
                )
        except CheckoutInProgressError as e:
            return error_response(e)

        last = result.last_event
        http_status = _FAILURE_STATUS.get(getattr(last, 'reason', None), status.HTTP_200_OK)
        return Response(checkout_result_data(result), status=http_status)


class RedirectCheckoutAPIView(PublicAPIView):
    """Checkout Pro: grava o rascunho e devolve a URL de pagamento do Mercado Pago."""

    def post(self, request):
        serializer = RedirectCheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        orchestrator = di.get_payment_orchestrator(request.session)
        try:
            init_point = orchestrator.create_redirect_checkout(
                Customer.from_dict(serializer.validated_data.get('customer')),
                Address.from_dict(serializer.validated_data.get('address')),
            )
        except CoreError as e:
            return error_response(e)
        return Response({'initPoint': init_point})


# ====================================================================
# PEDIDOS (rascunho e consulta)
# ====================================================================

class DraftSaveAPIView(PublicAPIView):
    """Grava o rascunho do pedido (status pending_payment)."""

    def post(self, request):
        serializer = DraftSaveSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {'error': 'validation_error', 'message': 'orderId e orderData são obrigatórios.'},
                status=status.HTTP_400_BAD_REQUEST,
            )

        order_id = serializer.validated_data['orderId']
        try:
            context = OrderContext.from_dict({**serializer.validated_data['orderData'], 'orderId': order_id})
        except (KeyError, TypeError, ValueError, ArithmeticError):
            return Response(
                {'error': 'validation_error', 'message': 'orderData inválido.'},
                status=status.HTTP_400_BAD_REQUEST,
            )

        try:
            di.get_order_repository().save_draft(context)
        except (StorageError, DraftPersistError, OrderLockedError) as e:
            return error_response(e)

        logger.info("Rascunho do pedido %s salvo.", order_id)
        return Response({'status': 'ok', 'orderId': order_id}, status=status.HTTP_201_CREATED)


class OrderLookupAPIView(PublicAPIView):
    """Consulta um pedido por orderId (ou external_reference)."""

    def get(self, request):
        order_id = request.query_params.get('orderId') or request.query_params.get('external_reference')
        if not order_id:
            return Response(
                {'error': 'validation_error', 'message': 'Informe orderId.'},
                status=status.HTTP_400_BAD_REQUEST,
            )
        try:
            record = di.get_get_order_use_case().execute(order_id)
        except CoreError as e:
            return error_response(e)
        return Response({'status': 'ok', 'orderId': record.order_id, 'orderData': OrderRecordMapper.to_dict(record)})


# ====================================================================
# PAGAMENTOS (endpoints do servidor)
# ====================================================================

class ChargeAPIView(PublicAPIView):
    """Cobrança no Mercado Pago. Repassa o status e o corpo do gateway."""

    def post(self, request):
        serializer = ChargeSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(
                {'error': 'validation_error', 'message': 'Dados do pagamento ou do pedido não foram enviados.'},
                status=status.HTTP_422_UNPROCESSABLE_ENTITY,
            )
        data = serializer.validated_data
        idempotency_key = request.headers.get('X-Idempotency-Key') or data.get('idempotencyKey') or None
        status_code, body = di.get_charge_payment_use_case().execute(
            data['paymentData'], data['order'], idempotency_key
        )
        return Response(body, status=status_code)


class PreferenceAPIView(PublicAPIView):
    """Cria a preferência do Checkout Pro a partir de um payload pronto."""

    def post(self, request):
        preference = request.data.get('preference', request.data) if isinstance(request.data, dict) else None
        if not isinstance(preference, dict):
            return Response(
                {'error': 'validation_error', 'message': 'Preferência inválida.'},
                status=status.HTTP_400_BAD_REQUEST,
            )
        status_code, body = di.get_create_preference_use_case().execute(preference)
        return Response(body, status=status_code)


class AbacatePayBillingAPIView(PublicAPIView):
    """Cobrança PIX na AbacatePay com os itens do carrinho da sessão."""

    def post(self, request):
        serializer = BillingSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        cart = di.get_cart_store(request.session)
        customer = serializer.validated_data.get('customer')
        try:
            billing = di.get_abacatepay_gateway().create_billing(
                cart.get_snapshot(), Customer.from_dict(customer) if customer else None
            )
        except CoreError as e:
            return error_response(e)
        data = billing.get('data') or {}
        return Response({'checkoutUrl': data.get('url'), **billing}, status=status.HTTP_201_CREATED)


# ====================================================================
# WEBHOOK
# ====================================================================

class WebhookMercadoPagoAPIView(PublicAPIView):
    """
    Recebe as notificações (IPN/Webhook) do Mercado Pago.
    Sempre responde 200 para GET/POST: o gateway não deve reenviar por
    causa de um erro nosso. Outros métodos recebem 405.
    """
    http_method_names = ['get', 'post', 'options']

    def get(self, request):
        return self._handle(request)

    def post(self, request):
        return self._handle(request)

    def _handle(self, request):
        try:
            body = request.data if isinstance(request.data, dict) else {}
            topic, payment_id = parse_notification(request.query_params, body)
            signature_valid = verify_mercadopago_signature(
                request.headers.get('x-signature'),
                request.headers.get('x-request-id'),
                payment_id,
                MercadoPagoConfig.from_settings().webhook_secret,
            )
            if signature_valid is False:
                logger.warning("Assinatura inválida na notificação do pagamento %s; processando mesmo assim.", payment_id)

            outcome = di.get_process_notification_use_case().execute(topic, payment_id, signature_valid)
            return Response(outcome.to_dict(), status=status.HTTP_200_OK)
        except Exception:
            logger.exception("Erro inesperado no webhook do Mercado Pago.")
            return Response({'status': 'ok', 'processed': False, 'reason': 'error'}, status=status.HTTP_200_OK)
