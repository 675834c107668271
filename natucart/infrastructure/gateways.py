import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

import requests

# Importa os Protocols e Entidades da camada Core
from natucart.core.entities import (
    Address,
    CartItem,
    CartSnapshot,
    Customer,
    FreightOption,
    OrderContext,
    OrderRecord,
    PackageProfile,
    PaymentInfo,
    money,
    only_digits,
)
from natucart.core.exceptions import (
    EmptyCartError,
    ExternalServiceError,
    GatewayConnectionError,
    InvalidInputError,
    NotFoundError,
)
from natucart.core.ports import (
    ICardTokenizer,
    IDraftStore,
    IFreightCarrier,
    INotificationRelay,
    IPaymentBackend,
    IPaymentGateway,
    IShipmentCarrier,
)

from .config import (
    AbacatePayConfig,
    FrenetConfig,
    MelhorEnvioConfig,
    MercadoPagoConfig,
    RelayConfig,
)

logger = logging.getLogger(__name__)

Packages = List[Tuple[CartItem, PackageProfile]]


def _json_or_error(response, service: str) -> Any:
    """Decodifica o corpo JSON; resposta ilegível vira ExternalServiceError (500)."""
    try:
        return response.json()
    except ValueError as e:
        logger.error("[%s] Resposta inválida (HTTP %s): %s", service, response.status_code, response.text[:500])
        raise ExternalServiceError(
            f"Resposta inválida do serviço {service}.",
            service=service,
            status_code=500,
            detail=response.text[:500],
        ) from e


def _unwrap(data: Any) -> Any:
    """Respostas que passam por proxy podem vir dentro de data/body/result."""
    if isinstance(data, dict):
        for key in ('data', 'body', 'result'):
            if key in data and isinstance(data[key], (dict, list)):
                return data[key]
    return data


def _to_decimal(value) -> Decimal:
    try:
        return Decimal(str(value)) if value not in (None, '') else Decimal('0')
    except InvalidOperation:
        return Decimal('0')


def _to_int(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


# ====================================================================
# MERCADO PAGO: Pagamentos, consulta e preferências.
# ====================================================================

class MercadoPagoGateway(IPaymentGateway):
    """
    Gateway para comunicação com a API de Pagamento do Mercado Pago.
    Repassa o status HTTP e o corpo sem interpretar: a normalização fica
    com o ChargePaymentUseCase.
    """
    service = 'mercadopago'

    def __init__(self, config: MercadoPagoConfig):
        self.config = config
        if not config.access_token:
            logger.warning("MP_ACCESS_TOKEN não configurado. Pagamentos reais falharão.")

    def _headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config.access_token}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    def _post(self, path: str, payload: Dict[str, Any], idempotency_key: Optional[str] = None):
        try:
            response = requests.post(
                f"{self.config.base_url}{path}",
                json=payload,
                headers=self._headers(idempotency_key),
                timeout=self.config.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error("Erro de conexão com o Mercado Pago (%s): %s", path, e)
            raise GatewayConnectionError(
                f"Erro de conexão com o Mercado Pago: {e}", service=self.service
            ) from e
        return response.status_code, _json_or_error(response, self.service)

    def create_payment(self, payload: Dict[str, Any], idempotency_key: str) -> Tuple[int, Dict[str, Any]]:
        status_code, body = self._post("/v1/payments", payload, idempotency_key)
        logger.info(
            "Mercado Pago respondeu %s para %s (status=%s).",
            status_code, payload.get('external_reference'), body.get('status') if isinstance(body, dict) else None,
        )
        return status_code, body

    def create_preference(self, preference: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        return self._post("/checkout/preferences", preference)

    def get_payment(self, payment_id: str) -> PaymentInfo:
        try:
            response = requests.get(
                f"{self.config.base_url}/v1/payments/{payment_id}",
                headers=self._headers(),
                timeout=self.config.lookup_timeout,
            )
        except requests.exceptions.RequestException as e:
            raise GatewayConnectionError(
                f"Erro de conexão com o Mercado Pago: {e}", service=self.service
            ) from e

        if response.status_code == 404:
            raise NotFoundError(f"Pagamento {payment_id} não encontrado no Mercado Pago.")
        if response.status_code != 200:
            raise ExternalServiceError(
                f"Mercado Pago respondeu {response.status_code} ao consultar o pagamento {payment_id}.",
                service=self.service,
                status_code=response.status_code,
                detail=response.text[:500],
            )

        data = _json_or_error(response, self.service)
        amount = data.get('transaction_amount')
        return PaymentInfo(
            payment_id=str(data.get('id', payment_id)),
            status=data.get('status') or 'unknown',
            status_detail=data.get('status_detail'),
            external_reference=data.get('external_reference'),
            payment_method_id=data.get('payment_method_id'),
            transaction_amount=money(amount) if amount is not None else None,
            date_approved=data.get('date_approved'),
        )


class MercadoPagoCardTokenizer(ICardTokenizer):
    """Tokeniza o cartão com a chave pública. Nenhum dado do cartão é registrado em log."""

    def __init__(self, config: MercadoPagoConfig):
        self.config = config

    def tokenize(self, card) -> str:
        payload = {
            "card_number": only_digits(card.number),
            "cardholder": {"name": card.holder_name},
            "expiration_month": _to_int(card.expiration_month),
            "expiration_year": _to_int(card.expiration_year),
            "security_code": card.security_code,
        }
        try:
            response = requests.post(
                f"{self.config.base_url}/v1/card_tokens",
                params={"public_key": self.config.public_key},
                json=payload,
                timeout=self.config.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise GatewayConnectionError(
                f"Erro de conexão com o Mercado Pago: {e}", service='mercadopago'
            ) from e

        data = _json_or_error(response, 'mercadopago')
        if response.status_code >= 300 or not data.get('id'):
            logger.warning("Tokenização recusada (HTTP %s).", response.status_code)
            raise InvalidInputError(
                data.get('message') or "Dados do cartão inválidos.", field='card', section='payment'
            )
        return data['id']


# ====================================================================
# ABACATEPAY: Cobrança PIX alternativa.
# ====================================================================

class AbacatePayGateway:
    """Cria cobranças PIX de pagamento único na AbacatePay."""
    service = 'abacatepay'

    def __init__(self, config: AbacatePayConfig):
        self.config = config

    @staticmethod
    def build_products(items: List[CartItem]) -> List[Dict[str, Any]]:
        if not items:
            raise EmptyCartError("Carrinho vazio. Adicione itens antes de criar a cobrança.")
        return [
            {
                "externalId": item.sku or item.id,
                "name": item.name,
                "description": "",
                "quantity": item.quantity,
                # A API trabalha em centavos
                "price": int(money(item.unit_price) * 100),
            }
            for item in items
        ]

    def create_billing(self, cart_snapshot: CartSnapshot, customer: Optional[Customer] = None) -> Dict[str, Any]:
        if not self.config.api_key:
            raise ExternalServiceError("ABACATEPAY_API_KEY não configurada.", service=self.service)

        body = {
            "frequency": "ONE_TIME",
            "methods": ["PIX"],
            "products": self.build_products(cart_snapshot.items),
            "returnUrl": self.config.return_url,
            "completionUrl": self.config.completion_url,
            "customer": customer.to_dict() if customer else {},
        }
        try:
            response = requests.post(
                f"{self.config.base_url}/billing/create",
                json=body,
                headers={
                    "Authorization": f"Bearer {self.config.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.config.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise GatewayConnectionError(f"Erro de conexão com a AbacatePay: {e}", service=self.service) from e

        data = _json_or_error(response, self.service)
        if not response.ok:
            message = data.get('error') or data.get('message') or response.reason
            raise ExternalServiceError(
                f"AbacatePay error {response.status_code}: {message}",
                service=self.service,
                status_code=response.status_code,
                detail=data,
            )
        return data


# ====================================================================
# TRANSPORTADORAS: Cotação de frete e criação de envios.
# ====================================================================

class MelhorEnvioGateway(IFreightCarrier, IShipmentCarrier):
    """
    Cotação, envio e etiquetas no Melhor Envio.
    Sem token configurado, opera em modo simulado (PAC e SEDEX fixos).
    """
    name = 'melhorenvio'

    def __init__(self, config: MelhorEnvioConfig):
        self.config = config

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.token}",
            "User-Agent": "Natucart/1.0",
        }

    def _post(self, path: str, payload: Any) -> Any:
        try:
            response = requests.post(
                f"{self.config.base_url}{path}",
                json=payload,
                headers=self._headers(),
                timeout=self.config.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error("[Melhor Envio] Erro de conexão em %s: %s", path, e)
            raise GatewayConnectionError(f"Erro de conexão com o Melhor Envio: {e}", service=self.name) from e

        if response.status_code not in (200, 201):
            logger.error("[Melhor Envio] HTTP %s em %s: %s", response.status_code, path, response.text[:500])
            raise ExternalServiceError(
                f"Melhor Envio error {response.status_code}.",
                service=self.name,
                status_code=response.status_code,
                detail=response.text[:500],
            )
        return _unwrap(_json_or_error(response, self.name))

    # --- Cotação ---

    @staticmethod
    def _mock_options(postal_code: str) -> List[FreightOption]:
        return [
            FreightOption(service='PAC', service_code='PAC', carrier='Correios',
                          price=money('15.50'), delivery_time_days=7, postal_code=postal_code),
            FreightOption(service='SEDEX', service_code='SEDEX', carrier='Correios',
                          price=money('25.90'), delivery_time_days=3, postal_code=postal_code),
        ]

    def build_quote_payload(self, postal_code: str, packages: Packages, address: Optional[Address] = None):
        to = {"postal_code": postal_code}
        if address:
            for key, value in (
                ('address', address.street), ('number', address.number), ('complement', address.complement),
                ('district', address.district), ('city', address.city), ('state', address.state),
            ):
                if value:
                    to[key] = value
        return {
            "from": {"postal_code": self.config.seller.postal_code},
            "to": to,
            # Um produto por item, com as dimensões do pacote completo
            "products": [
                {
                    "id": item.sku or item.id,
                    "width": float(profile.width_cm),
                    "height": float(profile.height_cm),
                    "length": float(profile.length_cm),
                    "weight": float(profile.weight_kg),
                    "insurance_value": float(item.line_total),
                    "quantity": item.quantity,
                }
                for item, profile in packages
            ],
            "services": self.config.services,
        }

    def quote(self, postal_code: str, packages: Packages, address: Optional[Address] = None) -> List[FreightOption]:
        if self.config.mock_mode:
            logger.info("[Melhor Envio] Executando em modo mock.")
            return self._mock_options(postal_code)

        data = self._post("/me/shipment/calculate", self.build_quote_payload(postal_code, packages, address))
        if isinstance(data, dict):
            data = data.get('services') or ([data] if data.get('id') else [])

        options = []
        for srv in data or []:
            price = _to_decimal(srv.get('price')) or _to_decimal(srv.get('custom_price'))
            if price <= 0 or srv.get('error'):
                continue
            delivery_range = srv.get('delivery_range') or {}
            options.append(FreightOption(
                service=srv.get('name') or 'Serviço de Entrega',
                service_code=str(srv.get('id') or (srv.get('name') or '').upper()),
                carrier=(srv.get('company') or {}).get('name') or 'Transportadora',
                price=money(price),
                delivery_time_days=_to_int(srv.get('delivery_time')) or _to_int(delivery_range.get('min'))
                or _to_int(delivery_range.get('max')),
                postal_code=postal_code,
            ))
        logger.info("[Melhor Envio] %s opções de frete para o CEP %s.", len(options), postal_code)
        return options

    # --- Envio e etiqueta ---

    def build_shipment_payload(self, order: OrderRecord, packages: Packages) -> Dict[str, Any]:
        seller = self.config.seller
        customer, address = order.customer, order.address
        return {
            "service": order.freight.service_code if order.freight else '1',
            "from": {
                "name": seller.name,
                "email": seller.email,
                "country_id": "BR",
                "postal_code": seller.postal_code,
            },
            "to": {
                "name": customer.name,
                "phone": only_digits(customer.phone),
                "email": customer.email,
                "document": only_digits(customer.tax_id),
                "address": address.street,
                "complement": address.complement,
                "number": address.number,
                "district": address.district,
                "city": address.city,
                "state_abbr": address.state,
                "country_id": "BR",
                "postal_code": only_digits(address.postal_code),
            },
            "products": [
                {
                    "name": item.name,
                    "quantity": item.quantity,
                    "unitary_value": float(item.unit_price),
                    "weight": float(profile.weight_kg),
                    "width": float(profile.width_cm),
                    "height": float(profile.height_cm),
                    "length": float(profile.length_cm),
                }
                for item, profile in packages
            ],
            "volumes": len(packages),
            "options": {
                "insurance_value": float(order.totals.total),
                "receipt": False,
                "own_hand": False,
                "platform": "NATUCART",
            },
        }

    def create_shipment(self, order: OrderRecord, packages: Packages) -> str:
        if self.config.mock_mode:
            logger.info("[Melhor Envio] Envio simulado para o pedido %s.", order.order_id)
            return f"mock-{order.order_id}"

        data = self._post("/me/cart", self.build_shipment_payload(order, packages))
        shipment_id = data.get('id') if isinstance(data, dict) else None
        if not shipment_id:
            raise ExternalServiceError("Resposta sem ID de envio.", service=self.name, detail=data)
        return str(shipment_id)

    def generate_label(self, shipment_id: str) -> bool:
        if self.config.mock_mode:
            return False
        self._post("/me/shipment/generate", {"orders": [shipment_id]})
        return True

    def get_label_url(self, shipment_id: str) -> Optional[str]:
        if self.config.mock_mode:
            return None
        data = self._post("/me/shipment/print", {"orders": [shipment_id]})
        return data.get('url') if isinstance(data, dict) else None


class FrenetGateway(IFreightCarrier):
    """Cotação na Frenet (somente a primeira opção disponível)."""
    name = 'frenet'

    def __init__(self, config: FrenetConfig):
        self.config = config

    def quote(self, postal_code: str, packages: Packages, address: Optional[Address] = None) -> List[FreightOption]:
        if self.config.mock_mode:
            logger.info("[Frenet] Executando em modo mock.")
            return [FreightOption(service='Frenet Expresso', service_code='FRENET', carrier='Frenet',
                                  price=money('29.90'), delivery_time_days=5, postal_code=postal_code)]

        body = {
            "SellerCEP": self.config.seller_postal_code,
            "RecipientCEP": postal_code,
            "ShipmentInvoiceValue": float(sum((item.line_total for item, _ in packages), Decimal('0'))),
            "ShippingItemArray": [
                {
                    "Peso": float(profile.weight_kg),
                    "Altura": float(profile.height_cm),
                    "Largura": float(profile.width_cm),
                    "Comprimento": float(profile.length_cm),
                    "Valor": float(item.unit_price),
                    "Quantidade": item.quantity,
                    "SKU": item.sku or item.id,
                }
                for item, profile in packages
            ],
        }
        try:
            response = requests.post(
                self.config.base_url,
                json=body,
                headers={
                    "Content-Type": "application/json",
                    "token": self.config.token,
                    "senha": self.config.password,
                },
                timeout=self.config.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise GatewayConnectionError(f"Erro de conexão com a Frenet: {e}", service=self.name) from e

        if not response.ok:
            raise ExternalServiceError(
                f"Frenet error {response.status_code}.",
                service=self.name,
                status_code=response.status_code,
                detail=response.text[:500],
            )

        data = _json_or_error(response, self.name)
        services = data.get('Services') if isinstance(data, dict) else None
        service = next((srv for srv in services or [] if srv and srv.get('ServiceAvailable')), None)
        if service is None:
            return []
        return [FreightOption(
            service=service.get('ServiceDescription') or 'Frenet',
            service_code=str(service.get('ServiceCode') or service.get('ServiceDescription') or 'FRENET'),
            carrier=service.get('Carrier') or 'Frenet',
            price=money(_to_decimal(service.get('ShippingPrice'))),
            delivery_time_days=_to_int(service.get('DeliveryTime')),
            postal_code=postal_code,
        )]


# ====================================================================
# AUTOMAÇÃO: Cópia das notificações para o n8n.
# ====================================================================

class WorkflowRelayGateway(INotificationRelay):
    """Repassa o resumo das notificações de pagamento para o webhook do n8n."""

    def __init__(self, config: RelayConfig):
        self.config = config

    def forward(self, summary: Dict[str, Any]):
        if not self.config.enabled:
            return
        try:
            response = requests.post(self.config.url, json=summary, timeout=self.config.timeout)
        except requests.exceptions.RequestException as e:
            raise GatewayConnectionError(f"Erro ao repassar notificação: {e}", service='relay') from e
        if not response.ok:
            raise ExternalServiceError(
                f"Automação respondeu {response.status_code}.",
                service='relay',
                status_code=response.status_code,
            )


# ====================================================================
# LOJA REMOTA: Backend HTTP do próprio Natucart (rascunho e pagamento).
# ====================================================================

class StorefrontBackendClient(IDraftStore, IPaymentBackend):
    """
    Cliente dos endpoints do backend da loja, usado quando o checkout roda
    fora do processo que guarda os pedidos.
    """
    service = 'natucart'

    def __init__(self, base_url: str, timeout: int = 15):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    def _post(self, path: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None):
        try:
            response = requests.post(
                f"{self.base_url}{path}", json=payload, headers=headers or {}, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise GatewayConnectionError(f"Erro de conexão com o backend da loja: {e}", service=self.service) from e
        return response.status_code, _json_or_error(response, self.service)

    def save_draft(self, context: OrderContext) -> Dict[str, Any]:
        status_code, body = self._post(
            "/api/pedidos/rascunho/", {"orderId": context.order_id, "orderData": context.to_dict()}
        )
        if status_code >= 400:
            raise ExternalServiceError(
                body.get('message') or "Não foi possível salvar o pedido.",
                service=self.service,
                status_code=status_code,
                detail=body,
            )
        return body

    def charge(self, payment_data, order, idempotency_key):
        return self._post(
            "/api/pagamentos/cobrar/",
            {"paymentData": payment_data, "order": order},
            headers={"X-Idempotency-Key": idempotency_key},
        )

    def create_preference(self, preference):
        return self._post("/api/pagamentos/preferencia/", preference)
