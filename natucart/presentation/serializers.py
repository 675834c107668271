from dataclasses import asdict

from rest_framework import serializers

from natucart.core.checkout import CardData, PaymentMethod, PaymentRequest
from natucart.core.entities import Address, Customer


# ====================================================================
# SERIALIZERS DO CARRINHO E FRETE
# ====================================================================

class CartItemInputSerializer(serializers.Serializer):
    productId = serializers.CharField(max_length=64)
    quantity = serializers.IntegerField(required=False, default=1)


class FreightQuoteInputSerializer(serializers.Serializer):
    postalCode = serializers.CharField(max_length=9)
    address = serializers.DictField(required=False)


class FreightSelectInputSerializer(serializers.Serializer):
    serviceCode = serializers.CharField(max_length=64)


def cart_snapshot_data(snapshot) -> dict:
    """Representação JSON do CartSnapshot (mesmo formato camelCase dos pedidos)."""
    return {
        'items': [item.to_dict() for item in snapshot.items],
        'subtotal': str(snapshot.subtotal),
        'freight': snapshot.freight.to_dict() if snapshot.freight else None,
        'total': str(snapshot.total),
        'itemsCount': sum(item.quantity for item in snapshot.items),
    }


# ====================================================================
# SERIALIZERS DE CHECKOUT
# ====================================================================

class CustomerSerializer(serializers.Serializer):
    """
    Só checa o formato. As regras (email com @, CPF com 11 dígitos...)
    ficam no OrderDraftBuilder, que devolve o campo exato com erro.
    """
    name = serializers.CharField(required=False, allow_blank=True, default='')
    email = serializers.CharField(required=False, allow_blank=True, default='')
    cellphone = serializers.CharField(required=False, allow_blank=True, default='')
    taxId = serializers.CharField(required=False, allow_blank=True, default='')


class AddressSerializer(serializers.Serializer):
    postalCode = serializers.CharField(required=False, allow_blank=True, default='')
    state = serializers.CharField(required=False, allow_blank=True, default='')
    city = serializers.CharField(required=False, allow_blank=True, default='')
    street = serializers.CharField(required=False, allow_blank=True, default='')
    number = serializers.CharField(required=False, allow_blank=True, default='')
    district = serializers.CharField(required=False, allow_blank=True, default='')
    complement = serializers.CharField(required=False, allow_blank=True, default='')


class CardSerializer(serializers.Serializer):
    number = serializers.CharField(max_length=19)
    holderName = serializers.CharField(max_length=255)
    expirationMonth = serializers.CharField(max_length=2)
    expirationYear = serializers.CharField(max_length=4)
    securityCode = serializers.CharField(max_length=4)


class PaymentSerializer(serializers.Serializer):
    METHOD_CHOICES = [
        (PaymentMethod.CARD, 'Cartão de Crédito'),
        (PaymentMethod.PIX, 'PIX'),
        (PaymentMethod.BOLETO, 'Boleto'),
    ]
    method = serializers.ChoiceField(choices=METHOD_CHOICES)
    card = CardSerializer(required=False)
    installments = serializers.IntegerField(required=False, default=1, min_value=1)
    paymentMethodId = serializers.CharField(required=False, allow_blank=True)
    issuerId = serializers.CharField(required=False, allow_blank=True)
    idempotencyKey = serializers.CharField(required=False, allow_blank=True)

    @staticmethod
    def to_request(data) -> PaymentRequest:
        card = data.get('card')
        return PaymentRequest(
            method=data['method'],
            card=CardData(
                number=card['number'],
                holder_name=card['holderName'],
                expiration_month=card['expirationMonth'],
                expiration_year=card['expirationYear'],
                security_code=card['securityCode'],
            ) if card else None,
            installments=data['installments'],
            payment_method_id=data.get('paymentMethodId') or None,
            issuer_id=data.get('issuerId') or None,
            idempotency_key=data.get('idempotencyKey') or None,
        )


class CheckoutSerializer(serializers.Serializer):
    """Formulário de checkout: cliente, endereço e forma de pagamento."""
    customer = CustomerSerializer(required=False)
    address = AddressSerializer(required=False)
    payment = PaymentSerializer()
    retry = serializers.BooleanField(required=False, default=False)

    def customer_entity(self) -> Customer:
        return Customer.from_dict(self.validated_data.get('customer'))

    def address_entity(self) -> Address:
        return Address.from_dict(self.validated_data.get('address'))

    def payment_request(self) -> PaymentRequest:
        return PaymentSerializer.to_request(self.validated_data['payment'])


class RedirectCheckoutSerializer(serializers.Serializer):
    customer = CustomerSerializer(required=False)
    address = AddressSerializer(required=False)


def checkout_result_data(result) -> dict:
    """Serializa o CheckoutResult com os eventos marcados por `kind`."""
    return {
        'state': result.state,
        'orderId': result.order_id,
        'events': [{'kind': event.kind, **asdict(event)} for event in result.events],
    }


# ====================================================================
# SERIALIZERS DE PEDIDO E PAGAMENTO (endpoints do backend)
# ====================================================================

class DraftSaveSerializer(serializers.Serializer):
    orderId = serializers.CharField(max_length=64)
    orderData = serializers.DictField()


class ChargeSerializer(serializers.Serializer):
    paymentData = serializers.DictField()
    order = serializers.DictField()
    idempotencyKey = serializers.CharField(required=False, allow_blank=True)


class BillingSerializer(serializers.Serializer):
    customer = CustomerSerializer(required=False)
