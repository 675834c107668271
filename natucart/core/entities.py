from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime
from typing import List, Optional, Dict, Any

# ====================================================================
# ENTIDADES CORE
# Representam os objetos de negócio puros (sem dependência de Django).
# ====================================================================

CENTAVOS = Decimal('0.01')


def money(value) -> Decimal:
    """Converte um valor (str, int, float, Decimal) para Decimal com duas casas."""
    if value is None or value == '':
        return Decimal('0.00')
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(CENTAVOS, rounding=ROUND_HALF_UP)


def only_digits(value) -> str:
    """Remove tudo que não for dígito (CEP, CPF, telefone)."""
    return ''.join(ch for ch in str(value or '') if ch.isdigit())


class OrderStatus:
    """Status possíveis de um pedido persistido."""
    PENDING_PAYMENT = 'pending_payment'
    APPROVED = 'approved'
    SHIPPING_CREATED = 'shipping_created'
    REJECTED = 'rejected'
    CANCELLED = 'cancelled'

    ALL = (PENDING_PAYMENT, APPROVED, SHIPPING_CREATED, REJECTED, CANCELLED)


@dataclass(frozen=True)
class Product:
    """Produto do catálogo estático da loja."""
    id: str
    name: str
    sku: str
    price: Decimal


# Catálogo fixo da Natucart (um único produto em três embalagens).
CATALOG: Dict[str, Product] = {
    'natucart-single': Product('natucart-single', 'Natucart - 1 Frasco', 'NATUCART-1', Decimal('99.90')),
    'natucart-trio': Product('natucart-trio', 'Natucart - 3 Frascos', 'NATUCART-3', Decimal('255.00')),
    'natucart-six': Product('natucart-six', 'Natucart - 6 Frascos', 'NATUCART-6', Decimal('450.00')),
}


@dataclass
class CartItem:
    """Entidade que representa um item no carrinho (e o snapshot dele no pedido)."""
    id: str
    name: str
    sku: str
    unit_price: Decimal
    quantity: int = 1

    @property
    def line_total(self) -> Decimal:
        return money(self.unit_price * self.quantity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'sku': self.sku,
            'price': str(self.unit_price),
            'quantity': self.quantity,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CartItem':
        return cls(
            id=data.get('id', ''),
            name=data.get('name', ''),
            sku=data.get('sku', ''),
            unit_price=money(data.get('price', data.get('unitPrice'))),
            quantity=int(data.get('quantity', 1)),
        )


@dataclass
class FreightOption:
    """Uma opção de frete cotada por uma transportadora."""
    service: str
    service_code: str
    carrier: str
    price: Decimal
    delivery_time_days: int = 0
    postal_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'service': self.service,
            'serviceCode': self.service_code,
            'carrier': self.carrier,
            'price': str(self.price),
            'deliveryTime': self.delivery_time_days,
            'postalCode': self.postal_code,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FreightOption':
        return cls(
            service=data.get('service', ''),
            service_code=str(data.get('serviceCode', '')),
            carrier=data.get('carrier', ''),
            price=money(data.get('price')),
            delivery_time_days=int(data.get('deliveryTime') or 0),
            postal_code=data.get('postalCode'),
        )


@dataclass
class FreightQuote:
    """Resultado de uma cotação: várias opções, nenhuma escolhida automaticamente."""
    options: List[FreightOption]
    postal_code: str

    @property
    def cheapest(self) -> Optional[FreightOption]:
        """Sugestão para a interface; nunca é vinculada ao carrinho sem escolha explícita."""
        if not self.options:
            return None
        return min(self.options, key=lambda option: option.price)

    def find(self, service_code: str) -> Optional[FreightOption]:
        return next((o for o in self.options if str(o.service_code) == str(service_code)), None)


@dataclass
class CartSnapshot:
    """Fotografia imutável do carrinho em um instante."""
    items: List[CartItem] = field(default_factory=list)
    subtotal: Decimal = Decimal('0.00')
    freight: Optional[FreightOption] = None
    total: Decimal = Decimal('0.00')

    @property
    def is_empty(self) -> bool:
        return not self.items


@dataclass
class Customer:
    """Dados do comprador."""
    name: str = ''
    email: str = ''
    phone: str = ''
    tax_id: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'email': self.email, 'cellphone': self.phone, 'taxId': self.tax_id}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Customer':
        data = data or {}
        return cls(
            name=data.get('name') or '',
            email=data.get('email') or '',
            phone=data.get('cellphone') or data.get('phone') or '',
            tax_id=data.get('taxId') or '',
        )


@dataclass
class Address:
    """Entidade do Endereço de Entrega."""
    postal_code: str = ''
    state: str = ''
    city: str = ''
    street: str = ''
    number: str = ''
    district: str = ''
    complement: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'postalCode': self.postal_code,
            'state': self.state,
            'city': self.city,
            'street': self.street,
            'number': self.number,
            'district': self.district,
            'complement': self.complement,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'Address':
        data = data or {}
        return cls(
            postal_code=data.get('postalCode') or '',
            state=data.get('state') or '',
            city=data.get('city') or '',
            street=data.get('street') or '',
            number=str(data.get('number') or ''),
            district=data.get('district') or '',
            complement=data.get('complement') or '',
        )


@dataclass
class OrderTotals:
    subtotal: Decimal
    freight: Decimal
    total: Decimal

    @classmethod
    def from_values(cls, subtotal, freight) -> 'OrderTotals':
        subtotal, freight = money(subtotal), money(freight)
        return cls(subtotal=subtotal, freight=freight, total=subtotal + freight)

    def to_dict(self) -> Dict[str, Any]:
        return {'subtotal': str(self.subtotal), 'freight': str(self.freight), 'total': str(self.total)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'OrderTotals':
        data = data or {}
        return cls.from_values(data.get('subtotal'), data.get('freight'))


@dataclass
class OrderContext:
    """
    Agregado enviado ao pagamento. É um snapshot congelado do carrinho:
    alterações posteriores no carrinho não afetam um pedido já montado.
    """
    order_id: str
    customer: Customer
    address: Address
    freight: FreightOption
    items: List[CartItem]
    totals: OrderTotals
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def external_reference(self) -> str:
        return self.order_id

    def to_dict(self) -> Dict[str, Any]:
        """Formato JSON (camelCase) trocado com os endpoints de pedido e de cobrança."""
        return {
            'orderId': self.order_id,
            'externalReference': self.external_reference,
            'customer': self.customer.to_dict(),
            'address': self.address.to_dict(),
            'freight': self.freight.to_dict() if self.freight else None,
            'items': [item.to_dict() for item in self.items],
            'totals': self.totals.to_dict(),
            'transactionAmount': str(self.totals.total),
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OrderContext':
        freight = data.get('freight')
        return cls(
            order_id=data.get('orderId') or data.get('externalReference') or '',
            customer=Customer.from_dict(data.get('customer')),
            address=Address.from_dict(data.get('address')),
            freight=FreightOption.from_dict(freight) if freight else None,
            items=[CartItem.from_dict(item) for item in data.get('items') or []],
            totals=OrderTotals.from_dict(data.get('totals')),
            metadata=dict(data.get('metadata') or {}),
        )


@dataclass
class PackageProfile:
    """Peso (kg) e dimensões (cm) do pacote de uma linha do carrinho."""
    weight_kg: Decimal
    width_cm: Decimal
    height_cm: Decimal
    length_cm: Decimal


@dataclass
class PaymentInfo:
    """Estado de um pagamento conforme consultado no gateway."""
    payment_id: str
    status: str
    status_detail: Optional[str] = None
    external_reference: Optional[str] = None
    payment_method_id: Optional[str] = None
    transaction_amount: Optional[Decimal] = None
    date_approved: Optional[str] = None

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            'id': self.payment_id,
            'status': self.status,
            'statusDetail': self.status_detail,
            'paymentMethodId': self.payment_method_id,
            'transactionAmount': str(self.transaction_amount) if self.transaction_amount is not None else None,
            'dateApproved': self.date_approved,
        }


@dataclass
class ShipmentResult:
    """Resultado da criação de envio na transportadora."""
    shipment_id: str
    label_url: Optional[str] = None
    label_generated: bool = False

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            'shipmentId': self.shipment_id,
            'labelUrl': self.label_url,
            'labelGenerated': self.label_generated,
        }


@dataclass
class OrderRecord:
    """Pedido persistido no servidor. Nunca é apagado; atualizações mesclam campos."""
    order_id: str
    status: str
    customer: Customer
    address: Address
    items: List[CartItem]
    freight: Optional[FreightOption]
    totals: OrderTotals
    payment: Optional[Dict[str, Any]] = None
    shipment: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def external_reference(self) -> str:
        return self.order_id
