"""
Mapeadores (Mappers) para converter entre:
1. Modelos do Django ORM
2. Entidades de Domínio (natucart.core.entities)
3. O JSON camelCase exposto pela API (orderId, status, customer, ...)
"""
from typing import Any, Dict, Optional

from django.apps import apps

# Importa as entidades do Core
from natucart.core.entities import (
    Address,
    CartItem,
    Customer,
    FreightOption,
    OrderContext,
    OrderRecord,
    OrderTotals,
)


# ====================================================================
# Uso de apps.get_model para evitar dependências circulares
# ====================================================================

def get_order_model():
    """Retorna o modelo de pedidos de forma segura (lazy loading)."""
    return apps.get_model('infrastructure', 'OrderRecordModel')


class OrderRecordMapper:
    """Converte pedidos entre Model, Entidade e JSON."""

    @staticmethod
    def to_entity(model) -> Optional[OrderRecord]:
        if not model:
            return None
        return OrderRecord(
            order_id=model.order_id,
            status=model.status,
            customer=Customer.from_dict(model.customer),
            address=Address.from_dict(model.address),
            items=[CartItem.from_dict(item) for item in model.items or []],
            freight=FreightOption.from_dict(model.freight) if model.freight else None,
            totals=OrderTotals.from_dict(model.totals),
            payment=model.payment,
            shipment=model.shipment,
            metadata=model.metadata or {},
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def apply_context(model, context: OrderContext):
        """Copia o snapshot do OrderContext para o model (sem tocar status/pagamento/envio)."""
        model.customer = context.customer.to_dict()
        model.address = context.address.to_dict()
        model.items = [item.to_dict() for item in context.items]
        model.freight = context.freight.to_dict() if context.freight else None
        model.totals = context.totals.to_dict()
        model.metadata = {**(model.metadata or {}), **context.metadata}
        model.total = context.totals.total
        return model

    @staticmethod
    def to_dict(record: OrderRecord) -> Dict[str, Any]:
        """Formato persistido/exposto do pedido."""
        data = {
            'orderId': record.order_id,
            'externalReference': record.external_reference,
            'status': record.status,
            'customer': record.customer.to_dict(),
            'address': record.address.to_dict(),
            'items': [item.to_dict() for item in record.items],
            'freight': record.freight.to_dict() if record.freight else None,
            'totals': record.totals.to_dict(),
            'metadata': record.metadata,
            'createdAt': record.created_at.isoformat() if record.created_at else None,
            'updatedAt': record.updated_at.isoformat() if record.updated_at else None,
        }
        if record.payment is not None:
            data['payment'] = record.payment
        if record.shipment is not None:
            data['shipment'] = record.shipment
        return data
