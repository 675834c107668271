"""
Camada de Infraestrutura: Implementação do Repositório de Pedidos.

Traduz as operações abstratas da porta IOrderRepository em chamadas ao
Django ORM. Pedidos nunca são apagados: toda atualização mescla campos.
"""
import logging
from typing import Optional

from django.db import DatabaseError, transaction

# Importações da Camada CORE (ENTIDADES e INTERFACES)
from natucart.core.entities import OrderContext, OrderRecord, OrderStatus
from natucart.core.exceptions import InvalidInputError, OrderLockedError, OrderNotFoundError, StorageError
from natucart.core.ports import IOrderRepository

from .mappers import OrderRecordMapper, get_order_model

logger = logging.getLogger(__name__)

# Campos que podem ser mesclados depois do rascunho
_MERGEABLE_FIELDS = {'status', 'payment', 'shipment', 'metadata'}


class OrderRepositoryDjango(IOrderRepository):
    """Implementação do OrderRepository usando o Django ORM."""

    # Propriedade para carregar o modelo de forma LAZY
    @property
    def OrderModel(self):
        return get_order_model()

    def get(self, order_id: str) -> Optional[OrderRecord]:
        try:
            model = self.OrderModel.objects.get(order_id=order_id)
        except self.OrderModel.DoesNotExist:
            return None
        except DatabaseError as e:
            logger.error("Erro ao buscar o pedido %s: %s", order_id, e)
            raise StorageError(f"Erro ao buscar o pedido {order_id}.") from e
        return OrderRecordMapper.to_entity(model)

    def save_draft(self, context: OrderContext) -> OrderRecord:
        """
        Cria o pedido como pending_payment. Um pedido existente só é regravado
        enquanto ainda está em pending_payment; depois disso o snapshot é fixo.
        """
        try:
            with transaction.atomic():
                model = self.OrderModel.objects.select_for_update().filter(order_id=context.order_id).first()
                if model is None:
                    model = self.OrderModel(order_id=context.order_id, status=OrderStatus.PENDING_PAYMENT)
                elif model.status != OrderStatus.PENDING_PAYMENT:
                    logger.warning(
                        "Rascunho recusado: pedido %s já está em %s.", context.order_id, model.status
                    )
                    raise OrderLockedError(f"Pedido {context.order_id} já está em {model.status}.")
                OrderRecordMapper.apply_context(model, context)
                model.save()
        except DatabaseError as e:
            logger.error("Erro ao salvar o rascunho %s: %s", context.order_id, e)
            raise StorageError(f"Erro ao salvar o pedido {context.order_id}.") from e
        return OrderRecordMapper.to_entity(model)

    def merge(self, order_id: str, **changes) -> OrderRecord:
        unknown = set(changes) - _MERGEABLE_FIELDS
        if unknown:
            raise InvalidInputError(f"Campos não atualizáveis: {', '.join(sorted(unknown))}.")
        status = changes.get('status')
        if status is not None and status not in OrderStatus.ALL:
            raise InvalidInputError(f"Status de pedido inválido: {status}.", field='status')

        try:
            with transaction.atomic():
                try:
                    model = self.OrderModel.objects.select_for_update().get(order_id=order_id)
                except self.OrderModel.DoesNotExist:
                    raise OrderNotFoundError(f"Pedido {order_id} não encontrado.")

                for name, value in changes.items():
                    current = getattr(model, name)
                    # Dicionários são mesclados (última escrita vence por chave).
                    if isinstance(current, dict) and isinstance(value, dict):
                        value = {**current, **value}
                    setattr(model, name, value)
                model.save()
        except DatabaseError as e:
            logger.error("Erro ao atualizar o pedido %s: %s", order_id, e)
            raise StorageError(f"Erro ao atualizar o pedido {order_id}.") from e

        return OrderRecordMapper.to_entity(model)
