"""
Carrinho da sessão: itens + frete escolhido, com totais sempre recalculados.

Cada instância pertence a uma única sessão. O estado é recarregado do
armazenamento na construção e regravado por completo a cada mutação.
"""
import logging
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from .entities import CATALOG, CartItem, CartSnapshot, FreightOption, Product, money
from .exceptions import StorageError
from .ports import ICartStorage

Subscriber = Callable[[CartSnapshot], None]


class CartStore:
    """
    Gerencia os itens do carrinho e o frete selecionado.

    Toda mutação: recalcula subtotal/total, persiste o estado e notifica os
    assinantes (na ordem de inscrição, de forma síncrona).
    """

    def __init__(
        self,
        storage: ICartStorage,
        catalog: Optional[Dict[str, Product]] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.storage = storage
        self.catalog = catalog if catalog is not None else CATALOG
        self.logger = logger or logging.getLogger(__name__)
        self._items: Dict[str, CartItem] = {}
        self._freight: Optional[FreightOption] = None
        self._subscribers: List[Subscriber] = []
        self._load()

    # ------------------------------------------------------------------
    # Mutações
    # ------------------------------------------------------------------

    def add_item(self, product_id: str, quantity: int = 1) -> CartSnapshot:
        """Adiciona (ou incrementa) um produto do catálogo."""
        product = self.catalog.get(product_id)
        if product is None:
            self.logger.warning("Produto %s não encontrado no catálogo.", product_id)
            return self.get_snapshot()
        if quantity <= 0:
            self.logger.warning("Quantidade inválida (%s) para o produto %s.", quantity, product_id)
            return self.get_snapshot()

        existing = self._items.get(product_id)
        if existing:
            existing.quantity += quantity
        else:
            self._items[product_id] = CartItem(
                id=product.id,
                name=product.name,
                sku=product.sku,
                unit_price=product.price,
                quantity=quantity,
            )
        return self._commit()

    def remove_item(self, product_id: str) -> CartSnapshot:
        """Remove o item inteiro. ID ausente não altera nada nem notifica."""
        if product_id not in self._items:
            return self.get_snapshot()
        del self._items[product_id]
        return self._commit()

    def update_quantity(self, product_id: str, quantity: int) -> CartSnapshot:
        """Define a quantidade; zero ou negativo equivale a remover."""
        if product_id not in self._items:
            return self.get_snapshot()
        if quantity <= 0:
            return self.remove_item(product_id)
        self._items[product_id].quantity = quantity
        return self._commit()

    def set_freight(self, option: Optional[FreightOption]) -> CartSnapshot:
        self._freight = option
        return self._commit()

    def clear(self) -> CartSnapshot:
        """Esvazia o carrinho e descarta o frete."""
        self._items = {}
        self._freight = None
        return self._commit()

    # ------------------------------------------------------------------
    # Leitura e assinaturas
    # ------------------------------------------------------------------

    def get_snapshot(self) -> CartSnapshot:
        items = [
            CartItem(i.id, i.name, i.sku, i.unit_price, i.quantity) for i in self._items.values()
        ]
        subtotal = money(sum((item.unit_price * item.quantity for item in items), Decimal('0')))
        freight_price = self._freight.price if self._freight else Decimal('0')
        return CartSnapshot(
            items=items,
            subtotal=subtotal,
            freight=self._freight,
            total=money(subtotal + freight_price),
        )

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Inscreve um assinante e retorna a função que cancela a inscrição."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------

    def _commit(self) -> CartSnapshot:
        snapshot = self.get_snapshot()
        try:
            self.storage.save(self._state())
        except StorageError as e:
            # O estado em memória continua válido; só a persistência falhou.
            self.logger.warning("Erro ao salvar o carrinho: %s", e.message)
        self._notify(snapshot)
        return snapshot

    def _notify(self, snapshot: CartSnapshot):
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                self.logger.exception("Erro em assinante do carrinho.")

    def _state(self) -> dict:
        return {
            'items': [item.to_dict() for item in self._items.values()],
            'freight': self._freight.to_dict() if self._freight else None,
        }

    def _load(self):
        try:
            state = self.storage.load()
        except StorageError as e:
            self.logger.warning("Erro ao carregar o carrinho: %s", e.message)
            return
        if not state:
            return

        for raw in state.get('items') or []:
            try:
                item = CartItem.from_dict(raw)
            except (TypeError, ValueError, ArithmeticError):
                self.logger.warning("Item inválido ignorado ao carregar o carrinho: %r", raw)
                continue
            if item.id and item.quantity > 0:
                self._items[item.id] = item

        if state.get('freight'):
            try:
                self._freight = FreightOption.from_dict(state['freight'])
            except (TypeError, ValueError, ArithmeticError):
                self.logger.warning("Frete inválido ignorado ao carregar o carrinho.")
