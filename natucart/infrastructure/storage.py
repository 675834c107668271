# natucart/infrastructure/storage.py
# Persistência do carrinho e do pedido em andamento na sessão do Django.

import logging
from typing import Any, Dict, MutableMapping, Optional

from django.core.cache import cache

from natucart.core.exceptions import StorageError
from natucart.core.ports import ICartStorage, IPendingOrderCache

logger = logging.getLogger(__name__)

CART_SESSION_KEY = 'natucart_cart_state'
PENDING_ORDER_SESSION_KEY = 'natucart_pending_order'
IN_FLIGHT_TTL = 120  # segundos


class MappingCartStorage(ICartStorage):
    """Guarda o estado do carrinho em qualquer mapeamento (dict, sessão)."""

    def __init__(self, mapping: MutableMapping, key: str = CART_SESSION_KEY):
        self.mapping = mapping
        self.key = key

    def load(self) -> Optional[Dict[str, Any]]:
        state = self.mapping.get(self.key)
        if state is not None and not isinstance(state, dict):
            raise StorageError("Estado do carrinho corrompido na sessão.")
        return state

    def save(self, state: Dict[str, Any]):
        self.mapping[self.key] = state


class SessionCartStorage(MappingCartStorage):
    """Carrinho na sessão do Django (marcando a sessão como modificada)."""

    def __init__(self, session, key: str = CART_SESSION_KEY):
        super().__init__(session, key)
        self.session = session

    def save(self, state: Dict[str, Any]):
        super().save(state)
        self.session.modified = True


class SessionPendingOrderCache(IPendingOrderCache):
    """
    Pedido em andamento (rascunho + último pagamento) na sessão, com o
    marcador de tentativa em voo no cache do Django (cache.add é atômico).
    """

    def __init__(self, session, key: str = PENDING_ORDER_SESSION_KEY):
        self.session = session
        self.key = key

    def load(self) -> Optional[Dict[str, Any]]:
        return self.session.get(self.key)

    def store(self, data: Dict[str, Any]):
        self.session[self.key] = data
        self.session.modified = True

    def _lock_key(self) -> str:
        if not self.session.session_key:
            self.session.save()
        return f"natucart:in_flight:{self.session.session_key}"

    def acquire(self) -> bool:
        acquired = cache.add(self._lock_key(), True, IN_FLIGHT_TTL)
        if not acquired:
            logger.warning("Tentativa de pagamento duplicada na sessão %s.", self.session.session_key)
        return acquired

    def release(self):
        cache.delete(self._lock_key())
