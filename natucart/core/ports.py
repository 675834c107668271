# natucart/core/ports.py
"""
Definição das Portas (Interfaces/Protocolos) da Arquitetura Limpa.

Estes protocolos definem o contrato que a camada de Infraestrutura (Repositorios, Gateways)
DEVE seguir para se conectar à camada Core (Casos de Uso).
"""

from typing import Protocol, List, Optional, Dict, Any, Tuple
from abc import abstractmethod

# Importa as Entidades que definem o Contrato de Dados
from natucart.core.entities import (
    Address, CartItem, FreightOption, OrderContext, OrderRecord, PackageProfile, PaymentInfo
)


# ====================================================================
# 1. ARMAZENAMENTO (Portas de Persistência)
# ====================================================================

class ICartStorage(Protocol):
    """Guarda o estado completo do carrinho (itens + frete) de uma sessão."""

    @abstractmethod
    def load(self) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def save(self, state: Dict[str, Any]): ...


class IDraftStore(Protocol):
    """Destino do rascunho do pedido (repositório local ou endpoint remoto)."""

    @abstractmethod
    def save_draft(self, context: OrderContext) -> Any: ...


class IOrderRepository(IDraftStore, Protocol):
    """Protocolo para a persistência dos pedidos. Pedidos nunca são apagados."""

    @abstractmethod
    def get(self, order_id: str) -> Optional[OrderRecord]: ...

    @abstractmethod
    def save_draft(self, context: OrderContext) -> OrderRecord:
        """Grava o pedido com status pending_payment (ou mescla se já existir)."""
        ...

    @abstractmethod
    def merge(self, order_id: str, **changes) -> OrderRecord:
        """
        Mescla campos (status, payment, shipment, ...) no pedido existente.
        Levanta OrderNotFoundError se o pedido não existir.
        """
        ...


class IPendingOrderCache(Protocol):
    """
    Cache local do pedido em andamento (rascunho + último resultado de pagamento)
    e marcador de tentativa em voo da sessão.
    """

    @abstractmethod
    def load(self) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def store(self, data: Dict[str, Any]): ...

    @abstractmethod
    def acquire(self) -> bool:
        """Marca uma tentativa em voo. Retorna False se já houver uma."""
        ...

    @abstractmethod
    def release(self): ...


# ====================================================================
# 2. GATEWAYS (Portas de Serviços Externos)
# ====================================================================

class IFreightCarrier(Protocol):
    """Transportadora que cota frete a partir dos pacotes do carrinho."""

    name: str

    @abstractmethod
    def quote(
        self,
        postal_code: str,
        packages: List[Tuple[CartItem, PackageProfile]],
        address: Optional[Address] = None
    ) -> List[FreightOption]: ...


class IShipmentCarrier(Protocol):
    """Transportadora que cria envios e etiquetas depois do pagamento aprovado."""

    @abstractmethod
    def create_shipment(self, order: OrderRecord, packages: List[Tuple[CartItem, PackageProfile]]) -> str:
        """Cria o envio e retorna o ID. Levanta ExternalServiceError em caso de falha."""
        ...

    @abstractmethod
    def generate_label(self, shipment_id: str) -> bool: ...

    @abstractmethod
    def get_label_url(self, shipment_id: str) -> Optional[str]: ...


class IPaymentGateway(Protocol):
    """Protocolo para o gateway de pagamento (lado servidor)."""

    @abstractmethod
    def create_payment(self, payload: Dict[str, Any], idempotency_key: str) -> Tuple[int, Dict[str, Any]]:
        """Envia a cobrança e retorna (status HTTP, corpo) do gateway, sem interpretar."""
        ...

    @abstractmethod
    def get_payment(self, payment_id: str) -> PaymentInfo:
        """Consulta o pagamento. Levanta NotFoundError se o gateway não o conhecer."""
        ...

    @abstractmethod
    def create_preference(self, preference: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        """Cria a preferência do Checkout Pro (fluxo por redirecionamento)."""
        ...


class ICardTokenizer(Protocol):
    """Converte dados do cartão em token do gateway. Os dados brutos nunca são guardados."""

    @abstractmethod
    def tokenize(self, card) -> str: ...


class IPaymentBackend(Protocol):
    """Endpoints de pagamento usados pelo orquestrador (em processo ou via HTTP)."""

    @abstractmethod
    def charge(
        self,
        payment_data: Dict[str, Any],
        order: Dict[str, Any],
        idempotency_key: str
    ) -> Tuple[int, Dict[str, Any]]: ...

    @abstractmethod
    def create_preference(self, preference: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]: ...


class INotificationRelay(Protocol):
    """Automação externa (n8n) que recebe cópia das notificações de pagamento."""

    @abstractmethod
    def forward(self, summary: Dict[str, Any]): ...
