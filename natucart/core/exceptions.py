class CoreError(Exception):
    """Classe base para todas as exceções da Camada Core."""
    default_message = "Ocorreu um erro no processamento do pedido."

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ===============================================
# ERROS DE VALIDAÇÃO (corrigíveis pelo comprador)
# ===============================================

class InputValidationError(CoreError):
    """
    Erro de dados informados pelo comprador.
    `section` indica a parte do formulário que deve ser corrigida
    (cart, customer, freight, address, payment) e `field` o campo exato.
    """
    default_message = "Os dados fornecidos são inválidos."
    section = None

    def __init__(self, message=None, field=None, section=None):
        self.field = field
        if section is not None:
            self.section = section
        super().__init__(message)


class InvalidInputError(InputValidationError):
    """Erro levantado quando uma entrada simples (CEP, quantidade, ID) é inválida."""
    default_message = "Entrada inválida."


class EmptyCartError(InputValidationError):
    """Erro levantado ao tentar fechar um pedido com o carrinho vazio."""
    default_message = "O carrinho de compras está vazio."
    section = "cart"


class InvalidCustomerError(InputValidationError):
    """Erro levantado quando os dados do cliente estão incompletos ou inválidos."""
    default_message = "Os dados do cliente são inválidos."
    section = "customer"


class MissingFreightError(InputValidationError):
    """Erro levantado quando nenhuma opção de frete foi escolhida."""
    default_message = "Selecione uma opção de frete antes de finalizar o pedido."
    section = "freight"


class InvalidAddressError(InputValidationError):
    """Erro levantado quando o endereço de entrega está incompleto."""
    default_message = "O endereço de entrega é inválido ou está incompleto."
    section = "address"


# ===============================================
# ERROS DE SERVIÇOS EXTERNOS (Gateways e Transportadoras)
# ===============================================

class ExternalServiceError(CoreError):
    """Erro levantado quando um serviço externo está fora do ar ou responde com erro."""
    default_message = "Não foi possível comunicar com o serviço externo. Tente novamente."

    def __init__(self, message=None, service=None, status_code=None, detail=None):
        self.service = service
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class GatewayConnectionError(ExternalServiceError):
    """Erro de conectividade (timeout, DNS, conexão recusada) com o serviço externo."""
    default_message = "Erro de conexão com o serviço de pagamento."


class NoServiceAvailableError(ExternalServiceError):
    """Nenhuma opção de frete foi retornada pela transportadora."""
    default_message = "Nenhuma opção de frete disponível para o CEP informado."


# ===============================================
# ERROS DE PERSISTÊNCIA E BUSCA
# ===============================================

class NotFoundError(CoreError):
    """Erro levantado quando um item (genérico) não é encontrado."""
    default_message = "O item solicitado não foi encontrado."


class OrderNotFoundError(NotFoundError):
    """Erro específico para Pedidos não encontrados."""
    default_message = "Pedido não encontrado."


class StorageError(CoreError):
    """Erro ao ler ou gravar no armazenamento de pedidos."""
    default_message = "Erro ao acessar o armazenamento de pedidos."


class DraftPersistError(CoreError):
    """O rascunho do pedido não pôde ser salvo; o pagamento não deve prosseguir."""
    default_message = "Não foi possível salvar o pedido. Tente novamente."


class OrderLockedError(CoreError):
    """O pedido já saiu de pending_payment; o snapshot não pode mais ser regravado."""
    default_message = "Este pedido já foi processado e não pode ser alterado."


# ===============================================
# ERROS DE FLUXO DE CHECKOUT
# ===============================================

class CheckoutInProgressError(CoreError):
    """Já existe uma tentativa de pagamento em andamento para esta sessão."""
    default_message = "Já existe um pagamento em processamento. Aguarde."
