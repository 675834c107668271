# natucart/core/testes.py

import re
import unittest
from dataclasses import replace
from decimal import Decimal
from unittest.mock import Mock

# Importamos as classes que queremos testar
from natucart.core.cart import CartStore
from natucart.core.checkout import (
    BarcodeGenerated,
    CardData,
    ChargePaymentUseCase,
    CheckoutState,
    CreatePreferenceUseCase,
    Failed,
    LocalPaymentBackend,
    PaymentMethod,
    PaymentOrchestrator,
    PaymentRequest,
    Pending,
    QrGenerated,
    Succeeded,
    build_payment_payload,
    build_preference_payload,
)
from natucart.core.entities import (
    Address,
    CartSnapshot,
    Customer,
    FreightOption,
    FreightQuote,
    OrderRecord,
    OrderStatus,
    PaymentInfo,
    money,
)
from natucart.core.exceptions import (
    CheckoutInProgressError,
    DraftPersistError,
    EmptyCartError,
    ExternalServiceError,
    GatewayConnectionError,
    InvalidAddressError,
    InvalidCustomerError,
    InvalidInputError,
    MissingFreightError,
    NoServiceAvailableError,
    NotFoundError,
    OrderLockedError,
    OrderNotFoundError,
    StorageError,
)
from natucart.core.packaging import build_packages, package_profile_for
from natucart.core.use_cases import (
    FreightQuoter,
    FulfillmentTrigger,
    GetOrderUseCase,
    OrderDraftBuilder,
    ProcessPaymentNotificationUseCase,
    can_transition,
    generate_order_id,
    parse_notification,
)


# ====================================================================
# DUBLÊS EM MEMÓRIA (substituem sessão e banco nos testes do Core)
# ====================================================================

class MemoryCartStorage:
    def __init__(self, state=None):
        self.state = state
        self.saves = 0

    def load(self):
        return self.state

    def save(self, state):
        self.saves += 1
        self.state = state


class BrokenCartStorage(MemoryCartStorage):
    def save(self, state):
        raise StorageError("disco cheio")


class MemoryPendingCache:
    def __init__(self):
        self.data = None
        self.in_flight = False

    def load(self):
        return self.data

    def store(self, data):
        self.data = data

    def acquire(self):
        if self.in_flight:
            return False
        self.in_flight = True
        return True

    def release(self):
        self.in_flight = False


class MemoryOrderRepository:
    """
    Mesmas regras do repositório Django: cria como pending_payment, recusa
    regravar pedido que já saiu de pending_payment e mescla dicionários.
    """

    def __init__(self):
        self.records = {}

    def get(self, order_id):
        return self.records.get(order_id)

    def save_draft(self, context):
        existing = self.records.get(context.order_id)
        if existing and existing.status != OrderStatus.PENDING_PAYMENT:
            raise OrderLockedError()
        record = OrderRecord(
            order_id=context.order_id,
            status=existing.status if existing else OrderStatus.PENDING_PAYMENT,
            customer=context.customer,
            address=context.address,
            items=list(context.items),
            freight=context.freight,
            totals=context.totals,
            payment=existing.payment if existing else None,
            shipment=existing.shipment if existing else None,
            metadata=dict(context.metadata),
        )
        self.records[context.order_id] = record
        return record

    def merge(self, order_id, **changes):
        record = self.records.get(order_id)
        if record is None:
            raise OrderNotFoundError()
        for name, value in changes.items():
            current = getattr(record, name)
            if isinstance(current, dict) and isinstance(value, dict):
                value = {**current, **value}
            record = replace(record, **{name: value})
        self.records[order_id] = record
        return record


PAC = FreightOption(service='PAC', service_code='PAC', carrier='Correios',
                    price=Decimal('15.50'), delivery_time_days=7, postal_code='01310100')
SEDEX = FreightOption(service='SEDEX', service_code='SEDEX', carrier='Correios',
                      price=Decimal('25.90'), delivery_time_days=3, postal_code='01310100')

CUSTOMER = Customer(name='Maria da Silva', email='maria@example.com', phone='(11) 98888-7777', tax_id='123.456.789-09')
ADDRESS = Address(postal_code='01310-100', state='SP', city='São Paulo', street='Av. Paulista',
                  number='1000', district='Bela Vista', complement='Apto 12')


def cart_with_single(freight=PAC):
    cart = CartStore(MemoryCartStorage(), logger=Mock())
    cart.add_item('natucart-single')
    if freight:
        cart.set_freight(freight)
    return cart


# ====================================================================
# EMBALAGENS
# ====================================================================

class TestPackaging(unittest.TestCase):

    def test_tabela_por_quantidade(self):
        um = package_profile_for(1)
        self.assertEqual((um.weight_kg, um.width_cm, um.height_cm, um.length_cm),
                         (Decimal('0.05'), Decimal('16.5'), Decimal('1'), Decimal('18')))

        tres = package_profile_for(3)
        self.assertEqual((tres.weight_kg, tres.width_cm, tres.height_cm, tres.length_cm),
                         (Decimal('0.16'), Decimal('20.5'), Decimal('7.5'), Decimal('12')))

        seis = package_profile_for(6)
        self.assertEqual((seis.weight_kg, seis.width_cm, seis.height_cm, seis.length_cm),
                         (Decimal('0.28'), Decimal('19'), Decimal('10'), Decimal('14.5')))

    def test_acima_de_seis_cresce_o_peso(self):
        """Cenário: 12 unidades pesam o dobro da caixa de 6 e mantêm as dimensões."""
        doze = package_profile_for(12)
        self.assertEqual(doze.weight_kg, Decimal('0.56'))
        self.assertEqual(doze.width_cm, Decimal('19'))
        self.assertEqual(doze.length_cm, Decimal('14.5'))

    def test_quantidade_invalida(self):
        with self.assertRaises(InvalidInputError):
            package_profile_for(0)

    def test_um_pacote_por_linha(self):
        cart = CartStore(MemoryCartStorage(), logger=Mock())
        cart.add_item('natucart-single', 2)
        cart.add_item('natucart-trio', 1)
        packages = build_packages(cart.get_snapshot().items)
        self.assertEqual(len(packages), 2)
        self.assertEqual(packages[0][1].weight_kg, Decimal('0.16'))
        self.assertEqual(packages[1][1].weight_kg, Decimal('0.05'))


# ====================================================================
# CARRINHO
# ====================================================================

class TestCartStore(unittest.TestCase):

    def setUp(self):
        self.storage = MemoryCartStorage()
        self.logger = Mock()
        self.cart = CartStore(self.storage, logger=self.logger)

    def test_adicionar_e_incrementar(self):
        self.cart.add_item('natucart-single')
        snapshot = self.cart.add_item('natucart-single', 2)

        self.assertEqual(len(snapshot.items), 1)
        self.assertEqual(snapshot.items[0].quantity, 3)
        self.assertEqual(snapshot.subtotal, Decimal('299.70'))
        self.assertEqual(snapshot.total, Decimal('299.70'))
        self.assertEqual(self.storage.state['items'][0]['quantity'], 3)

    def test_total_inclui_frete(self):
        self.cart.add_item('natucart-single')
        snapshot = self.cart.set_freight(PAC)
        self.assertEqual(snapshot.total, Decimal('115.40'))

    def test_produto_desconhecido_nao_altera_nem_notifica(self):
        callback = Mock()
        self.cart.subscribe(callback)

        snapshot = self.cart.add_item('produto-inexistente')

        self.assertTrue(snapshot.is_empty)
        callback.assert_not_called()
        self.assertEqual(self.storage.saves, 0)
        self.logger.warning.assert_called_once()

    def test_remover_ausente_nao_notifica(self):
        callback = Mock()
        self.cart.subscribe(callback)
        self.cart.remove_item('natucart-single')
        self.cart.update_quantity('natucart-single', 4)
        callback.assert_not_called()

    def test_quantidade_zero_remove(self):
        self.cart.add_item('natucart-trio', 2)
        snapshot = self.cart.update_quantity('natucart-trio', 0)
        self.assertTrue(snapshot.is_empty)

    def test_assinantes_em_ordem_e_cancelamento(self):
        chamadas = []
        self.cart.subscribe(lambda s: chamadas.append('primeiro'))
        cancelar = self.cart.subscribe(lambda s: chamadas.append('segundo'))

        self.cart.add_item('natucart-single')
        cancelar()
        self.cart.add_item('natucart-single')

        self.assertEqual(chamadas, ['primeiro', 'segundo', 'primeiro'])

    def test_assinante_com_erro_nao_bloqueia_os_demais(self):
        def quebrado(snapshot):
            raise RuntimeError("falhou")
        depois = Mock()
        self.cart.subscribe(quebrado)
        self.cart.subscribe(depois)

        self.cart.add_item('natucart-single')

        depois.assert_called_once()
        self.logger.exception.assert_called_once()

    def test_falha_ao_salvar_mantem_estado_em_memoria(self):
        cart = CartStore(BrokenCartStorage(), logger=self.logger)
        snapshot = cart.add_item('natucart-six')
        self.assertEqual(snapshot.items[0].quantity, 1)
        self.assertEqual(cart.get_snapshot().subtotal, Decimal('450.00'))
        self.logger.warning.assert_called()

    def test_recarrega_estado_persistido(self):
        self.cart.add_item('natucart-trio', 2)
        self.cart.set_freight(SEDEX)

        recarregado = CartStore(self.storage, logger=self.logger).get_snapshot()

        self.assertEqual(recarregado.items[0].id, 'natucart-trio')
        self.assertEqual(recarregado.items[0].quantity, 2)
        self.assertEqual(recarregado.freight.service_code, 'SEDEX')
        self.assertEqual(recarregado.total, Decimal('535.90'))

    def test_limpar_descarta_frete(self):
        self.cart.add_item('natucart-single')
        self.cart.set_freight(PAC)
        snapshot = self.cart.clear()
        self.assertTrue(snapshot.is_empty)
        self.assertIsNone(snapshot.freight)


# ====================================================================
# FRETE
# ====================================================================

class TestFreightQuoter(unittest.TestCase):

    def setUp(self):
        self.carrier = Mock()
        self.carrier.name = 'melhorenvio'
        self.carrier.quote.return_value = [SEDEX, PAC]
        self.quoter = FreightQuoter(self.carrier, logger=Mock())
        self.cart = cart_with_single(freight=None)

    def test_cotacao_nao_vincula_frete(self):
        quote = self.quoter.get_freight_rates('01310-100', self.cart.get_snapshot())

        self.assertEqual(quote.postal_code, '01310100')
        self.assertEqual(quote.cheapest.service_code, 'PAC')
        self.assertIsNone(self.cart.get_snapshot().freight)

        postal_code, packages, address = self.carrier.quote.call_args[0]
        self.assertEqual(postal_code, '01310100')
        self.assertEqual(packages[0][1].weight_kg, Decimal('0.05'))

    def test_vincular_opcao_escolhida(self):
        quote = self.quoter.get_freight_rates('01310100', self.cart.get_snapshot())
        snapshot = self.quoter.bind_freight(self.cart, quote, 'SEDEX')
        self.assertEqual(snapshot.freight.service_code, 'SEDEX')
        self.assertEqual(snapshot.total, Decimal('125.80'))

    def test_vincular_opcao_nao_cotada(self):
        quote = FreightQuote(options=[PAC], postal_code='01310100')
        with self.assertRaises(InvalidInputError):
            self.quoter.bind_freight(self.cart, quote, 'XYZ')

    def test_cep_invalido_nao_chama_transportadora(self):
        for cep in ('1234', '123456789', ''):
            with self.assertRaises(InvalidInputError) as ctx:
                self.quoter.get_freight_rates(cep, self.cart.get_snapshot())
            self.assertEqual(ctx.exception.field, 'postalCode')
        self.carrier.quote.assert_not_called()

    def test_carrinho_vazio(self):
        with self.assertRaises(InvalidInputError):
            self.quoter.get_freight_rates('01310100', CartSnapshot())

    def test_erro_da_transportadora(self):
        self.carrier.quote.side_effect = ExternalServiceError("fora do ar", service='melhorenvio')
        with self.assertRaises(NoServiceAvailableError):
            self.quoter.get_freight_rates('01310100', self.cart.get_snapshot())

    def test_nenhuma_opcao(self):
        self.carrier.quote.return_value = []
        with self.assertRaises(NoServiceAvailableError):
            self.quoter.get_freight_rates('01310100', self.cart.get_snapshot())


# ====================================================================
# RASCUNHO DO PEDIDO
# ====================================================================

class TestOrderDraftBuilder(unittest.TestCase):

    def setUp(self):
        self.draft_store = Mock()
        self.builder = OrderDraftBuilder(self.draft_store, logger=Mock())

    def test_rascunho_com_sucesso(self):
        snapshot = cart_with_single().get_snapshot()

        context = self.builder.build_and_persist_draft(CUSTOMER, ADDRESS, snapshot)

        self.assertRegex(context.order_id, r'^natucart_\d{13}_[a-z0-9]{9}$')
        self.assertEqual(context.totals.subtotal, Decimal('99.90'))
        self.assertEqual(context.totals.freight, Decimal('15.50'))
        self.assertEqual(context.totals.total, Decimal('115.40'))
        self.assertEqual(context.customer.tax_id, '12345678909')
        self.assertEqual(context.address.postal_code, '01310100')
        self.assertEqual(context.external_reference, context.order_id)
        self.draft_store.save_draft.assert_called_once_with(context)

    def test_snapshot_independente_do_carrinho(self):
        cart = cart_with_single()
        context = self.builder.build(CUSTOMER, ADDRESS, cart.get_snapshot())
        cart.update_quantity('natucart-single', 5)
        self.assertEqual(context.items[0].quantity, 1)

    def test_ordem_de_validacao(self):
        """Cenário: com vários erros, o primeiro da ordem carrinho > cliente > frete > endereço vence."""
        vazio = CartSnapshot()
        sem_frete = cart_with_single(freight=None).get_snapshot()
        completo = cart_with_single().get_snapshot()
        cliente_invalido = replace(CUSTOMER, email='sem-arroba')
        sem_cep = replace(ADDRESS, postal_code='')

        with self.assertRaises(EmptyCartError):
            self.builder.validate(cliente_invalido, sem_cep, vazio)
        with self.assertRaises(InvalidCustomerError) as ctx:
            self.builder.validate(cliente_invalido, sem_cep, sem_frete)
        self.assertEqual(ctx.exception.field, 'email')
        with self.assertRaises(MissingFreightError):
            self.builder.validate(CUSTOMER, sem_cep, sem_frete)
        with self.assertRaises(InvalidAddressError):
            self.builder.validate(CUSTOMER, sem_cep, completo)

    def test_campos_do_cliente_na_ordem(self):
        completo = cart_with_single().get_snapshot()
        casos = [
            (replace(CUSTOMER, name='  ', email=''), 'name'),
            (replace(CUSTOMER, email='maria.example.com', phone=''), 'email'),
            (replace(CUSTOMER, phone='', tax_id=''), 'phone'),
            (replace(CUSTOMER, tax_id='1234567890'), 'taxId'),
            (replace(CUSTOMER, tax_id='123456789012'), 'taxId'),
        ]
        for cliente, campo in casos:
            with self.assertRaises(InvalidCustomerError) as ctx:
                self.builder.validate(cliente, ADDRESS, completo)
            self.assertEqual(ctx.exception.field, campo)
            self.assertEqual(ctx.exception.section, 'customer')

    def test_cpf_curto_nao_grava_rascunho(self):
        with self.assertRaises(InvalidCustomerError):
            self.builder.build_and_persist_draft(
                replace(CUSTOMER, tax_id='123'), ADDRESS, cart_with_single().get_snapshot()
            )
        self.draft_store.save_draft.assert_not_called()

    def test_falha_ao_gravar(self):
        self.draft_store.save_draft.side_effect = StorageError("banco indisponível")
        with self.assertRaises(DraftPersistError):
            self.builder.build_and_persist_draft(CUSTOMER, ADDRESS, cart_with_single().get_snapshot())

    def test_pedido_ja_processado_nao_e_regravado(self):
        """Cenário: o orderId informado pertence a um pedido que já foi pago."""
        self.draft_store.save_draft.side_effect = OrderLockedError()
        with self.assertRaises(DraftPersistError):
            self.builder.build_and_persist_draft(
                CUSTOMER, ADDRESS, cart_with_single().get_snapshot(), order_id='natucart_1_pago'
            )

    def test_id_gerado_uma_vez_por_tentativa(self):
        ids = {generate_order_id() for _ in range(50)}
        self.assertEqual(len(ids), 50)
        for order_id in ids:
            self.assertTrue(re.match(r'^natucart_\d+_[a-z0-9]{9}$', order_id))


class TestGetOrderUseCase(unittest.TestCase):

    def test_pedido_inexistente(self):
        repo = Mock()
        repo.get.return_value = None
        with self.assertRaises(OrderNotFoundError):
            GetOrderUseCase(repo).execute('natucart_1_abc')


# ====================================================================
# STATUS, ENVIO E WEBHOOK
# ====================================================================

class TestStatusTransitions(unittest.TestCase):

    def test_status_nunca_regride(self):
        self.assertTrue(can_transition(OrderStatus.PENDING_PAYMENT, OrderStatus.APPROVED))
        self.assertTrue(can_transition(OrderStatus.APPROVED, OrderStatus.SHIPPING_CREATED))
        self.assertFalse(can_transition(OrderStatus.APPROVED, OrderStatus.PENDING_PAYMENT))
        self.assertFalse(can_transition(OrderStatus.APPROVED, OrderStatus.REJECTED))
        self.assertFalse(can_transition(OrderStatus.SHIPPING_CREATED, OrderStatus.CANCELLED, 'refunded'))

    def test_cancelamento_apos_aprovacao_so_por_estorno(self):
        self.assertFalse(can_transition(OrderStatus.APPROVED, OrderStatus.CANCELLED, 'cancelled'))
        self.assertTrue(can_transition(OrderStatus.APPROVED, OrderStatus.CANCELLED, 'refunded'))
        self.assertTrue(can_transition(OrderStatus.APPROVED, OrderStatus.CANCELLED, 'charged_back'))


def draft_order(repo, freight=PAC):
    builder = OrderDraftBuilder(repo, logger=Mock())
    return builder.build_and_persist_draft(CUSTOMER, ADDRESS, cart_with_single(freight).get_snapshot())


class TestFulfillmentTrigger(unittest.TestCase):

    def setUp(self):
        self.repo = MemoryOrderRepository()
        self.context = draft_order(self.repo)
        self.repo.merge(self.context.order_id, status=OrderStatus.APPROVED)
        self.carrier = Mock()
        self.carrier.create_shipment.return_value = 'ship-1'
        self.carrier.generate_label.return_value = True
        self.carrier.get_label_url.return_value = 'https://melhorenvio.com.br/etiqueta.pdf'
        self.trigger = FulfillmentTrigger(self.carrier, self.repo, logger=Mock())

    def test_envio_completo(self):
        result = self.trigger.create_shipment(self.repo.get(self.context.order_id))

        self.assertEqual(result.shipment_id, 'ship-1')
        self.assertTrue(result.label_generated)
        record = self.repo.get(self.context.order_id)
        self.assertEqual(record.status, OrderStatus.SHIPPING_CREATED)
        self.assertEqual(record.shipment['labelUrl'], 'https://melhorenvio.com.br/etiqueta.pdf')

        order, packages = self.carrier.create_shipment.call_args[0]
        self.assertEqual(packages[0][1].weight_kg, Decimal('0.05'))

    def test_falha_na_etiqueta_nao_impede_envio(self):
        self.carrier.generate_label.side_effect = ExternalServiceError("erro etiqueta")

        result = self.trigger.create_shipment(self.repo.get(self.context.order_id))

        self.assertFalse(result.label_generated)
        self.assertIsNone(result.label_url)
        self.carrier.get_label_url.assert_not_called()
        self.assertEqual(self.repo.get(self.context.order_id).status, OrderStatus.SHIPPING_CREATED)

    def test_falha_total_mantem_aprovado(self):
        self.carrier.create_shipment.side_effect = GatewayConnectionError("timeout")

        self.assertIsNone(self.trigger.create_shipment(self.repo.get(self.context.order_id)))
        self.assertEqual(self.repo.get(self.context.order_id).status, OrderStatus.APPROVED)

    def test_pedido_ja_enviado(self):
        self.repo.merge(self.context.order_id, status=OrderStatus.SHIPPING_CREATED)
        self.assertIsNone(self.trigger.create_shipment(self.repo.get(self.context.order_id)))
        self.carrier.create_shipment.assert_not_called()


class TestParseNotification(unittest.TestCase):

    def test_id_na_query_ou_no_corpo(self):
        self.assertEqual(parse_notification({'topic': 'payment', 'id': '123'}, None), ('payment', '123'))
        self.assertEqual(parse_notification({'type': 'payment', 'data.id': '456'}, {}), ('payment', '456'))
        self.assertEqual(parse_notification({}, {'type': 'payment', 'data': {'id': 789}}), ('payment', '789'))
        self.assertEqual(parse_notification({}, {}), (None, None))


class TestProcessPaymentNotification(unittest.TestCase):

    def setUp(self):
        self.repo = MemoryOrderRepository()
        self.context = draft_order(self.repo)
        self.gateway = Mock()
        self.carrier = Mock()
        self.carrier.create_shipment.return_value = 'ship-1'
        self.carrier.generate_label.return_value = True
        self.carrier.get_label_url.return_value = 'https://label'
        self.relay = Mock()
        self.use_case = ProcessPaymentNotificationUseCase(
            order_repo=self.repo,
            payment_gateway=self.gateway,
            fulfillment=FulfillmentTrigger(self.carrier, self.repo, logger=Mock()),
            relay=self.relay,
            order_api_url='https://natucart.vercel.app/api/pedidos/consultar/',
            logger=Mock(),
        )

    def payment(self, status, status_detail=None):
        return PaymentInfo(
            payment_id='555', status=status, status_detail=status_detail,
            external_reference=self.context.order_id, payment_method_id='pix',
            transaction_amount=money('115.40'),
        )

    def test_aprovado_cria_envio_uma_unica_vez(self):
        """Cenário: o mesmo webhook de aprovação chega duas vezes."""
        self.gateway.get_payment.return_value = self.payment('approved')

        primeiro = self.use_case.execute('payment', '555')
        segundo = self.use_case.execute('payment', '555')

        self.assertTrue(primeiro.processed)
        self.assertEqual(primeiro.order_status, OrderStatus.SHIPPING_CREATED)
        self.assertEqual(segundo.reason, 'already_fulfilled')
        self.carrier.create_shipment.assert_called_once()
        record = self.repo.get(self.context.order_id)
        self.assertEqual(record.status, OrderStatus.SHIPPING_CREATED)
        self.assertEqual(record.payment['status'], 'approved')

    def test_notificacoes_fora_de_ordem_nao_regridem(self):
        self.gateway.get_payment.return_value = self.payment('approved')
        self.use_case.execute('payment', '555')

        for status in ('pending', 'rejected', 'cancelled', 'in_process'):
            self.gateway.get_payment.return_value = self.payment(status)
            self.use_case.execute('payment', '555')
            self.assertEqual(self.repo.get(self.context.order_id).status, OrderStatus.SHIPPING_CREATED)

    def test_recusado(self):
        self.gateway.get_payment.return_value = self.payment('rejected', 'cc_rejected_other_reason')
        outcome = self.use_case.execute('payment', '555')
        self.assertEqual(outcome.order_status, OrderStatus.REJECTED)
        self.assertEqual(self.repo.get(self.context.order_id).status, OrderStatus.REJECTED)

    def test_estorno_cancela_pedido(self):
        self.carrier.create_shipment.side_effect = ExternalServiceError("sem saldo")
        self.gateway.get_payment.return_value = self.payment('approved')
        self.use_case.execute('payment', '555')
        self.assertEqual(self.repo.get(self.context.order_id).status, OrderStatus.APPROVED)

        self.gateway.get_payment.return_value = self.payment('refunded')
        self.use_case.execute('payment', '555')
        self.assertEqual(self.repo.get(self.context.order_id).status, OrderStatus.CANCELLED)

    def test_pendente_depois_aprovado(self):
        """Cenário: PIX gerado (pending) e pago mais tarde."""
        self.gateway.get_payment.return_value = self.payment('pending', 'pending_waiting_transfer')
        outcome = self.use_case.execute('payment', '555')

        record = self.repo.get(self.context.order_id)
        self.assertEqual(outcome.reason, 'pending')
        self.assertEqual(record.status, OrderStatus.PENDING_PAYMENT)
        self.assertEqual(record.payment['statusDetail'], 'pending_waiting_transfer')

        self.gateway.get_payment.return_value = self.payment('approved')
        self.use_case.execute('payment', '555')
        self.assertEqual(self.repo.get(self.context.order_id).status, OrderStatus.SHIPPING_CREATED)

    def test_merchant_order_nao_acessa_o_armazenamento(self):
        repo = Mock()
        gateway = Mock()
        use_case = ProcessPaymentNotificationUseCase(repo, gateway, Mock(), logger=Mock())

        outcome = use_case.execute('merchant_order', '999')

        self.assertFalse(outcome.processed)
        self.assertEqual(outcome.to_dict()['status'], 'ok')
        self.assertEqual(repo.method_calls, [])
        gateway.get_payment.assert_not_called()

    def test_sem_id_de_pagamento(self):
        outcome = self.use_case.execute('payment', None)
        self.assertFalse(outcome.processed)
        self.gateway.get_payment.assert_not_called()

    def test_pagamento_desconhecido_no_gateway(self):
        self.gateway.get_payment.side_effect = NotFoundError()
        outcome = self.use_case.execute('payment', '555')
        self.assertEqual(outcome.reason, 'payment_not_found')

    def test_pedido_inexistente_so_registra(self):
        self.gateway.get_payment.return_value = replace(self.payment('approved'), external_reference='natucart_0_zzz')
        outcome = self.use_case.execute('payment', '555')
        self.assertEqual(outcome.reason, 'order_not_found')
        self.carrier.create_shipment.assert_not_called()

    def test_erro_de_armazenamento_nao_sobe(self):
        repo = Mock()
        repo.get.side_effect = StorageError()
        self.gateway.get_payment.return_value = self.payment('approved')
        use_case = ProcessPaymentNotificationUseCase(repo, self.gateway, Mock(), logger=Mock())

        outcome = use_case.execute('payment', '555')

        self.assertFalse(outcome.processed)
        self.assertEqual(outcome.reason, 'error')

    def test_repasse_para_automacao(self):
        self.gateway.get_payment.return_value = self.payment('approved')
        self.relay.forward.side_effect = ExternalServiceError("n8n fora do ar")

        outcome = self.use_case.execute('payment', '555', signature_valid=False)

        self.assertTrue(outcome.processed)
        summary = self.relay.forward.call_args[0][0]
        self.assertEqual(summary['paymentId'], '555')
        self.assertFalse(summary['signatureValid'])
        self.assertTrue(summary['orderApiUrl'].endswith(f"?orderId={self.context.order_id}"))


# ====================================================================
# ORQUESTRADOR DE PAGAMENTO
# ====================================================================

class TestPaymentOrchestrator(unittest.TestCase):

    def setUp(self):
        self.repo = MemoryOrderRepository()
        self.cart = cart_with_single()
        self.gateway = Mock()
        self.gateway.create_payment.return_value = (201, {'id': 1001, 'status': 'approved', 'status_detail': 'accredited'})
        self.tokenizer = Mock()
        self.tokenizer.tokenize.return_value = 'tok_123'
        self.cache = MemoryPendingCache()
        self.events = []
        self.orchestrator = PaymentOrchestrator(
            cart=self.cart,
            draft_builder=OrderDraftBuilder(self.repo, logger=Mock()),
            backend=LocalPaymentBackend(
                ChargePaymentUseCase(self.gateway, logger=Mock()),
                CreatePreferenceUseCase(self.gateway, logger=Mock()),
            ),
            tokenizer=self.tokenizer,
            pending_cache=self.cache,
            store_base_url='https://natucart.vercel.app/',
            notification_url='https://natucart.vercel.app/api/webhooks/mercadopago/',
            listener=self.events.append,
            logger=Mock(),
        )

    def card_payment(self):
        return PaymentRequest(
            method=PaymentMethod.CARD,
            card=CardData('4235 6477 2802 5682', 'MARIA DA SILVA', '11', '2030', '123'),
            installments=3,
            payment_method_id='visa',
        )

    def test_cartao_aprovado_ponta_a_ponta(self):
        """Cenário: 1 frasco + PAC, cartão aprovado, webhook de aprovação cria o envio."""
        payment = self.card_payment()

        result = self.orchestrator.submit(CUSTOMER, ADDRESS, payment)

        self.assertEqual(result.state, CheckoutState.SUCCEEDED)
        self.assertIsInstance(result.last_event, Succeeded)
        self.assertEqual(
            result.last_event.redirect_url,
            f"https://natucart.vercel.app/checkout.html?payment=completed&order={result.order_id}",
        )
        self.assertIsNone(payment.card)
        self.assertTrue(self.cart.get_snapshot().is_empty)
        self.assertEqual(self.events, result.events)
        self.assertFalse(self.cache.in_flight)

        payload, idempotency_key = self.gateway.create_payment.call_args[0]
        self.assertEqual(payload['transaction_amount'], 115.4)
        self.assertEqual(payload['token'], 'tok_123')
        self.assertEqual(payload['installments'], 3)
        self.assertEqual(payload['external_reference'], result.order_id)
        self.assertEqual(payload['notification_url'], 'https://natucart.vercel.app/api/webhooks/mercadopago/')
        self.assertTrue(idempotency_key)

        record = self.repo.get(result.order_id)
        self.assertEqual(record.status, OrderStatus.PENDING_PAYMENT)
        self.assertEqual(record.totals.total, Decimal('115.40'))

        # Webhook de aprovação
        self.gateway.get_payment.return_value = PaymentInfo(
            payment_id='1001', status='approved', external_reference=result.order_id,
            transaction_amount=money('115.40'),
        )
        carrier = Mock()
        carrier.create_shipment.return_value = 'ship-1'
        carrier.generate_label.return_value = True
        carrier.get_label_url.return_value = 'https://label'
        ProcessPaymentNotificationUseCase(
            self.repo, self.gateway, FulfillmentTrigger(carrier, self.repo, logger=Mock()), logger=Mock()
        ).execute('payment', '1001')

        self.assertEqual(self.repo.get(result.order_id).status, OrderStatus.SHIPPING_CREATED)

    def test_pix_pendente_mantem_carrinho(self):
        self.gateway.create_payment.return_value = (201, {
            'id': 2002,
            'status': 'pending',
            'status_detail': 'pending_waiting_transfer',
            'point_of_interaction': {'transaction_data': {
                'qr_code': '00020126...', 'qr_code_base64': 'iVBORw0...', 'ticket_url': 'https://mp/ticket',
            }},
        })

        result = self.orchestrator.submit(CUSTOMER, ADDRESS, PaymentRequest(method=PaymentMethod.PIX))

        self.assertEqual(result.state, CheckoutState.AWAITING_CONFIRMATION)
        self.assertIsInstance(result.events[0], QrGenerated)
        self.assertEqual(result.events[0].qr_code, '00020126...')
        self.assertIsInstance(result.events[1], Pending)
        self.assertFalse(self.cart.get_snapshot().is_empty)
        self.assertEqual(self.repo.get(result.order_id).status, OrderStatus.PENDING_PAYMENT)
        self.tokenizer.tokenize.assert_not_called()
        self.assertEqual(self.cache.data['payment']['status'], 'pending')

        payload = self.gateway.create_payment.call_args[0][0]
        self.assertEqual(payload['payment_method_id'], 'pix')
        self.assertEqual(payload['installments'], 1)

    def test_boleto_gera_codigo_de_barras(self):
        self.gateway.create_payment.return_value = (201, {
            'id': 3003,
            'status': 'pending',
            'barcode': {'content': '23791.11111'},
            'transaction_details': {'external_resource_url': 'https://mp/boleto.pdf'},
        })

        result = self.orchestrator.submit(CUSTOMER, ADDRESS, PaymentRequest(method=PaymentMethod.BOLETO))

        self.assertIsInstance(result.events[0], BarcodeGenerated)
        self.assertEqual(result.events[0].barcode, '23791.11111')
        payload = self.gateway.create_payment.call_args[0][0]
        self.assertEqual(payload['payment_method_id'], 'bolbradesco')
        self.assertEqual(payload['payer']['address']['zip_code'], '01310100')

    def test_recusado_usa_mensagem_da_tabela(self):
        self.gateway.create_payment.return_value = (201, {
            'id': 4004, 'status': 'rejected', 'status_detail': 'cc_rejected_insufficient_amount',
        })

        result = self.orchestrator.submit(CUSTOMER, ADDRESS, self.card_payment())

        self.assertEqual(result.state, CheckoutState.FAILED)
        self.assertEqual(result.last_event.reason, 'rejected')
        self.assertEqual(result.last_event.message, "O cartão possui saldo insuficiente.")
        self.assertFalse(self.cart.get_snapshot().is_empty)

    def test_nova_tentativa_reaproveita_o_pedido(self):
        self.gateway.create_payment.return_value = (201, {'id': 4004, 'status': 'rejected'})
        primeira = self.orchestrator.submit(CUSTOMER, ADDRESS, self.card_payment())
        primeira_chave = self.gateway.create_payment.call_args[0][1]

        self.gateway.create_payment.return_value = (201, {'id': 4005, 'status': 'approved'})
        segunda = self.orchestrator.retry(self.card_payment())

        payload, segunda_chave = self.gateway.create_payment.call_args[0]
        self.assertEqual(segunda.order_id, primeira.order_id)
        self.assertEqual(payload['external_reference'], primeira.order_id)
        self.assertNotEqual(primeira_chave, segunda_chave)
        self.assertEqual(segunda.state, CheckoutState.SUCCEEDED)
        self.assertEqual(self.cache.data['attempts'], 2)

    def test_nova_tentativa_com_pix_pendente_nao_cobra_de_novo(self):
        """Cenário: o PIX gerado ainda aguarda pagamento e o comprador pede nova tentativa."""
        self.gateway.create_payment.return_value = (201, {'id': 2002, 'status': 'pending'})
        primeira = self.orchestrator.submit(CUSTOMER, ADDRESS, PaymentRequest(method=PaymentMethod.PIX))

        segunda = self.orchestrator.retry(PaymentRequest(method=PaymentMethod.PIX))

        self.assertEqual(self.gateway.create_payment.call_count, 1)
        self.assertIsInstance(segunda.last_event, Failed)
        self.assertEqual(segunda.last_event.reason, 'validation')
        self.assertEqual(segunda.last_event.order_id, primeira.order_id)
        self.assertEqual(self.orchestrator.state, CheckoutState.AWAITING_CONFIRMATION)
        self.assertEqual(self.cache.data['attempts'], 1)
        self.assertFalse(self.cache.in_flight)

    def test_nova_tentativa_depois_do_redirecionamento(self):
        self.gateway.create_preference.return_value = (201, {'id': 'pref-1', 'init_point': 'https://mp/checkout'})
        self.orchestrator.create_redirect_checkout(CUSTOMER, ADDRESS)

        result = self.orchestrator.retry(self.card_payment())

        self.gateway.create_payment.assert_not_called()
        self.assertEqual(result.last_event.reason, 'validation')

    def test_cpf_invalido_nao_chama_a_rede(self):
        result = self.orchestrator.submit(replace(CUSTOMER, tax_id='123'), ADDRESS, self.card_payment())

        self.assertEqual(result.state, CheckoutState.IDLE)
        self.assertIsInstance(result.last_event, Failed)
        self.assertEqual(result.last_event.reason, 'validation')
        self.assertEqual(result.last_event.field, 'taxId')
        self.assertEqual(result.last_event.section, 'customer')
        self.tokenizer.tokenize.assert_not_called()
        self.gateway.create_payment.assert_not_called()
        self.assertEqual(self.repo.records, {})
        self.assertFalse(self.cache.in_flight)

    def test_falha_no_rascunho_interrompe_pagamento(self):
        draft_store = Mock()
        draft_store.save_draft.side_effect = StorageError()
        self.orchestrator.draft_builder = OrderDraftBuilder(draft_store, logger=Mock())

        result = self.orchestrator.submit(CUSTOMER, ADDRESS, PaymentRequest(method=PaymentMethod.PIX))

        self.assertEqual(result.state, CheckoutState.FAILED)
        self.assertEqual(result.last_event.reason, 'draft')
        self.gateway.create_payment.assert_not_called()

    def test_uma_tentativa_por_vez(self):
        self.cache.in_flight = True
        with self.assertRaises(CheckoutInProgressError):
            self.orchestrator.submit(CUSTOMER, ADDRESS, PaymentRequest(method=PaymentMethod.PIX))
        self.gateway.create_payment.assert_not_called()

    def test_marcador_liberado_mesmo_com_erro_inesperado(self):
        self.gateway.create_payment.side_effect = RuntimeError("bug")
        with self.assertRaises(RuntimeError):
            self.orchestrator.submit(CUSTOMER, ADDRESS, PaymentRequest(method=PaymentMethod.PIX))
        self.assertFalse(self.cache.in_flight)

    def test_falha_de_conexao_com_o_gateway(self):
        self.gateway.create_payment.side_effect = GatewayConnectionError("timeout")

        result = self.orchestrator.submit(CUSTOMER, ADDRESS, PaymentRequest(method=PaymentMethod.PIX))

        self.assertEqual(result.state, CheckoutState.FAILED)
        self.assertEqual(result.last_event.reason, 'gateway')
        self.assertFalse(self.cart.get_snapshot().is_empty)

    def test_checkout_por_redirecionamento(self):
        self.gateway.create_preference.return_value = (201, {'id': 'pref-1', 'init_point': 'https://mp/checkout'})

        url = self.orchestrator.create_redirect_checkout(CUSTOMER, ADDRESS)

        self.assertEqual(url, 'https://mp/checkout')
        preference = self.gateway.create_preference.call_args[0][0]
        self.assertEqual(preference['items'][-1]['title'], 'Frete - PAC')
        self.assertEqual(preference['back_urls']['success'], 'https://natucart.vercel.app/checkout.html?payment=completed')
        self.assertEqual(self.cache.data['payment']['preferenceId'], 'pref-1')


# ====================================================================
# COBRANÇA NO SERVIDOR
# ====================================================================

class TestChargePaymentUseCase(unittest.TestCase):

    def setUp(self):
        self.gateway = Mock()
        self.use_case = ChargePaymentUseCase(self.gateway, notification_url='https://loja/webhook', logger=Mock())
        self.order = {
            'orderId': 'natucart_1_abc',
            'customer': {'name': 'Maria da Silva', 'email': 'maria@example.com',
                         'cellphone': '11988887777', 'taxId': '12345678909'},
            'address': {'postalCode': '01310100', 'street': 'Av. Paulista', 'number': '1000'},
            'items': [{'id': 'natucart-single', 'name': 'Natucart - 1 Frasco', 'price': '99.90', 'quantity': 1}],
            'totals': {'subtotal': '99.90', 'freight': '15.50', 'total': '115.40'},
        }

    def test_cartao_sem_token(self):
        status, body = self.use_case.execute({'payment_method_id': 'visa'}, self.order)
        self.assertEqual(status, 422)
        self.assertEqual(body['field'], 'token')
        self.gateway.create_payment.assert_not_called()

    def test_valor_nao_positivo(self):
        order = {**self.order, 'totals': {'total': '0'}}
        status, body = self.use_case.execute({'payment_method_id': 'pix'}, order)
        self.assertEqual(status, 422)
        self.assertEqual(body['error'], 'validation_error')

    def test_repasse_com_chave_de_idempotencia(self):
        self.gateway.create_payment.return_value = (201, {'id': 1, 'status': 'pending'})

        status, body = self.use_case.execute({'payment_method_id': 'pix'}, self.order, 'chave-1')

        self.assertEqual(status, 201)
        payload, key = self.gateway.create_payment.call_args[0]
        self.assertEqual(key, 'chave-1')
        self.assertEqual(payload['statement_descriptor'], 'NATUCART')
        self.assertEqual(payload['notification_url'], 'https://loja/webhook')
        self.assertEqual(payload['additional_info']['payer']['phone'], {'area_code': '11', 'number': '988887777'})

    def test_sem_conexao_retorna_502(self):
        self.gateway.create_payment.side_effect = GatewayConnectionError("timeout")
        status, body = self.use_case.execute({'payment_method_id': 'pix'}, self.order)
        self.assertEqual(status, 502)
        self.assertEqual(body['error'], 'connection_error')

    def test_erro_do_gateway_normalizado(self):
        self.gateway.create_payment.return_value = (400, {
            'error': 'bad_request', 'status': 400,
            'cause': [{'code': 2067, 'description': 'Invalid user identification number'}],
        })
        status, body = self.use_case.execute({'payment_method_id': 'pix'}, self.order)
        self.assertEqual(status, 400)
        self.assertEqual(body['message'], 'Invalid user identification number')
        self.assertEqual(body['error'], 'bad_request')


class TestPayloads(unittest.TestCase):

    def test_nome_dividido_e_descritor_limitado(self):
        payload = build_payment_payload(
            {'payment_method_id': 'pix'},
            {'orderId': 'natucart_1_abc', 'statementDescriptor': 'NATUCART SUPLEMENTOS NATURAIS',
             'customer': {'name': 'Maria da Silva Souza', 'email': 'm@x.com', 'taxId': '12345678909'},
             'transactionAmount': '10.00'},
        )
        self.assertEqual(payload['payer']['first_name'], 'Maria')
        self.assertEqual(payload['payer']['last_name'], 'da Silva Souza')
        self.assertEqual(len(payload['statement_descriptor']), 22)
        self.assertNotIn('notification_url', payload)

    def test_preferencia_sem_frete_gratis(self):
        repo = MemoryOrderRepository()
        context = draft_order(repo)
        preference = build_preference_payload(context, 'https://natucart.vercel.app', 'https://loja/webhook')
        self.assertEqual(len(preference['items']), 2)
        self.assertEqual(preference['external_reference'], context.order_id)
        self.assertEqual(preference['notification_url'], 'https://loja/webhook')
        self.assertEqual(preference['payment_methods']['installments'], 12)


if __name__ == '__main__':
    unittest.main()
