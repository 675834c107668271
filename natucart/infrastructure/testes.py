import hashlib
import hmac
from dataclasses import replace
from decimal import Decimal
from unittest.mock import Mock, patch

import requests
from django.contrib.sessions.backends.db import SessionStore
from django.core.cache import cache
from django.core.exceptions import ImproperlyConfigured
from django.test import SimpleTestCase, TestCase, override_settings

# Importamos as classes que queremos testar
from natucart.core.cart import CartStore
from natucart.core.entities import (
    Address,
    CartItem,
    CartSnapshot,
    Customer,
    FreightOption,
    OrderContext,
    OrderRecord,
    OrderStatus,
    OrderTotals,
)
from natucart.core.exceptions import (
    EmptyCartError,
    ExternalServiceError,
    GatewayConnectionError,
    InvalidInputError,
    NotFoundError,
    OrderLockedError,
    OrderNotFoundError,
    StorageError,
)
from natucart.core.packaging import build_packages
from natucart.infrastructure.config import (
    AbacatePayConfig,
    FrenetConfig,
    MelhorEnvioConfig,
    MercadoPagoConfig,
    RelayConfig,
    SellerConfig,
    StoreConfig,
)
from natucart.infrastructure.gateways import (
    AbacatePayGateway,
    FrenetGateway,
    MelhorEnvioGateway,
    MercadoPagoCardTokenizer,
    MercadoPagoGateway,
    StorefrontBackendClient,
    WorkflowRelayGateway,
)
from natucart.infrastructure.mappers import OrderRecordMapper
from natucart.infrastructure.models import OrderRecordModel
from natucart.infrastructure.repositories import OrderRepositoryDjango
from natucart.infrastructure.signatures import build_manifest, verify_mercadopago_signature
from natucart.infrastructure.storage import MappingCartStorage, SessionPendingOrderCache


PAC = FreightOption(service='PAC', service_code='1', carrier='Correios',
                    price=Decimal('15.50'), delivery_time_days=7, postal_code='01310100')
SINGLE = CartItem(id='natucart-single', name='Natucart - 1 Frasco', sku='NATUCART-1',
                  unit_price=Decimal('99.90'), quantity=1)


def make_context(order_id='natucart_1700000000000_abc123xyz'):
    return OrderContext(
        order_id=order_id,
        customer=Customer(name='Maria da Silva', email='maria@example.com', phone='11988887777', tax_id='12345678909'),
        address=Address(postal_code='01310100', state='SP', city='São Paulo', street='Av. Paulista',
                        number='1000', district='Bela Vista'),
        freight=PAC,
        items=[SINGLE],
        totals=OrderTotals.from_values('99.90', '15.50'),
        metadata={'source': 'natucart_checkout', 'itemsCount': 1, 'freightService': 'PAC'},
    )


def make_record(**overrides):
    context = make_context()
    data = dict(
        order_id=context.order_id, status=OrderStatus.APPROVED, customer=context.customer,
        address=context.address, items=context.items, freight=context.freight, totals=context.totals,
    )
    data.update(overrides)
    return OrderRecord(**data)


def fake_response(status_code=200, json_data=None, text=''):
    response = Mock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.reason = 'Error' if status_code >= 400 else 'OK'
    response.text = text
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data if json_data is not None else {}
    return response


# ====================================================================
# REPOSITÓRIO (Django ORM)
# ====================================================================

class OrderRepositoryDjangoTestCase(TestCase):

    def setUp(self):
        """Cria o repositório e um rascunho real no banco de teste."""
        self.repository = OrderRepositoryDjango()
        self.context = make_context()
        self.record = self.repository.save_draft(self.context)

    def test_rascunho_criado_como_pending_payment(self):
        """
        Cenário: Verificar se o rascunho é gravado com o snapshot completo.
        """
        # ASSERT
        self.assertEqual(self.record.status, OrderStatus.PENDING_PAYMENT)
        model = OrderRecordModel.objects.get(order_id=self.context.order_id)
        self.assertEqual(model.total, Decimal('115.40'))
        self.assertEqual(model.customer['taxId'], '12345678909')
        self.assertEqual(model.items[0]['price'], '99.90')
        self.assertEqual(model.total_formatado, 'R$ 115,40')

    def test_buscar_pedido(self):
        # ACT
        record = self.repository.get(self.context.order_id)

        # ASSERT
        self.assertEqual(record.totals.total, Decimal('115.40'))
        self.assertEqual(record.freight.service, 'PAC')
        self.assertEqual(record.items[0].quantity, 1)

    def test_buscar_pedido_inexistente(self):
        self.assertIsNone(self.repository.get('natucart_0_naoexiste'))

    def test_regravar_rascunho_de_pedido_aprovado_e_recusado(self):
        """
        Cenário: o rascunho é regravado (com outros itens e endereço) depois
        que o webhook já aprovou o pedido. O snapshot pago não muda.
        """
        # ARRANGE
        self.repository.merge(self.context.order_id, status=OrderStatus.APPROVED)
        alterado = replace(
            self.context,
            items=[replace(SINGLE, quantity=50)],
            totals=OrderTotals.from_values('4995.00', '15.50'),
            address=replace(self.context.address, street='Rua do Atacante'),
        )

        # ACT / ASSERT
        with self.assertRaises(OrderLockedError):
            self.repository.save_draft(alterado)

        record = self.repository.get(self.context.order_id)
        self.assertEqual(record.status, OrderStatus.APPROVED)
        self.assertEqual(record.items[0].quantity, 1)
        self.assertEqual(record.address.street, 'Av. Paulista')
        self.assertEqual(record.totals.total, Decimal('115.40'))
        self.assertEqual(OrderRecordModel.objects.get(order_id=self.context.order_id).total, Decimal('115.40'))

    def test_regravar_rascunho_pendente(self):
        """
        Cenário: enquanto o pedido aguarda pagamento, o rascunho pode ser regravado.
        """
        alterado = replace(self.context, address=replace(self.context.address, number='2000'))

        record = self.repository.save_draft(alterado)

        self.assertEqual(record.status, OrderStatus.PENDING_PAYMENT)
        self.assertEqual(record.address.number, '2000')
        self.assertEqual(OrderRecordModel.objects.count(), 1)

    def test_merge_mescla_dicionarios(self):
        self.repository.merge(self.context.order_id, payment={'id': '555', 'status': 'pending'})

        record = self.repository.merge(
            self.context.order_id, status=OrderStatus.APPROVED, payment={'status': 'approved'}
        )

        self.assertEqual(record.status, OrderStatus.APPROVED)
        self.assertEqual(record.payment, {'id': '555', 'status': 'approved'})
        self.assertEqual(record.customer.email, 'maria@example.com')

    def test_merge_campo_nao_permitido(self):
        with self.assertRaises(InvalidInputError):
            self.repository.merge(self.context.order_id, totals={'total': '0.00'})

    def test_merge_status_invalido(self):
        with self.assertRaises(InvalidInputError):
            self.repository.merge(self.context.order_id, status='shipped')

    def test_merge_pedido_inexistente(self):
        with self.assertRaises(OrderNotFoundError):
            self.repository.merge('natucart_0_naoexiste', status=OrderStatus.APPROVED)

    def test_json_exposto_em_camel_case(self):
        data = OrderRecordMapper.to_dict(self.repository.get(self.context.order_id))

        self.assertEqual(data['orderId'], self.context.order_id)
        self.assertEqual(data['externalReference'], self.context.order_id)
        self.assertEqual(data['totals'], {'subtotal': '99.90', 'freight': '15.50', 'total': '115.40'})
        self.assertEqual(data['customer']['cellphone'], '11988887777')
        self.assertNotIn('payment', data)


# ====================================================================
# SESSÃO E CACHE
# ====================================================================

class SessionStorageTestCase(TestCase):

    def setUp(self):
        cache.clear()
        self.session = SessionStore()

    def test_marcador_de_tentativa_em_voo(self):
        pending = SessionPendingOrderCache(self.session)

        self.assertTrue(pending.acquire())
        self.assertFalse(SessionPendingOrderCache(self.session).acquire())

        pending.release()
        self.assertTrue(pending.acquire())

    def test_sessoes_diferentes_nao_se_bloqueiam(self):
        self.assertTrue(SessionPendingOrderCache(self.session).acquire())
        self.assertTrue(SessionPendingOrderCache(SessionStore()).acquire())

    def test_pedido_pendente_na_sessao(self):
        pending = SessionPendingOrderCache(self.session)
        pending.store({'orderId': 'natucart_1_abc', 'attempts': 1})
        self.assertEqual(pending.load()['attempts'], 1)


class MappingCartStorageTestCase(SimpleTestCase):

    def test_estado_corrompido(self):
        storage = MappingCartStorage({'natucart_cart_state': 'lixo'})
        with self.assertRaises(StorageError):
            storage.load()

    def test_carrinho_ignora_estado_corrompido(self):
        logger = Mock()
        cart = CartStore(MappingCartStorage({'natucart_cart_state': ['lixo']}), logger=logger)
        self.assertTrue(cart.get_snapshot().is_empty)
        logger.warning.assert_called_once()

    def test_carrinho_persistido_no_mapeamento(self):
        mapping = {}
        CartStore(MappingCartStorage(mapping), logger=Mock()).add_item('natucart-six', 2)
        self.assertEqual(mapping['natucart_cart_state']['items'][0]['quantity'], 2)


# ====================================================================
# CONFIGURAÇÃO
# ====================================================================

class ConfigTestCase(SimpleTestCase):

    def test_timeout_invalido(self):
        with self.assertRaises(ImproperlyConfigured):
            MercadoPagoConfig(timeout=0)
        with self.assertRaises(ImproperlyConfigured):
            MelhorEnvioConfig(timeout=-1)

    def test_transportadora_invalida(self):
        with self.assertRaises(ImproperlyConfigured):
            StoreConfig(freight_carrier='correios')

    def test_cep_do_remetente(self):
        with self.assertRaises(ImproperlyConfigured):
            SellerConfig(postal_code='0100')

    @override_settings(MP_ACCESS_TOKEN='TEST-123', PAYMENT_TIMEOUT=20, STORE_BASE_URL='https://loja.test/')
    def test_lido_do_settings(self):
        self.assertEqual(MercadoPagoConfig.from_settings().access_token, 'TEST-123')
        self.assertEqual(MercadoPagoConfig.from_settings().timeout, 20)
        self.assertEqual(StoreConfig.from_settings().order_api_url, 'https://loja.test/api/pedidos/consultar/')
        self.assertEqual(AbacatePayConfig.from_settings().completion_url, 'https://loja.test?payment=completed')

    def test_modo_simulado_sem_credenciais(self):
        self.assertTrue(MelhorEnvioConfig().mock_mode)
        self.assertTrue(FrenetConfig(token='abc').mock_mode)
        self.assertFalse(RelayConfig().enabled)


# ====================================================================
# ASSINATURA DO WEBHOOK
# ====================================================================

class SignatureTestCase(SimpleTestCase):

    def sign(self, secret, data_id, request_id, ts):
        manifest = f"id:{data_id};request-id:{request_id};ts:{ts};"
        return hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()

    def test_assinatura_valida(self):
        v1 = self.sign('segredo', '123456', 'req-1', '1700000000')
        self.assertTrue(verify_mercadopago_signature(f"ts=1700000000,v1={v1}", 'req-1', '123456', 'segredo'))

    def test_assinatura_invalida(self):
        self.assertFalse(verify_mercadopago_signature("ts=1700000000,v1=abc", 'req-1', '123456', 'segredo'))
        self.assertFalse(verify_mercadopago_signature(None, 'req-1', '123456', 'segredo'))

    def test_sem_segredo_nao_verifica(self):
        self.assertIsNone(verify_mercadopago_signature("ts=1,v1=abc", 'req-1', '123456', ''))

    def test_manifesto_em_minusculas_sem_partes_ausentes(self):
        self.assertEqual(build_manifest('ABC123', None, '99'), 'id:abc123;ts:99;')


# ====================================================================
# MERCADO PAGO
# ====================================================================

class MercadoPagoGatewayTestCase(SimpleTestCase):

    def setUp(self):
        self.gateway = MercadoPagoGateway(MercadoPagoConfig(access_token='TEST-TOKEN', public_key='TEST-PUB'))

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_cobranca_com_chave_de_idempotencia(self, mock_post):
        mock_post.return_value = fake_response(201, {'id': 1, 'status': 'approved'})

        status_code, body = self.gateway.create_payment({'external_reference': 'natucart_1_abc'}, 'chave-1')

        self.assertEqual((status_code, body['status']), (201, 'approved'))
        args, kwargs = mock_post.call_args
        self.assertEqual(args[0], 'https://api.mercadopago.com/v1/payments')
        self.assertEqual(kwargs['headers']['X-Idempotency-Key'], 'chave-1')
        self.assertEqual(kwargs['headers']['Authorization'], 'Bearer TEST-TOKEN')
        self.assertEqual(kwargs['timeout'], 15)

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_erro_do_gateway_repassado(self, mock_post):
        mock_post.return_value = fake_response(400, {'error': 'bad_request'})
        status_code, body = self.gateway.create_payment({}, 'chave-1')
        self.assertEqual(status_code, 400)
        self.assertEqual(body['error'], 'bad_request')

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_sem_conexao(self, mock_post):
        mock_post.side_effect = requests.exceptions.Timeout("timeout")
        with self.assertRaises(GatewayConnectionError):
            self.gateway.create_payment({}, 'chave-1')

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_resposta_nao_json(self, mock_post):
        mock_post.return_value = fake_response(502, ValueError("no json"), text='<html>Bad Gateway</html>')
        with self.assertRaises(ExternalServiceError) as ctx:
            self.gateway.create_preference({'items': []})
        self.assertEqual(ctx.exception.status_code, 500)

    @patch('natucart.infrastructure.gateways.requests.get')
    def test_consultar_pagamento(self, mock_get):
        mock_get.return_value = fake_response(200, {
            'id': 555, 'status': 'approved', 'status_detail': 'accredited',
            'external_reference': 'natucart_1_abc', 'transaction_amount': 115.4,
        })

        payment = self.gateway.get_payment('555')

        self.assertEqual(payment.payment_id, '555')
        self.assertEqual(payment.external_reference, 'natucart_1_abc')
        self.assertEqual(payment.transaction_amount, Decimal('115.40'))
        self.assertEqual(mock_get.call_args[1]['timeout'], 10)

    @patch('natucart.infrastructure.gateways.requests.get')
    def test_pagamento_inexistente(self, mock_get):
        mock_get.return_value = fake_response(404, {'message': 'not found'})
        with self.assertRaises(NotFoundError):
            self.gateway.get_payment('999')

    @patch('natucart.infrastructure.gateways.requests.get')
    def test_consulta_com_erro(self, mock_get):
        mock_get.return_value = fake_response(500, {}, text='erro')
        with self.assertRaises(ExternalServiceError) as ctx:
            self.gateway.get_payment('555')
        self.assertEqual(ctx.exception.status_code, 500)


class MercadoPagoCardTokenizerTestCase(SimpleTestCase):

    def setUp(self):
        self.tokenizer = MercadoPagoCardTokenizer(MercadoPagoConfig(public_key='TEST-PUB'))
        self.card = Mock(number='4235 6477 2802 5682', holder_name='MARIA', expiration_month='11',
                         expiration_year='2030', security_code='123')

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_tokenizar(self, mock_post):
        mock_post.return_value = fake_response(201, {'id': 'tok_123'})

        token = self.tokenizer.tokenize(self.card)

        self.assertEqual(token, 'tok_123')
        kwargs = mock_post.call_args[1]
        self.assertEqual(kwargs['params'], {'public_key': 'TEST-PUB'})
        self.assertEqual(kwargs['json']['card_number'], '4235647728025682')
        self.assertEqual(kwargs['json']['expiration_month'], 11)

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_cartao_recusado(self, mock_post):
        mock_post.return_value = fake_response(400, {'message': 'invalid card_number'})
        with self.assertRaises(InvalidInputError) as ctx:
            self.tokenizer.tokenize(self.card)
        self.assertEqual(ctx.exception.section, 'payment')


# ====================================================================
# ABACATEPAY
# ====================================================================

class AbacatePayGatewayTestCase(SimpleTestCase):

    def test_precos_em_centavos(self):
        products = AbacatePayGateway.build_products([SINGLE])
        self.assertEqual(products[0]['price'], 9990)
        self.assertEqual(products[0]['externalId'], 'NATUCART-1')

    def test_carrinho_vazio(self):
        with self.assertRaises(EmptyCartError):
            AbacatePayGateway.build_products([])

    def test_sem_chave(self):
        with self.assertRaises(ExternalServiceError):
            AbacatePayGateway(AbacatePayConfig()).create_billing(CartSnapshot(items=[SINGLE]))

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_criar_cobranca(self, mock_post):
        mock_post.return_value = fake_response(200, {'data': {'id': 'bill_1', 'url': 'https://abacatepay/pay'}})
        gateway = AbacatePayGateway(AbacatePayConfig(api_key='abc_dev', return_url='https://loja'))

        data = gateway.create_billing(CartSnapshot(items=[SINGLE]))

        self.assertEqual(data['data']['url'], 'https://abacatepay/pay')
        body = mock_post.call_args[1]['json']
        self.assertEqual(body['methods'], ['PIX'])
        self.assertEqual(body['frequency'], 'ONE_TIME')

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_cobranca_recusada(self, mock_post):
        mock_post.return_value = fake_response(401, {'error': 'Unauthorized'})
        gateway = AbacatePayGateway(AbacatePayConfig(api_key='abc_dev'))
        with self.assertRaises(ExternalServiceError) as ctx:
            gateway.create_billing(CartSnapshot(items=[SINGLE]))
        self.assertEqual(ctx.exception.status_code, 401)


# ====================================================================
# TRANSPORTADORAS
# ====================================================================

class MelhorEnvioGatewayTestCase(SimpleTestCase):

    def setUp(self):
        self.gateway = MelhorEnvioGateway(MelhorEnvioConfig(token='ME-TOKEN'))
        self.packages = build_packages([SINGLE])

    def test_modo_simulado(self):
        gateway = MelhorEnvioGateway(MelhorEnvioConfig())
        with patch('natucart.infrastructure.gateways.requests.post') as mock_post:
            options = gateway.quote('01310100', self.packages)
            shipment_id = gateway.create_shipment(make_record(), self.packages)
        mock_post.assert_not_called()
        self.assertEqual([o.service_code for o in options], ['PAC', 'SEDEX'])
        self.assertEqual(options[0].price, Decimal('15.50'))
        self.assertEqual(shipment_id, 'mock-natucart_1700000000000_abc123xyz')
        self.assertFalse(gateway.generate_label(shipment_id))

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_cotacao_filtra_servicos_sem_preco_ou_com_erro(self, mock_post):
        mock_post.return_value = fake_response(200, [
            {'id': 1, 'name': 'PAC', 'price': '18.20', 'delivery_time': 6, 'company': {'name': 'Correios'}},
            {'id': 2, 'name': 'SEDEX', 'price': '30.00', 'error': 'Serviço indisponível'},
            {'id': 3, 'name': '.Package', 'price': '0'},
            {'id': 17, 'name': 'Mini Envios', 'custom_price': '12.00', 'delivery_range': {'min': 8, 'max': 10}},
        ])

        options = self.gateway.quote('01310100', self.packages)

        self.assertEqual([o.service_code for o in options], ['1', '17'])
        self.assertEqual(options[1].price, Decimal('12.00'))
        self.assertEqual(options[1].delivery_time_days, 8)
        payload = mock_post.call_args[1]['json']
        self.assertEqual(payload['from']['postal_code'], '01001000')
        self.assertEqual(payload['products'][0]['weight'], 0.05)

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_cotacao_com_erro_http(self, mock_post):
        mock_post.return_value = fake_response(401, {'message': 'Unauthenticated.'}, text='Unauthenticated.')
        with self.assertRaises(ExternalServiceError):
            self.gateway.quote('01310100', self.packages)

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_envio_e_etiqueta(self, mock_post):
        mock_post.side_effect = [
            fake_response(201, {'id': 'ord-9f8e'}),
            fake_response(200, {'ord-9f8e': {'status': True}}),
            fake_response(200, {'url': 'https://melhorenvio.com.br/imprimir/abc'}),
        ]
        record = make_record()

        shipment_id = self.gateway.create_shipment(record, self.packages)
        generated = self.gateway.generate_label(shipment_id)
        url = self.gateway.get_label_url(shipment_id)

        self.assertEqual(shipment_id, 'ord-9f8e')
        self.assertTrue(generated)
        self.assertEqual(url, 'https://melhorenvio.com.br/imprimir/abc')
        payload = mock_post.call_args_list[0][1]['json']
        self.assertEqual(payload['service'], '1')
        self.assertEqual(payload['to']['document'], '12345678909')
        self.assertEqual(payload['options']['insurance_value'], 115.4)

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_envio_sem_id(self, mock_post):
        mock_post.return_value = fake_response(201, {})
        with self.assertRaises(ExternalServiceError):
            self.gateway.create_shipment(make_record(), self.packages)


class FrenetGatewayTestCase(SimpleTestCase):

    def test_modo_simulado(self):
        options = FrenetGateway(FrenetConfig()).quote('01310100', build_packages([SINGLE]))
        self.assertEqual(options[0].service_code, 'FRENET')

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_primeira_opcao_disponivel(self, mock_post):
        mock_post.return_value = fake_response(200, {'ShippingSevicesArray': [], 'Services': [
            {'ServiceCode': '04510', 'ServiceDescription': 'PAC', 'ServiceAvailable': False},
            {'ServiceCode': '04014', 'ServiceDescription': 'SEDEX', 'Carrier': 'Correios',
             'ShippingPrice': '27.35', 'DeliveryTime': '2', 'ServiceAvailable': True},
        ]})
        gateway = FrenetGateway(FrenetConfig(token='tk', password='pw'))

        options = gateway.quote('01310100', build_packages([SINGLE]))

        self.assertEqual(len(options), 1)
        self.assertEqual(options[0].service_code, '04014')
        self.assertEqual(options[0].price, Decimal('27.35'))
        self.assertEqual(mock_post.call_args[1]['headers']['senha'], 'pw')

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_nenhuma_opcao_disponivel(self, mock_post):
        mock_post.return_value = fake_response(200, {'Services': []})
        gateway = FrenetGateway(FrenetConfig(token='tk', password='pw'))
        self.assertEqual(gateway.quote('01310100', build_packages([SINGLE])), [])


# ====================================================================
# AUTOMAÇÃO E BACKEND REMOTO
# ====================================================================

class RelayAndBackendClientTestCase(SimpleTestCase):

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_repasse_desligado(self, mock_post):
        WorkflowRelayGateway(RelayConfig()).forward({'paymentId': '1'})
        mock_post.assert_not_called()

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_repasse_com_erro(self, mock_post):
        mock_post.return_value = fake_response(500)
        with self.assertRaises(ExternalServiceError):
            WorkflowRelayGateway(RelayConfig(url='https://n8n.test/webhook')).forward({'paymentId': '1'})

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_rascunho_pelo_backend_remoto(self, mock_post):
        mock_post.return_value = fake_response(201, {'status': 'ok'})
        client = StorefrontBackendClient('https://loja.test/')

        client.save_draft(make_context())

        args, kwargs = mock_post.call_args
        self.assertEqual(args[0], 'https://loja.test/api/pedidos/rascunho/')
        self.assertEqual(kwargs['json']['orderId'], 'natucart_1700000000000_abc123xyz')
        self.assertEqual(kwargs['json']['orderData']['totals']['total'], '115.40')

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_rascunho_recusado(self, mock_post):
        mock_post.return_value = fake_response(500, {'message': 'falhou'})
        with self.assertRaises(ExternalServiceError):
            StorefrontBackendClient('https://loja.test').save_draft(make_context())
