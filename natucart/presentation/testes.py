from decimal import Decimal
from unittest.mock import Mock, patch

from django.core.cache import cache
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

# Importamos as classes que queremos testar
from natucart.core.entities import (
    Address,
    CartItem,
    Customer,
    FreightOption,
    OrderContext,
    OrderStatus,
    OrderTotals,
)
from natucart.core.exceptions import CheckoutInProgressError
from natucart.core.use_cases import NotificationOutcome
from natucart.infrastructure.models import OrderRecordModel
from natucart.infrastructure.repositories import OrderRepositoryDjango


CUSTOMER = {'name': 'Maria da Silva', 'email': 'maria@example.com', 'cellphone': '(11) 98888-7777',
            'taxId': '123.456.789-09'}
ADDRESS = {'postalCode': '01310-100', 'state': 'SP', 'city': 'São Paulo', 'street': 'Av. Paulista',
           'number': '1000', 'district': 'Bela Vista'}


def fake_response(status_code=200, json_data=None):
    response = Mock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.text = ''
    response.json.return_value = json_data if json_data is not None else {}
    return response


def make_context(order_id='natucart_1700000000000_abc123xyz'):
    return OrderContext(
        order_id=order_id,
        customer=Customer.from_dict(CUSTOMER),
        address=Address.from_dict(ADDRESS),
        freight=FreightOption('PAC', 'PAC', 'Correios', Decimal('15.50'), 7),
        items=[CartItem('natucart-single', 'Natucart - 1 Frasco', 'NATUCART-1', Decimal('99.90'), 1)],
        totals=OrderTotals.from_values('99.90', '15.50'),
    )


# ====================================================================
# CARRINHO E FRETE
# ====================================================================

class CartAPITestCase(APITestCase):

    def setUp(self):
        self.url = reverse('api_carrinho')

    def test_adicionar_alterar_e_remover(self):
        """
        Cenário: o comprador adiciona 2 frascos, reduz para 1 e remove o item.
        """
        # ACT / ASSERT
        response = self.client.post(self.url, {'productId': 'natucart-single', 'quantity': 2}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['subtotal'], '199.80')
        self.assertEqual(response.data['itemsCount'], 2)

        response = self.client.patch(self.url, {'productId': 'natucart-single', 'quantity': 1}, format='json')
        self.assertEqual(response.data['total'], '99.90')

        response = self.client.get(self.url)
        self.assertEqual(len(response.data['items']), 1)

        response = self.client.delete(self.url, {'productId': 'natucart-single'}, format='json')
        self.assertEqual(response.data['items'], [])

    def test_produto_desconhecido_nao_altera(self):
        response = self.client.post(self.url, {'productId': 'natucart-dez'}, format='json')
        self.assertEqual(response.data['items'], [])

    def test_preflight_cors(self):
        response = self.client.options(self.url)
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertEqual(response['Access-Control-Allow-Origin'], '*')
        self.assertIn('POST', response['Access-Control-Allow-Methods'])


class FreightAPITestCase(APITestCase):
    """Sem token do Melhor Envio a cotação roda em modo simulado (PAC 15,50 e SEDEX 25,90)."""

    def setUp(self):
        self.client.post(reverse('api_carrinho'), {'productId': 'natucart-single'}, format='json')

    def test_cotar_sugere_mas_nao_aplica(self):
        response = self.client.post(reverse('api_frete_cotar'), {'postalCode': '01310-100'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['postalCode'], '01310100')
        self.assertEqual(len(response.data['options']), 2)
        self.assertEqual(response.data['suggested']['serviceCode'], 'PAC')
        self.assertIsNone(self.client.get(reverse('api_carrinho')).data['freight'])

    def test_selecionar_opcao_cotada(self):
        self.client.post(reverse('api_frete_cotar'), {'postalCode': '01310100'}, format='json')

        response = self.client.post(reverse('api_frete_selecionar'), {'serviceCode': 'SEDEX'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['freight']['serviceCode'], 'SEDEX')
        self.assertEqual(response.data['total'], '125.80')

    def test_selecionar_sem_cotacao(self):
        response = self.client.post(reverse('api_frete_selecionar'), {'serviceCode': 'PAC'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_cep_invalido(self):
        response = self.client.post(reverse('api_frete_cotar'), {'postalCode': '123'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['field'], 'postalCode')


# ====================================================================
# CHECKOUT
# ====================================================================

class CheckoutAPITestCase(APITestCase):

    def setUp(self):
        cache.clear()
        self.client.post(reverse('api_carrinho'), {'productId': 'natucart-single'}, format='json')
        self.client.post(reverse('api_frete_cotar'), {'postalCode': '01310100'}, format='json')
        self.client.post(reverse('api_frete_selecionar'), {'serviceCode': 'PAC'}, format='json')

    @patch('natucart.infrastructure.gateways.requests.get')
    @patch('natucart.infrastructure.gateways.requests.post')
    def test_pix_pendente_e_aprovado_pelo_webhook(self, mock_post, mock_get):
        """
        Cenário: PIX gerado no checkout, aprovado depois pelo webhook, que cria o envio (modo simulado).
        """
        # ARRANGE
        mock_post.return_value = fake_response(201, {
            'id': 555,
            'status': 'pending',
            'status_detail': 'pending_waiting_transfer',
            'point_of_interaction': {'transaction_data': {'qr_code': '000201', 'qr_code_base64': 'iVBOR'}},
        })

        # ACT
        response = self.client.post(reverse('api_checkout'), {
            'customer': CUSTOMER, 'address': ADDRESS, 'payment': {'method': 'pix'},
        }, format='json')

        # ASSERT
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['state'], 'awaiting_confirmation')
        self.assertEqual([e['kind'] for e in response.data['events']], ['pix_generated', 'pending'])
        order_id = response.data['orderId']
        self.assertEqual(mock_post.call_args[1]['json']['transaction_amount'], 115.4)
        self.assertEqual(OrderRecordModel.objects.get(order_id=order_id).status, OrderStatus.PENDING_PAYMENT)
        self.assertEqual(len(self.client.get(reverse('api_carrinho')).data['items']), 1)

        # Webhook de aprovação
        mock_get.return_value = fake_response(200, {
            'id': 555, 'status': 'approved', 'external_reference': order_id, 'transaction_amount': 115.4,
        })
        response = self.client.post(
            reverse('webhook_mercadopago') + '?type=payment&data.id=555', {}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['orderStatus'], OrderStatus.SHIPPING_CREATED)
        model = OrderRecordModel.objects.get(order_id=order_id)
        self.assertEqual(model.status, OrderStatus.SHIPPING_CREATED)
        self.assertEqual(model.shipment['shipmentId'], f"mock-{order_id}")
        self.assertEqual(model.payment['status'], 'approved')

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_cpf_invalido_retorna_400_sem_cobrar(self, mock_post):
        response = self.client.post(reverse('api_checkout'), {
            'customer': {**CUSTOMER, 'taxId': '123'}, 'address': ADDRESS, 'payment': {'method': 'pix'},
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['state'], 'idle')
        self.assertEqual(response.data['events'][0]['field'], 'taxId')
        mock_post.assert_not_called()
        self.assertEqual(OrderRecordModel.objects.count(), 0)

    @patch('natucart.presentation.views.di.get_payment_orchestrator')
    def test_tentativa_em_andamento(self, mock_factory):
        mock_factory.return_value.submit.side_effect = CheckoutInProgressError()

        response = self.client.post(reverse('api_checkout'), {
            'customer': CUSTOMER, 'address': ADDRESS, 'payment': {'method': 'pix'},
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_metodo_de_pagamento_invalido(self):
        response = self.client.post(reverse('api_checkout'), {'payment': {'method': 'cheque'}}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


# ====================================================================
# PEDIDOS
# ====================================================================

class OrderAPITestCase(APITestCase):

    def test_gravar_rascunho(self):
        context = make_context()

        response = self.client.post(reverse('api_pedido_rascunho'), {
            'orderId': context.order_id, 'orderData': context.to_dict(),
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data, {'status': 'ok', 'orderId': context.order_id})
        model = OrderRecordModel.objects.get(order_id=context.order_id)
        self.assertEqual(model.status, OrderStatus.PENDING_PAYMENT)
        self.assertEqual(model.total, Decimal('115.40'))

    def test_rascunho_de_pedido_pago_nao_altera_o_pedido(self):
        repository = OrderRepositoryDjango()
        context = make_context()
        repository.save_draft(context)
        repository.merge(context.order_id, status=OrderStatus.APPROVED)
        dados = context.to_dict()
        dados['items'][0]['quantity'] = 50
        dados['address']['street'] = 'Rua do Atacante'

        response = self.client.post(reverse('api_pedido_rascunho'), {
            'orderId': context.order_id, 'orderData': dados,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'order_locked')
        model = OrderRecordModel.objects.get(order_id=context.order_id)
        self.assertEqual(model.status, OrderStatus.APPROVED)
        self.assertEqual(model.items[0]['quantity'], 1)
        self.assertEqual(model.address['street'], 'Av. Paulista')
        self.assertEqual(model.total, Decimal('115.40'))

    def test_rascunho_sem_dados(self):
        response = self.client.post(reverse('api_pedido_rascunho'), {'orderId': 'natucart_1_abc'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_consultar_pedido(self):
        OrderRepositoryDjango().save_draft(make_context())

        response = self.client.get(reverse('api_pedido_consultar'), {'orderId': 'natucart_1700000000000_abc123xyz'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['orderData']['status'], OrderStatus.PENDING_PAYMENT)
        self.assertEqual(response.data['orderData']['totals']['total'], '115.40')

    def test_consultar_por_external_reference(self):
        OrderRepositoryDjango().save_draft(make_context())
        response = self.client.get(
            reverse('api_pedido_consultar'), {'external_reference': 'natucart_1700000000000_abc123xyz'}
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_pedido_inexistente(self):
        response = self.client.get(reverse('api_pedido_consultar'), {'orderId': 'natucart_0_nada'})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_consulta_sem_id(self):
        response = self.client.get(reverse('api_pedido_consultar'))
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


# ====================================================================
# PAGAMENTOS
# ====================================================================

class PaymentAPITestCase(APITestCase):

    def test_cobranca_sem_dados(self):
        response = self.client.post(reverse('api_pagamento_cobrar'), {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_422_UNPROCESSABLE_ENTITY)

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_cobranca_de_cartao_sem_token(self, mock_post):
        response = self.client.post(reverse('api_pagamento_cobrar'), {
            'paymentData': {'payment_method_id': 'visa'},
            'order': make_context().to_dict(),
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_422_UNPROCESSABLE_ENTITY)
        self.assertEqual(response.data['field'], 'token')
        mock_post.assert_not_called()

    @patch('natucart.infrastructure.gateways.requests.post')
    def test_cobranca_repassa_cabecalho_de_idempotencia(self, mock_post):
        mock_post.return_value = fake_response(201, {'id': 1, 'status': 'approved'})

        response = self.client.post(reverse('api_pagamento_cobrar'), {
            'paymentData': {'payment_method_id': 'pix'},
            'order': make_context().to_dict(),
        }, format='json', HTTP_X_IDEMPOTENCY_KEY='chave-123')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(mock_post.call_args[1]['headers']['X-Idempotency-Key'], 'chave-123')

    def test_preferencia_incompleta(self):
        response = self.client.post(reverse('api_pagamento_preferencia'), {'preference': {'items': []}}, format='json')
        self.assertEqual(response.status_code, status.HTTP_422_UNPROCESSABLE_ENTITY)

    def test_abacatepay_sem_chave(self):
        self.client.post(reverse('api_carrinho'), {'productId': 'natucart-trio'}, format='json')
        response = self.client.post(reverse('api_abacatepay_cobranca'), {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)


# ====================================================================
# WEBHOOK
# ====================================================================

class WebhookAPITestCase(APITestCase):

    def setUp(self):
        self.url = reverse('webhook_mercadopago')

    @patch('natucart.presentation.views.di.get_process_notification_use_case')
    def test_notificacao_no_corpo(self, mock_factory):
        mock_factory.return_value.execute.return_value = NotificationOutcome(
            processed=True, reason='approved', payment_id='555', order_id='natucart_1_abc',
            order_status=OrderStatus.SHIPPING_CREATED,
        )

        response = self.client.post(self.url, {'type': 'payment', 'data': {'id': '555'}}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['orderStatus'], OrderStatus.SHIPPING_CREATED)
        mock_factory.return_value.execute.assert_called_once_with('payment', '555', None)

    def test_merchant_order_reconhecida(self):
        response = self.client.get(self.url, {'topic': 'merchant_order', 'id': '123'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['processed'])
        self.assertEqual(response.data['reason'], 'merchant_order')

    @patch('natucart.presentation.views.di.get_process_notification_use_case')
    def test_erro_inesperado_ainda_responde_200(self, mock_factory):
        mock_factory.return_value.execute.side_effect = RuntimeError("bug")

        response = self.client.post(self.url + '?topic=payment&id=555', {}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['reason'], 'error')

    def test_metodo_nao_permitido(self):
        response = self.client.put(self.url, {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_405_METHOD_NOT_ALLOWED)

    @patch('natucart.presentation.views.di.get_process_notification_use_case')
    def test_assinatura_invalida_nao_bloqueia(self, mock_factory):
        mock_factory.return_value.execute.return_value = NotificationOutcome(processed=True, reason='pending')

        with self.settings(MP_WEBHOOK_SECRET='segredo'):
            response = self.client.post(
                self.url + '?type=payment&data.id=555', {}, format='json',
                HTTP_X_SIGNATURE='ts=1700000000,v1=invalido', HTTP_X_REQUEST_ID='req-1',
            )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        mock_factory.return_value.execute.assert_called_once_with('payment', '555', False)
