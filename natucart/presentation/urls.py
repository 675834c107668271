"""
Rotas da API da loja (carrinho, frete, checkout, pedidos, pagamentos e webhook).
Todas ficam sob o prefixo /api/ definido em natucart/urls.py.
"""
from django.urls import path

from . import views

urlpatterns = [
    # ====================================================================
    # 1. CARRINHO E FRETE
    # ====================================================================
    path('carrinho/', views.CartAPIView.as_view(), name='api_carrinho'),
    path('frete/cotar/', views.FreightQuoteAPIView.as_view(), name='api_frete_cotar'),
    path('frete/selecionar/', views.FreightSelectAPIView.as_view(), name='api_frete_selecionar'),

    # ====================================================================
    # 2. CHECKOUT
    # ====================================================================
    path('checkout/', views.CheckoutAPIView.as_view(), name='api_checkout'),
    path('checkout/redirecionar/', views.RedirectCheckoutAPIView.as_view(), name='api_checkout_redirecionar'),

    # ====================================================================
    # 3. PEDIDOS
    # ====================================================================
    path('pedidos/rascunho/', views.DraftSaveAPIView.as_view(), name='api_pedido_rascunho'),
    path('pedidos/consultar/', views.OrderLookupAPIView.as_view(), name='api_pedido_consultar'),

    # ====================================================================
    # 4. PAGAMENTOS
    # ====================================================================
    path('pagamentos/cobrar/', views.ChargeAPIView.as_view(), name='api_pagamento_cobrar'),
    path('pagamentos/preferencia/', views.PreferenceAPIView.as_view(), name='api_pagamento_preferencia'),
    path('pagamentos/abacatepay/cobranca/', views.AbacatePayBillingAPIView.as_view(), name='api_abacatepay_cobranca'),

    # Webhook do Mercado Pago (rota externa, não requer autenticação)
    path('webhooks/mercadopago/', views.WebhookMercadoPagoAPIView.as_view(), name='webhook_mercadopago'),
]
