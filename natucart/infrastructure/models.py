from django.db import models


class OrderRecordModel(models.Model):
    """
    Pedido persistido. Os blocos (cliente, endereço, itens, frete, totais,
    pagamento, envio) ficam em JSON no formato camelCase trocado com a loja,
    como cópia imutável do momento da compra.
    """
    STATUS_CHOICES = [
        ('pending_payment', 'Aguardando Pagamento'),
        ('approved', 'Pago'),
        ('shipping_created', 'Envio Criado'),
        ('rejected', 'Recusado'),
        ('cancelled', 'Cancelado'),
    ]

    order_id = models.CharField(max_length=64, unique=True, verbose_name="ID do Pedido")
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending_payment', verbose_name="Status")

    # Snapshot dos dados no momento do pedido
    customer = models.JSONField(default=dict, verbose_name="Cliente")
    address = models.JSONField(default=dict, verbose_name="Endereço de Entrega")
    items = models.JSONField(default=list, verbose_name="Itens")
    freight = models.JSONField(null=True, blank=True, verbose_name="Frete")
    totals = models.JSONField(default=dict, verbose_name="Totais")
    metadata = models.JSONField(default=dict, blank=True, verbose_name="Metadados")

    # Preenchidos pelo webhook e pelo envio
    payment = models.JSONField(null=True, blank=True, verbose_name="Pagamento")
    shipment = models.JSONField(null=True, blank=True, verbose_name="Envio")

    # Cópia do total para listagem e filtros no Admin
    total = models.DecimalField(max_digits=10, decimal_places=2, default=0, verbose_name="Total")

    created_at = models.DateTimeField(auto_now_add=True, verbose_name="Criado em")
    updated_at = models.DateTimeField(auto_now=True, verbose_name="Atualizado em")

    class Meta:
        verbose_name = 'Pedido'
        verbose_name_plural = 'Pedidos'
        ordering = ['-created_at']
        db_table = 'natucart_pedido'

    def __str__(self):
        return f"Pedido {self.order_id} - {self.status}"

    @property
    def total_formatado(self):
        return f"R$ {self.total:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
