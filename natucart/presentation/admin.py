# Configuração da interface administrativa do Django para os pedidos do Natucart.

from django.contrib import admin

from natucart.infrastructure.models import OrderRecordModel


@admin.register(OrderRecordModel)
class OrderRecordAdmin(admin.ModelAdmin):
    """
    Pedidos são consultados, não editados: o snapshot da compra e os dados
    de pagamento/envio vêm do checkout e do webhook.
    """
    list_display = ('order_id', 'status', 'total_formatado', 'created_at', 'updated_at')
    list_filter = ('status', 'created_at')
    search_fields = ('order_id',)
    ordering = ('-created_at',)
    readonly_fields = (
        'order_id', 'customer', 'address', 'items', 'freight', 'totals',
        'metadata', 'payment', 'shipment', 'total', 'created_at', 'updated_at',
    )

    @admin.display(description='Total')
    def total_formatado(self, obj):
        return obj.total_formatado

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        # Pedidos nunca são apagados
        return False
