from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='OrderRecordModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('order_id', models.CharField(max_length=64, unique=True, verbose_name='ID do Pedido')),
                ('status', models.CharField(
                    choices=[
                        ('pending_payment', 'Aguardando Pagamento'),
                        ('approved', 'Pago'),
                        ('shipping_created', 'Envio Criado'),
                        ('rejected', 'Recusado'),
                        ('cancelled', 'Cancelado'),
                    ],
                    default='pending_payment',
                    max_length=20,
                    verbose_name='Status',
                )),
                ('customer', models.JSONField(default=dict, verbose_name='Cliente')),
                ('address', models.JSONField(default=dict, verbose_name='Endereço de Entrega')),
                ('items', models.JSONField(default=list, verbose_name='Itens')),
                ('freight', models.JSONField(blank=True, null=True, verbose_name='Frete')),
                ('totals', models.JSONField(default=dict, verbose_name='Totais')),
                ('metadata', models.JSONField(blank=True, default=dict, verbose_name='Metadados')),
                ('payment', models.JSONField(blank=True, null=True, verbose_name='Pagamento')),
                ('shipment', models.JSONField(blank=True, null=True, verbose_name='Envio')),
                ('total', models.DecimalField(decimal_places=2, default=0, max_digits=10, verbose_name='Total')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Criado em')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='Atualizado em')),
            ],
            options={
                'verbose_name': 'Pedido',
                'verbose_name_plural': 'Pedidos',
                'db_table': 'natucart_pedido',
                'ordering': ['-created_at'],
            },
        ),
    ]
