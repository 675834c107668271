# natucart/core/apps.py

from django.apps import AppConfig

class CoreConfig(AppConfig):
    # O nome completo do path da aplicação
    name = 'natucart.core'
    # Define o label curto para referência (ex: no shell ou migrações)
    label = 'core'
    # Nome amigável que pode ser exibido no Admin, se necessário
    verbose_name = 'Carrinho, Frete e Checkout (Core)'

    # Sem modelos nesta camada: a persistência fica na Infrastructure.
    default_auto_field = 'django.db.models.BigAutoField'
