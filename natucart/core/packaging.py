"""
Tabela de embalagens por quantidade.

A mesma tabela é usada para cotar o frete e para criar o envio na
transportadora, para que o pacote cotado seja o pacote despachado.
A regra vale por linha do carrinho: uma linha com 5 unidades gera um
único pacote dimensionado para 5, e não cinco pacotes de 1.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Tuple

from .entities import CartItem, PackageProfile
from .exceptions import InvalidInputError


_ENVELOPE = PackageProfile(Decimal('0.05'), Decimal('16.5'), Decimal('1'), Decimal('18'))
_CAIXA_PEQUENA = PackageProfile(Decimal('0.16'), Decimal('20.5'), Decimal('7.5'), Decimal('12'))
_CAIXA_SEIS = PackageProfile(Decimal('0.28'), Decimal('19'), Decimal('10'), Decimal('14.5'))


def package_profile_for(quantity: int) -> PackageProfile:
    """
    Retorna peso e dimensões do pacote para uma quantidade de unidades.

    Acima de 6 unidades o peso cresce linearmente a partir da caixa de 6
    e as dimensões continuam as da caixa de 6.
    """
    if quantity < 1:
        raise InvalidInputError(f"Quantidade inválida para embalagem: {quantity}.", field='quantity')

    if quantity == 1:
        return _ENVELOPE
    if quantity <= 3:
        return _CAIXA_PEQUENA
    if quantity <= 6:
        return _CAIXA_SEIS

    peso = (_CAIXA_SEIS.weight_kg * quantity / 6).quantize(Decimal('0.001'), rounding=ROUND_HALF_UP)
    return PackageProfile(
        weight_kg=peso,
        width_cm=_CAIXA_SEIS.width_cm,
        height_cm=_CAIXA_SEIS.height_cm,
        length_cm=_CAIXA_SEIS.length_cm,
    )


def build_packages(items: List[CartItem]) -> List[Tuple[CartItem, PackageProfile]]:
    """Associa cada linha do carrinho ao seu pacote."""
    return [(item, package_profile_for(item.quantity)) for item in items]
