"""
Verificação da assinatura x-signature das notificações do Mercado Pago.

O cabeçalho vem no formato "ts=<timestamp>,v1=<hash>" e o hash é um
HMAC-SHA256 do manifesto "id:<data.id>;request-id:<x-request-id>;ts:<ts>;".
"""
import hashlib
import hmac
from typing import Dict, Optional


def parse_signature_header(x_signature: Optional[str]) -> Dict[str, str]:
    parts = {}
    for chunk in (x_signature or '').split(','):
        key, sep, value = chunk.partition('=')
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def build_manifest(data_id: Optional[str], x_request_id: Optional[str], ts: str) -> str:
    manifest = ''
    if data_id:
        # IDs alfanuméricos devem ir em minúsculas
        manifest += f"id:{str(data_id).lower()};"
    if x_request_id:
        manifest += f"request-id:{x_request_id};"
    manifest += f"ts:{ts};"
    return manifest


def verify_mercadopago_signature(
    x_signature: Optional[str],
    x_request_id: Optional[str],
    data_id: Optional[str],
    secret: Optional[str],
) -> Optional[bool]:
    """
    Retorna True/False conforme a assinatura confere, ou None quando não há
    segredo configurado (verificação desligada).
    """
    if not secret:
        return None

    parts = parse_signature_header(x_signature)
    ts, received = parts.get('ts'), parts.get('v1')
    if not ts or not received:
        return False

    expected = hmac.new(
        secret.encode(), build_manifest(data_id, x_request_id, ts).encode(), hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(expected, received)
