"""
Conversion déterministe des montants (unités mineures <-> format passerelle).
Le nombre de décimales est une propriété de la devise (ISO 4217), jamais une constante globale.
"""
from decimal import Decimal

from .errors import ValidationError

# Devises sans décimale ou à 3 décimales; toutes les autres sont à 2 décimales
_ZERO_DECIMAL = {"BIF", "CLP", "DJF", "GNF", "ISK", "JPY", "KMF", "KRW", "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF"}
_THREE_DECIMAL = {"BHD", "IQD", "JOD", "KWD", "LYD", "OMR", "TND"}


def minor_unit_exponent(currency: str) -> int:
    code = (currency or "").upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError(f"Devise invalide: {currency!r}")
    if code in _ZERO_DECIMAL:
        return 0
    if code in _THREE_DECIMAL:
        return 3
    return 2


def to_gateway_minor_units(amount_minor_units: int, currency: str, gateway_exponent: int | None = None) -> int:
    """
    Convertit un montant interne (unités mineures de la devise) vers la convention de la passerelle.
    - gateway_exponent=None: la passerelle utilise l'exposant ISO de la devise (cas Curlec/Stripe).
    - Sinon: remise à l'échelle exacte; une perte de précision est refusée (ValidationError).
    """
    if isinstance(amount_minor_units, bool) or not isinstance(amount_minor_units, int):
        raise ValidationError("Le montant doit être un entier en unités mineures")
    exponent = minor_unit_exponent(currency)
    if gateway_exponent is None or gateway_exponent == exponent:
        return amount_minor_units
    if gateway_exponent > exponent:
        return amount_minor_units * 10 ** (gateway_exponent - exponent)
    factor = 10 ** (exponent - gateway_exponent)
    if amount_minor_units % factor:
        raise ValidationError(f"Montant {amount_minor_units} non représentable avec {gateway_exponent} décimales")
    return amount_minor_units // factor


def to_major_string(amount_minor_units: int, currency: str) -> str:
    """4999 MYR -> '49.99'; 500 JPY -> '500'."""
    exponent = minor_unit_exponent(currency)
    value = Decimal(amount_minor_units).scaleb(-exponent)
    return f"{value:.{exponent}f}"
