"""
Funil CRM - Formatage des montants selon la locale du tenant
"""

from decimal import Decimal, ROUND_HALF_UP

# locale -> (prefixe devise, separateur milliers, separateur decimal)
SUPPORTED_LOCALES = {
    "pt-BR": ("R$ ", ".", ","),
    "en-US": ("$", ",", "."),
    "fr-FR": ("", " ", ","),
    "de-DE": ("", ".", ","),
}

# suffixe devise pour les locales qui la placent apres le montant
_SUFFIX = {
    "fr-FR": " €",
    "de-DE": " €",
}

CENT = Decimal("0.01")


def to_amount(value) -> Decimal:
    """Montant monetaire arrondi au centime"""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(value, locale: str = "pt-BR") -> str:
    """
    format_amount(1234.5, "pt-BR") -> "R$ 1.234,50"
    format_amount(1234.5, "en-US") -> "$1,234.50"
    Locale inconnue -> pt-BR
    """
    prefix, group_sep, decimal_sep = SUPPORTED_LOCALES.get(locale, SUPPORTED_LOCALES["pt-BR"])
    amount = to_amount(value)
    sign = "-" if amount < 0 else ""
    integer, _, cents = f"{abs(amount):.2f}".partition(".")

    groups = []
    while len(integer) > 3:
        groups.insert(0, integer[-3:])
        integer = integer[:-3]
    groups.insert(0, integer)

    return f"{sign}{prefix}{group_sep.join(groups)}{decimal_sep}{cents}{_SUFFIX.get(locale, '')}"
