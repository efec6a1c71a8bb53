"""Currency -- ISO 4217 registry and precision-derived rounding."""

from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    """Information about a single ISO 4217 currency."""

    code: str
    decimal_places: int
    name: str


class CurrencyRegistry:
    """
    Registry of the ISO 4217 currencies suppliers quote in.

    Covers the trading currencies of the Americas, Europe and Asia plus every
    zero- and three-decimal currency, since those are the ones where a fixed
    "2 places" assumption would corrupt a distribution.
    """

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        info.code: info
        for info in (
            # Americas
            CurrencyInfo("MXN", 2, "Mexican Peso"),
            CurrencyInfo("USD", 2, "US Dollar"),
            CurrencyInfo("CAD", 2, "Canadian Dollar"),
            CurrencyInfo("BRL", 2, "Brazilian Real"),
            CurrencyInfo("ARS", 2, "Argentine Peso"),
            CurrencyInfo("COP", 2, "Colombian Peso"),
            CurrencyInfo("PEN", 2, "Peruvian Sol"),
            CurrencyInfo("GTQ", 2, "Guatemalan Quetzal"),
            CurrencyInfo("CRC", 2, "Costa Rican Colon"),
            CurrencyInfo("UYU", 2, "Uruguayan Peso"),
            CurrencyInfo("CLP", 0, "Chilean Peso"),
            CurrencyInfo("PYG", 0, "Paraguayan Guarani"),
            CurrencyInfo("CLF", 4, "Chilean Unidad de Fomento"),
            # Europe
            CurrencyInfo("EUR", 2, "Euro"),
            CurrencyInfo("GBP", 2, "Pound Sterling"),
            CurrencyInfo("CHF", 2, "Swiss Franc"),
            CurrencyInfo("SEK", 2, "Swedish Krona"),
            CurrencyInfo("NOK", 2, "Norwegian Krone"),
            CurrencyInfo("DKK", 2, "Danish Krone"),
            CurrencyInfo("PLN", 2, "Polish Zloty"),
            CurrencyInfo("CZK", 2, "Czech Koruna"),
            CurrencyInfo("ISK", 0, "Icelandic Krona"),
            # Asia / Pacific
            CurrencyInfo("CNY", 2, "Chinese Yuan"),
            CurrencyInfo("HKD", 2, "Hong Kong Dollar"),
            CurrencyInfo("TWD", 2, "New Taiwan Dollar"),
            CurrencyInfo("SGD", 2, "Singapore Dollar"),
            CurrencyInfo("INR", 2, "Indian Rupee"),
            CurrencyInfo("AUD", 2, "Australian Dollar"),
            CurrencyInfo("NZD", 2, "New Zealand Dollar"),
            CurrencyInfo("JPY", 0, "Japanese Yen"),
            CurrencyInfo("KRW", 0, "South Korean Won"),
            CurrencyInfo("VND", 0, "Vietnamese Dong"),
            # Middle East / Africa
            CurrencyInfo("AED", 2, "UAE Dirham"),
            CurrencyInfo("SAR", 2, "Saudi Riyal"),
            CurrencyInfo("ZAR", 2, "South African Rand"),
            CurrencyInfo("BHD", 3, "Bahraini Dinar"),
            CurrencyInfo("JOD", 3, "Jordanian Dinar"),
            CurrencyInfo("KWD", 3, "Kuwaiti Dinar"),
            CurrencyInfo("OMR", 3, "Omani Rial"),
            CurrencyInfo("TND", 3, "Tunisian Dinar"),
        )
    }

    DEFAULT_DECIMAL_PLACES: ClassVar[int] = 2

    @classmethod
    def is_valid(cls, code: str) -> bool:
        """Check if a currency code is registered."""
        if not code or not isinstance(code, str):
            return False
        return code.upper().strip() in cls._CURRENCIES

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        if not code or not isinstance(code, str):
            return None
        return cls._CURRENCIES.get(code.upper().strip())

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        info = cls.get_info(code)
        return info.decimal_places if info else cls.DEFAULT_DECIMAL_PLACES
