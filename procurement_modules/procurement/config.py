"""
Procurement Configuration Schema.

Defines the tax settings, numbering and payment-method rules used by
consolidation, editing, authorization and payment reconciliation.
Actual values are loaded by ``procurement_config`` at runtime.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Self

from procurement_engines.tax import ImportExemptionScope, TaxSettings
from procurement_kernel.logging_config import get_logger
from procurement_modules.procurement.models import PaymentMethod

logger = get_logger("modules.procurement.config")


@dataclass
class ProcurementConfig:
    """
    Configuration schema for the procurement module.

    Field defaults mirror a Mexican VAT setup (16% tax, no withholding),
    override per company:

        config = ProcurementConfig(
            withholding_rate=Decimal("0.0125"),
            withholding_enabled=True,
        )
    """

    # Tax settings applied when a quote does not carry a frozen snapshot
    tax_rate: Decimal = Decimal("0.16")
    tax_enabled: bool = True
    withholding_rate: Decimal = Decimal("0")
    withholding_enabled: bool = False
    import_exemption_scope: ImportExemptionScope = ImportExemptionScope.LINE
    totals_decimal_places: int = 4

    # Payment methods whose orders carry the pending-settlement flag
    settlement_payment_methods: tuple[PaymentMethod, ...] = field(
        default_factory=lambda: (PaymentMethod.CREDIT, PaymentMethod.WIRE_TRANSFER)
    )
    default_credit_days: int = 30

    # Numbering
    order_number_prefix: str = "OC"
    order_number_width: int = 4

    def __post_init__(self):
        if self.tax_rate < 0 or self.withholding_rate < 0:
            raise ValueError("Tax and withholding rates cannot be negative")
        if self.default_credit_days < 0:
            raise ValueError("default_credit_days cannot be negative")
        logger.info(
            "procurement_config_initialized",
            extra={
                "tax_rate": str(self.tax_rate),
                "tax_enabled": self.tax_enabled,
                "withholding_rate": str(self.withholding_rate),
                "withholding_enabled": self.withholding_enabled,
                "import_exemption_scope": self.import_exemption_scope.value,
                "settlement_payment_methods": [m.value for m in self.settlement_payment_methods],
                "default_credit_days": self.default_credit_days,
            },
        )

    @property
    def tax_settings(self) -> TaxSettings:
        return TaxSettings(
            tax_rate=self.tax_rate,
            withholding_rate=self.withholding_rate,
            tax_enabled=self.tax_enabled,
            withholding_enabled=self.withholding_enabled,
        )

    def tracks_settlement(self, method: PaymentMethod | None) -> bool:
        return method is not None and method in self.settlement_payment_methods

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the standard defaults."""
        logger.info("procurement_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create config from dictionary (e.g., loaded from YAML)."""
        logger.info(
            "procurement_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        data = dict(data)
        for key in ("tax_rate", "withholding_rate"):
            if key in data:
                data[key] = Decimal(str(data[key]))
        if "import_exemption_scope" in data:
            data["import_exemption_scope"] = ImportExemptionScope(data["import_exemption_scope"])
        if "settlement_payment_methods" in data:
            data["settlement_payment_methods"] = tuple(
                PaymentMethod(m) for m in data["settlement_payment_methods"]
            )
        return cls(**data)
