"""Billing configuration."""

from pydantic import BaseModel, Field


class BillingConfig(BaseModel):
    """
    Invoicing and settlement configuration.

    Secrets (database URL, gateway credentials) live in Vault, not here.
    """

    currency: str = Field(
        default="USD",
        description="Currency code sent to the payment gateway",
        min_length=3,
        max_length=3,
    )
    invoice_number_prefix: str = Field(
        default="INV",
        description="Prefix marking a document number as an invoice",
        min_length=1,
        max_length=10,
    )
    invoice_number_attempts: int = Field(
        default=5,
        description="How many fresh numbers to try before giving up on a collision",
        ge=1,
        le=20,
    )
    brand_name: str = Field(
        default="Design Agency",
        description="Brand shown on the gateway approval page",
    )
    payment_method: str = Field(
        default="paypal",
        description="payment_method recorded for gateway captures",
    )
    gateway_timeout_seconds: int = Field(
        default=15,
        description="Timeout for each payment gateway request",
        ge=1,
        le=60,
    )
    record_failed_payments: bool = Field(
        default=True,
        description="Log failed capture attempts as 'failed' payment rows for audit",
    )
