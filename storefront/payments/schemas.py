from typing import Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

# module storefront.payments.schemas

class Address(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(alias="firstName", min_length=1)
    last_name: str = Field(alias="lastName", min_length=1)
    street: str = Field(min_length=1)
    street2: Optional[str] = None
    city: str = Field(min_length=1)
    state: str = ""
    postal_code: str = Field(alias="postalCode", min_length=1)
    country: str = Field(min_length=1)
    phone: Optional[str] = None

    def to_metadata(self) -> dict:
        # Clés camelCase, champs vides omis pour rester sous la limite Stripe de 500 caractères
        return self.model_dump(by_alias=True, exclude_none=True)


class CheckoutIntentRequest(BaseModel):
    """Body de POST /payments/create-checkout-intent."""
    model_config = ConfigDict(populate_by_name=True)

    guest_email: Optional[EmailStr] = Field(default=None, alias="guestEmail")
    shipping_address: Address = Field(alias="shippingAddress")
    billing_address: Optional[Address] = Field(default=None, alias="billingAddress")
    notes: Optional[str] = None
    shipping_method: Optional[str] = Field(default=None, alias="shippingMethod")

    @field_validator("guest_email", mode="before")
    @classmethod
    def _blank_email_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("notes", "shipping_method")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @property
    def effective_billing_address(self) -> Address:
        return self.billing_address or self.shipping_address
