"""
PAX field groups for the credit Sale request (T00 / 01)
Key order per group follows the PAX POSLink 1.28 request layout
"""

import logging
from collections import namedtuple
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, List, Mapping, Optional, Tuple, Union

from .errors import InvalidFieldError

logger = logging.getLogger(__name__)

COMMAND_CREDIT = "T00"
PROTOCOL_VERSION = "1.28"
TRANS_TYPE_SALE = "01"

# Control bytes
STX = 0x02
ETX = 0x03
FS = 0x1C
US = 0x1F

CONTROL_BYTES = (STX, ETX, FS, US)

FieldGroupSpec = namedtuple("FieldGroupSpec", ["name", "keys"])

# Single source of truth for group order and key order. Never reorder.
FIELD_GROUPS: Tuple[FieldGroupSpec, ...] = (
    FieldGroupSpec(
        "amount",
        ("TransactionAmount", "TipAmount", "CashBackAmount", "MerchantFee", "TaxAmount", "FuelAmount"),
    ),
    FieldGroupSpec(
        "account",
        (
            "Account",
            "EXPD",
            "CVVCode",
            "EBTtype",
            "VoucherNumber",
            "Force",
            "FirstName",
            "LastName",
            "CountryCode",
            "State_ProvinceCode",
            "CityName",
            "EmailAddress",
        ),
    ),
    FieldGroupSpec(
        "trace",
        ("ReferenceNumber", "InvoiceNumber", "AuthCode", "TransactionNumber", "TimeStamp", "ECRTransID"),
    ),
    FieldGroupSpec("avs", ("ZipCode", "Address", "Address2")),
    FieldGroupSpec("cashier", ("ClerkID", "ShiftID")),
    FieldGroupSpec(
        "commercial",
        (
            "PONumber",
            "CustomerCode",
            "TaxExempt",
            "TaxExemptID",
            "MerchantTaxID",
            "DestinationZipCode",
            "ProductDescription",
        ),
    ),
    FieldGroupSpec("moto_ecommerce", ("OrderNumber", "Installments", "CurrentInstallment")),
    FieldGroupSpec(
        "additional",
        (
            "TABLE",
            "GUEST",
            "SIGN",
            "TICKET",
            "HREF",
            "TIPREQ",
            "SIGNUPLOAD",
            "REPORTSTATUS",
            "TOKENREQUEST",
            "TOKEN",
            "CARDTYPE",
            "CARDTYPEBITMAP",
            "PASSTHRUDATA",
            "RETURNREASON",
            "ORIGTRANSDATE",
            "ORIGPAN",
            "ORIGEXPIRYDATE",
            "ORIGTRANSTIME",
            "DISPROGPROMPTS",
            "GATEWAYID",
            "GETSIGN",
            "EDCTYPE",
        ),
    ),
)

# Groups whose entries go on the wire as "KEY=VALUE"
KEYED_GROUPS = ("additional",)

# Keys the builder fills itself
RESERVED_KEYS = ("TransactionAmount", "ReferenceNumber", "InvoiceNumber")

KEY_TO_GROUP = {key: spec.name for spec in FIELD_GROUPS for key in spec.keys}

DEFAULT_REFERENCE_NUMBER = "1"


@dataclass(frozen=True)
class SaleRequest:
    """One credit sale attempt as supplied by the POS caller"""

    amount: Union[Decimal, int, float, str]
    invoice_number: str
    reference_number: Optional[str] = None
    fields: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class FieldGroup:
    """Ordered (key, value) pairs of one request group"""

    name: str
    items: Tuple[Tuple[str, str], ...]

    def values(self) -> List[str]:
        return [value for _, value in self.items]

    def wire_values(self) -> List[str]:
        """Values as they are framed; keyed groups carry KEY=VALUE"""
        if self.name in KEYED_GROUPS:
            return [f"{key}={value}" if value != "" else "" for key, value in self.items]
        return self.values()

    def to_dict(self) -> Dict[str, str]:
        return dict(self.items)


def amount_to_cents(amount) -> str:
    """Convert a currency amount to an integer minor-unit string: 19.99 -> '1999'"""
    if isinstance(amount, bool):
        raise InvalidFieldError(f"Invalid amount: {amount!r}")
    try:
        value = Decimal(str(amount).replace(",", "").strip())
    except (InvalidOperation, ValueError):
        logger.error(f"Invalid amount format: {amount}")
        raise InvalidFieldError(f"Amount must be a valid number: {amount!r}")

    if not value.is_finite():
        raise InvalidFieldError(f"Amount must be a finite number: {amount!r}")
    if value < 0:
        logger.error(f"Negative amount rejected: {amount}")
        raise InvalidFieldError("Amount must be non-negative")

    cents = (value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    logger.debug(f"Amount conversion: original='{amount}' -> cents='{cents}'")
    return str(int(cents))


def validate_field_value(key: str, value: str) -> str:
    """Reject values that would desynchronize framing"""
    if not isinstance(value, str):
        value = str(value)
    for ch in value:
        if ord(ch) in CONTROL_BYTES:
            logger.error(f"Field {key} contains control byte 0x{ord(ch):02X}")
            raise InvalidFieldError(
                f"Field {key} contains a protocol control character (0x{ord(ch):02X})"
            )
    return value


def build_field_groups(sale: SaleRequest) -> List[FieldGroup]:
    """Build the eight ordered request groups for a sale"""
    values: Dict[str, str] = {}

    for key, value in (sale.fields or {}).items():
        if key not in KEY_TO_GROUP:
            raise InvalidFieldError(f"Unknown field: {key}")
        if key in RESERVED_KEYS:
            raise InvalidFieldError(f"Field {key} is set from the sale request itself")
        values[key] = validate_field_value(key, "" if value is None else value)

    values["TransactionAmount"] = amount_to_cents(sale.amount)
    values["InvoiceNumber"] = validate_field_value("InvoiceNumber", sale.invoice_number or "")
    values["ReferenceNumber"] = validate_field_value(
        "ReferenceNumber", sale.reference_number or DEFAULT_REFERENCE_NUMBER
    )

    groups = []
    for spec in FIELD_GROUPS:
        items = tuple((key, values.get(key, "")) for key in spec.keys)
        groups.append(FieldGroup(spec.name, items))
    return groups
