"""UPI deep link and QR image URL generation."""
from decimal import Decimal
from typing import Optional, Union
from urllib.parse import quote, urlencode

DEFAULT_NOTE = "Payment"
CURRENCY = "INR"

# Characters encodeURIComponent leaves alone, on top of quote()'s "_.-~".
_COMPONENT_SAFE = "!*'()"


def encode_component(value: str) -> str:
    return quote(value, safe=_COMPONENT_SAFE)


def format_amount(amount: Union[int, float]) -> str:
    """Shortest plain decimal form: 100 -> "100", 250.50 -> "250.5", 1e-05 -> "0.00001"."""
    value = float(amount)
    if value.is_integer():
        return str(int(value))
    return format(Decimal(repr(value)).normalize(), "f")


def build_upi_link(
    upi_id: str,
    payee_name: str,
    amount: Optional[float] = None,
    note: Optional[str] = None,
) -> str:
    """Generate a UPI deep link according to the NPCI URI convention.

    The payee address is emitted verbatim, free-text fields are percent
    encoded, and the amount segment is dropped unless the amount is positive
    so the payer's app asks for one.
    """

    parts = [f"upi://pay?pa={upi_id}"]
    parts.append(f"pn={encode_component(payee_name)}")

    if amount is not None and amount > 0:
        parts.append(f"am={format_amount(amount)}")

    parts.append(f"cu={CURRENCY}")
    parts.append(f"tn={encode_component(note or DEFAULT_NOTE)}")

    return "&".join(parts)


def qr_image_url(data: str, base_url: str, size: int = 256) -> str:
    """URL of the third-party QR renderer for the given payload."""
    query = urlencode({"size": f"{size}x{size}", "data": data}, quote_via=quote, safe=_COMPONENT_SAFE)
    return f"{base_url}?{query}"


def format_rupees(amount: Optional[float]) -> str:
    if amount is None:
        return ""
    return f"₹{amount:.2f}"


def share_text(payee_name: str, amount: Optional[float] = None) -> str:
    if amount:
        return f"{payee_name} is requesting a payment of {format_rupees(amount)}."
    return f"{payee_name} is requesting a payment."
