"""
Phone number normalisation for M-Pesa (MSISDN in 2547XXXXXXXX form).
"""
import re

COUNTRY_CODE = "254"

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(value: str) -> str:
    """
    Normalise a Kenyan phone number to the international form M-Pesa expects.

    Non-digits are stripped. Numbers already starting with 254 are kept,
    a leading 0 is replaced by 254 and a bare 7/1 subscriber number gets
    254 prepended. Anything else is returned as digits only.

    Examples:
        >>> normalize_phone("0712 345 678")
        '254712345678'
        >>> normalize_phone("+254712345678")
        '254712345678'
    """
    digits = _NON_DIGITS.sub("", value or "")

    if digits.startswith(COUNTRY_CODE):
        return digits
    if digits.startswith("0"):
        return COUNTRY_CODE + digits[1:]
    if digits.startswith(("7", "1")):
        return COUNTRY_CODE + digits
    return digits
