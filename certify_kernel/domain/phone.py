"""Patient phone number normalization and masking."""

import re

from certify_kernel.exceptions import InvalidPhoneNumberError

_NON_DIGITS = re.compile(r"\D")
_VALID = re.compile(r"^0\d{9,10}$")


def normalize_phone(raw: str) -> str:
    """
    Strip everything but digits and validate the Korean mobile/landline shape.

    "010-1234-5678" -> "01012345678".  A leading "+82" country code is
    folded back to the domestic leading zero.

    Raises:
        InvalidPhoneNumberError: If the result is not 0 followed by 9-10 digits.
    """
    if raw is None:
        raise InvalidPhoneNumberError("")
    digits = _NON_DIGITS.sub("", raw)
    if raw.strip().startswith("+82") and digits.startswith("82"):
        digits = "0" + digits[2:].lstrip("0")
    if not _VALID.match(digits):
        raise InvalidPhoneNumberError(raw)
    return digits


def mask_phone(phone: str) -> str:
    """
    Hide the middle block of a normalized phone number.

    "01012345678" -> "010****5678"
    """
    if len(phone) < 7:
        return "*" * len(phone)
    head, tail = phone[:3], phone[-4:]
    return f"{head}{'*' * (len(phone) - 7)}{tail}"
