from eth_utils import is_hex_address, is_same_address

from waallet.exceptions import ValidationException, ValidationExceptionCode
from waallet.typing import Address


def verify_and_get_address(field_name: str, value: Address | None) -> Address:
    if isinstance(value, str) and is_hex_address(value):
        return value
    else:
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            f"Invalid address value : {value} in field {field_name}",
        )


def verify_and_get_uint(field_name: str, value: str | int | None) -> int:
    if value is None:
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            f"Invalid uint hex value in field {field_name}",
        )

    if isinstance(value, bool):
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            f"Invalid uint value : {value} in field {field_name}",
        )
    elif isinstance(value, int):
        if value < 0 or value >= 2**256:
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                f"Invalid uint value : {value} in field {field_name}",
            )
        return value
    elif value == "0x":
        return 0
    elif isinstance(value, str) and value[:2] == "0x":
        try:
            return int(value, 16)
        except ValueError:
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                f"Invalid uint hex value : {value} in field {field_name}",
            )
    else:
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            f"Invalid uint hex value : {value} in field {field_name}",
        )


def verify_and_get_bytes(field_name: str, value: str | bytes | None) -> bytes:
    if value is None:
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            f"Invalid bytes hex value in field {field_name}",
        )

    if isinstance(value, bytes):
        return value
    elif isinstance(value, str) and value[:2] == "0x":
        try:
            return bytes.fromhex(value[2:])
        except ValueError:
            raise ValidationException(
                ValidationExceptionCode.InvalidFields,
                f"Invalid bytes hex value : {value} in field {field_name}",
            )
    else:
        raise ValidationException(
            ValidationExceptionCode.InvalidFields,
            f"Invalid bytes hex value : {value} in field {field_name}",
        )


def is_address_equal(address_a: str | None, address_b: str | None) -> bool:
    if not is_hex_address(address_a) or not is_hex_address(address_b):
        return False
    return is_same_address(address_a, address_b)
