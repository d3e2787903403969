from eth_account import Account, messages

from waallet.typing import Address


def sign_message_hash(message_hash: bytes | str, private_key: str) -> bytes:
    """EIP-191 personal_sign over a 32 bytes hash."""
    if isinstance(message_hash, str):
        message = messages.encode_defunct(hexstr=message_hash)
    else:
        message = messages.encode_defunct(primitive=message_hash)
    signed_message = Account.sign_message(message, private_key=private_key)
    return bytes(signed_message.signature)


def address_from_private_key(private_key: str) -> Address:
    return Address(Account.from_key(private_key).address)
