import pytest

from conftest import ACCOUNT_ADDRESS, CHAIN_ID, ENTRY_POINT, make_user_operation
from waallet.exceptions import ValidationException, ValidationExceptionCode
from waallet.user_operation.user_operation_v6 import UserOperationV6

FILLED_FIELDS = {
    "nonce": 7,
    "init_code": b"\x01\x02",
    "call_data": b"\xab\xcd",
    "call_gas_limit": 21000,
    "verification_gas_limit": 100000,
    "pre_verification_gas": 46560,
    "max_fee_per_gas": 10**9,
    "max_priority_fee_per_gas": 10**8,
    "paymaster_and_data": b"\x99" * 20,
}


def test_hash_is_deterministic():
    first = make_user_operation(**FILLED_FIELDS)
    second = make_user_operation(**FILLED_FIELDS)
    assert first.hash(ENTRY_POINT, CHAIN_ID) == second.hash(ENTRY_POINT, CHAIN_ID)
    assert first.hash(ENTRY_POINT, CHAIN_ID).startswith("0x")
    assert len(first.hash(ENTRY_POINT, CHAIN_ID)) == 66


def test_hash_ignores_signature():
    user_operation = make_user_operation(**FILLED_FIELDS)
    before = user_operation.hash(ENTRY_POINT, CHAIN_ID)
    user_operation.set_signature(b"\x11" * 65)
    assert user_operation.hash(ENTRY_POINT, CHAIN_ID) == before


@pytest.mark.parametrize(
    "field_name, value",
    [
        ("sender", "0x3333333333333333333333333333333333333333"),
        ("nonce", 8),
        ("init_code", b"\x01\x03"),
        ("call_data", b"\xab\xce"),
        ("call_gas_limit", 21001),
        ("verification_gas_limit", 100001),
        ("pre_verification_gas", 46561),
        ("max_fee_per_gas", 10**9 + 1),
        ("max_priority_fee_per_gas", 10**8 + 1),
        ("paymaster_and_data", b"\x98" * 20),
    ],
)
def test_hash_changes_with_every_signed_field(field_name, value):
    original = make_user_operation(**FILLED_FIELDS)
    changed = make_user_operation(**{**FILLED_FIELDS, field_name: value})
    assert changed.hash(ENTRY_POINT, CHAIN_ID) != original.hash(
        ENTRY_POINT, CHAIN_ID)


def test_hash_depends_on_entry_point_and_chain():
    user_operation = make_user_operation(**FILLED_FIELDS)
    user_operation_hash = user_operation.hash(ENTRY_POINT, CHAIN_ID)
    assert user_operation.hash(ENTRY_POINT, CHAIN_ID + 1) != user_operation_hash
    assert user_operation.hash(
        "0x0000000071727De22E5E9d8BAf0edAc6f37da032", CHAIN_ID
    ) != user_operation_hash


def test_data_round_trip_keeps_hash():
    user_operation = make_user_operation(**FILLED_FIELDS)
    user_operation.set_signature(b"\x22" * 65)
    data = user_operation.data()
    rebuilt = UserOperationV6.from_json(data)
    assert rebuilt == user_operation
    assert rebuilt.hash(ENTRY_POINT, CHAIN_ID) == user_operation.hash(
        ENTRY_POINT, CHAIN_ID)
    assert data["nonce"] == "0x7"
    assert data["initCode"] == "0x0102"


def test_from_json_defaults_missing_fields():
    user_operation = UserOperationV6.from_json(
        {"sender": ACCOUNT_ADDRESS, "nonce": "0x1", "callData": "0x"}
    )
    assert user_operation.call_gas_limit == 0
    assert user_operation.paymaster_and_data == b""
    assert user_operation.signature == b""
    assert not user_operation.is_gas_estimated()
    assert not user_operation.is_gas_fee_estimated()


def test_from_json_rejects_malformed_field():
    with pytest.raises(ValidationException) as excinfo:
        UserOperationV6.from_json(
            {"sender": ACCOUNT_ADDRESS, "nonce": "12", "callData": "0x"}
        )
    assert excinfo.value.exception_code == ValidationExceptionCode.InvalidFields
    assert "nonce" in excinfo.value.message


def test_from_json_requires_sender():
    with pytest.raises(ValidationException) as excinfo:
        UserOperationV6.from_json({"nonce": "0x1", "callData": "0x"})
    assert "sender" in excinfo.value.message


def test_calculate_gas_fee_without_paymaster():
    user_operation = make_user_operation(
        call_gas_limit=10,
        verification_gas_limit=20,
        pre_verification_gas=30,
        max_fee_per_gas=2,
    )
    assert user_operation.calculate_gas_fee() == (10 + 20 + 30) * 2


def test_calculate_gas_fee_with_paymaster_triples_verification():
    user_operation = make_user_operation(
        call_gas_limit=10,
        verification_gas_limit=20,
        pre_verification_gas=30,
        max_fee_per_gas=2,
        paymaster_and_data=b"\x01" * 20,
    )
    assert user_operation.calculate_gas_fee() == (10 + 20 * 3 + 30) * 2


def test_estimation_predicates():
    user_operation = make_user_operation()
    user_operation.set_gas_limit(1, 2, "0x3")
    assert user_operation.is_gas_estimated()
    user_operation.set_gas_fee("0x5", 0)
    assert not user_operation.is_gas_fee_estimated()
    user_operation.set_gas_fee("0x5", "0x1")
    assert user_operation.is_gas_fee_estimated()


def test_is_sender_ignores_case():
    user_operation = make_user_operation(
        sender="0xabcdefabcdefabcdefabcdefabcdefabcdefabcd")
    assert user_operation.is_sender("0xABCDEFABCDEFABCDEFABCDEFABCDEFABCDEFABCD")
    assert not user_operation.is_sender(ACCOUNT_ADDRESS)


def test_frozen_user_operation_rejects_setters():
    user_operation = make_user_operation()
    user_operation.freeze()
    assert user_operation.is_frozen
    with pytest.raises(ValidationException) as excinfo:
        user_operation.set_signature(b"\x01")
    assert (
        excinfo.value.exception_code ==
        ValidationExceptionCode.UserOperationFrozen
    )
    with pytest.raises(ValidationException):
        user_operation.set_gas_fee(1, 1)


def test_copy_is_not_frozen():
    user_operation = make_user_operation(**FILLED_FIELDS)
    user_operation.freeze()
    copied = user_operation.copy()
    assert not copied.is_frozen
    assert copied == user_operation
