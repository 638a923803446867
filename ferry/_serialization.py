"""RPC schema."""

import base64
import binascii
from collections.abc import Mapping
from enum import Enum
from types import MappingProxyType, NoneType, UnionType
from typing import Any, TypeVar, Union, cast

from compages import (
    StructureDictIntoDataclass,
    Structurer,
    StructuringError,
    UnstructureDataclassToDict,
    Unstructurer,
    simple_structure,
    simple_typechecked_unstructure,
    structure_into_bool,
    structure_into_int,
    structure_into_list,
    structure_into_none,
    structure_into_str,
    structure_into_tuple,
    structure_into_union,
    unstructure_as_bool,
    unstructure_as_int,
    unstructure_as_list,
    unstructure_as_none,
    unstructure_as_str,
    unstructure_as_tuple,
    unstructure_as_union,
)

from ._actions import FullAccessPermission, FunctionCallPermission
from ._entities import (
    AccountId,
    CryptoHash,
    Gas,
    NearToken,
    ParseError,
    TypedData,
    TypedQuantity,
)
from ._keys import PublicKey, Signature
from ._provider import RPC_JSON, RawJSON
from ._rpc_types import (
    ExecutionFailure,
    ExecutionStatus,
    StatusPending,
    StatusUnknown,
    SuccessReceiptId,
    SuccessValue,
)


def _structure_into_typed_data(
    _structurer: Structurer, structure_into: type[TypedData], val: Any
) -> TypedData:
    if not isinstance(val, str):
        raise StructuringError("The value must be a base58-encoded string")
    try:
        return structure_into.from_base58(val)
    except ParseError as exc:
        raise StructuringError(str(exc)) from exc


def _structure_into_typed_quantity(
    _structurer: Structurer, structure_into: type[TypedQuantity], val: Any
) -> TypedQuantity:
    # Amounts that may not fit into a double are sent as decimal strings,
    # smaller quantities (like gas) are sent as numbers.
    if isinstance(val, str) and val.isdecimal():
        return structure_into(int(val))
    if isinstance(val, int) and not isinstance(val, bool) and val >= 0:
        return structure_into(val)
    raise StructuringError("The value must be a non-negative integer or a decimal string")


@simple_structure
def _structure_into_account_id(val: Any) -> AccountId:
    if not isinstance(val, str):
        raise StructuringError("The value must be a string")
    try:
        return AccountId(val)
    except ParseError as exc:
        raise StructuringError(str(exc)) from exc


@simple_structure
def _structure_into_public_key(val: Any) -> PublicKey:
    if not isinstance(val, str):
        raise StructuringError("The value must be a string")
    try:
        return PublicKey.from_string(val)
    except ParseError as exc:
        raise StructuringError(str(exc)) from exc


@simple_structure
def _structure_into_signature(val: Any) -> Signature:
    if not isinstance(val, str):
        raise StructuringError("The value must be a string")
    try:
        return Signature.from_string(val)
    except ParseError as exc:
        raise StructuringError(str(exc)) from exc


def _structure_into_enum(_structurer: Structurer, structure_into: type[Enum], val: Any) -> Enum:
    try:
        return structure_into(val)
    except ValueError as exc:
        raise StructuringError(f"Unknown {structure_into.__name__} value: {val!r}") from exc


def _structure_into_raw_json(_structurer: Structurer, _structure_into: Any, val: Any) -> Any:
    return val


def _structure_into_full_access(
    _structurer: Structurer, _structure_into: type[FullAccessPermission], val: Any
) -> FullAccessPermission:
    if val != "FullAccess":
        raise StructuringError("Expected `FullAccess`")
    return FullAccessPermission()


def _structure_into_function_call_permission(
    structurer: Structurer, _structure_into: type[FunctionCallPermission], val: Any
) -> FunctionCallPermission:
    if not isinstance(val, Mapping) or not isinstance(val.get("FunctionCall"), Mapping):
        raise StructuringError("Expected a `FunctionCall` permission")
    fields = val["FunctionCall"]
    return FunctionCallPermission(
        receiver_id=structurer.structure_into(AccountId, fields.get("receiver_id")),
        method_names=structurer.structure_into(tuple[str, ...], fields.get("method_names", [])),
        allowance=structurer.structure_into(
            None | NearToken,  # type: ignore[arg-type]
            fields.get("allowance"),
        ),
    )


def _structure_into_execution_status(
    structurer: Structurer, _structure_into: type[ExecutionStatus], val: Any
) -> ExecutionStatus:
    if val == "Unknown":
        return StatusUnknown()
    if val == "Pending":
        return StatusPending()
    if not isinstance(val, Mapping) or len(val) != 1:
        raise StructuringError(f"Unexpected execution status format: {val!r}")

    ((kind, payload),) = val.items()
    if kind == "SuccessValue":
        if not isinstance(payload, str):
            raise StructuringError("`SuccessValue` must be a base64-encoded string")
        try:
            return SuccessValue(base64.b64decode(payload, validate=True))
        except binascii.Error as exc:
            raise StructuringError(str(exc)) from exc
    if kind == "SuccessReceiptId":
        return SuccessReceiptId(structurer.structure_into(CryptoHash, payload))
    if kind == "Failure":
        return ExecutionFailure(RawJSON(payload))
    raise StructuringError(f"Unknown execution status: {kind}")


@simple_typechecked_unstructure
def _unstructure_typed_data(obj: TypedData) -> str:
    return str(obj)


@simple_typechecked_unstructure
def _unstructure_typed_quantity(obj: TypedQuantity) -> str:
    return str(int(obj))


@simple_typechecked_unstructure
def _unstructure_gas(obj: Gas) -> int:
    return int(obj)


@simple_typechecked_unstructure
def _unstructure_as_string(obj: AccountId | PublicKey | Signature) -> str:
    return str(obj)


@simple_typechecked_unstructure
def _unstructure_enum(obj: Enum) -> RPC_JSON:
    return cast(RPC_JSON, obj.value)


def _unstructure_raw_json(_unstructurer: Unstructurer, _unstructure_as: Any, obj: Any) -> Any:
    return obj


@simple_typechecked_unstructure
def _unstructure_full_access(_obj: FullAccessPermission) -> str:
    return "FullAccess"


def _unstructure_function_call_permission(
    unstructurer: Unstructurer, _unstructure_as: type[FunctionCallPermission], obj: Any
) -> RPC_JSON:
    return {
        "FunctionCall": {
            "allowance": unstructurer.unstructure_as(None | NearToken, obj.allowance),
            "receiver_id": str(obj.receiver_id),
            "method_names": list(obj.method_names),
        }
    }


def _unstructure_execution_status(
    _unstructurer: Unstructurer, _unstructure_as: type[ExecutionStatus], obj: Any
) -> RPC_JSON:
    if isinstance(obj, SuccessValue):
        return {"SuccessValue": base64.b64encode(obj.value).decode()}
    if isinstance(obj, SuccessReceiptId):
        return {"SuccessReceiptId": str(obj.receipt_id)}
    if isinstance(obj, ExecutionFailure):
        return {"Failure": obj.error}
    if isinstance(obj, StatusPending):
        return "Pending"
    return "Unknown"


def _to_field_name(name: str, _metadata: MappingProxyType[Any, Any]) -> str:
    # Trailing underscores are used to avoid clashes with Python keywords and builtins.
    if name.endswith("_"):
        name = name[:-1]
    return name


STRUCTURER = Structurer(
    {
        TypedData: _structure_into_typed_data,
        TypedQuantity: _structure_into_typed_quantity,
        AccountId: _structure_into_account_id,
        PublicKey: _structure_into_public_key,
        Signature: _structure_into_signature,
        FullAccessPermission: _structure_into_full_access,
        FunctionCallPermission: _structure_into_function_call_permission,
        ExecutionStatus: _structure_into_execution_status,
        RawJSON: _structure_into_raw_json,
        Enum: _structure_into_enum,
        int: structure_into_int,
        str: structure_into_str,
        bool: structure_into_bool,
        list: structure_into_list,
        tuple: structure_into_tuple,
        UnionType: structure_into_union,
        Union: structure_into_union,
        NoneType: structure_into_none,
    },
    [StructureDictIntoDataclass(_to_field_name)],
)

UNSTRUCTURER = Unstructurer(
    {
        TypedData: _unstructure_typed_data,
        Gas: _unstructure_gas,
        TypedQuantity: _unstructure_typed_quantity,
        AccountId: _unstructure_as_string,
        PublicKey: _unstructure_as_string,
        Signature: _unstructure_as_string,
        FullAccessPermission: _unstructure_full_access,
        FunctionCallPermission: _unstructure_function_call_permission,
        ExecutionStatus: _unstructure_execution_status,
        RawJSON: _unstructure_raw_json,
        Enum: _unstructure_enum,
        int: unstructure_as_int,
        bool: unstructure_as_bool,
        str: unstructure_as_str,
        NoneType: unstructure_as_none,
        list: unstructure_as_list,
        UnionType: unstructure_as_union,
        Union: unstructure_as_union,
        tuple: unstructure_as_tuple,
    },
    [UnstructureDataclassToDict(_to_field_name)],
)


_T = TypeVar("_T")


def structure(structure_into: type[_T], obj: RPC_JSON) -> _T:
    """Structures incoming JSON data."""
    return STRUCTURER.structure_into(structure_into, obj)


def unstructure(obj: Any, unstructure_as: Any = None) -> RPC_JSON:
    """Unstructures data into JSON-serializable values."""
    # The result is `JSON` by virtue of the hooks we defined
    return cast(RPC_JSON, UNSTRUCTURER.unstructure_as(unstructure_as or type(obj), obj))
