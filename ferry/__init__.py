"""Async NEAR RPC client."""

from ._actions import (
    ACTION_TAGS,
    AccessKey,
    AccessKeyPermission,
    Action,
    AddKey,
    CreateAccount,
    Delegate,
    DelegateAction,
    DeleteAccount,
    DeleteKey,
    DeployContract,
    DeployGlobalContract,
    FullAccessPermission,
    FunctionCall,
    FunctionCallPermission,
    GlobalContractDeployMode,
    SignedDelegateAction,
    Stake,
    Transfer,
    UseGlobalContract,
)
from ._client import Client, ClientSession, TransactionBuilder
from ._client_rpc import BadResponseFormat, ClientSessionRPC
from ._codec import DecodingError, EncodingError
from ._config import MAINNET, TESTNET, NetworkConfig, RetryConfig
from ._entities import (
    DEFAULT_GAS,
    AccountId,
    BlockReference,
    CryptoHash,
    Finality,
    Gas,
    NearToken,
    ParseError,
    TxExecutionStatus,
)
from ._errors import (
    AccessKeyNotFound,
    AccountNotFound,
    ConfigurationError,
    ContractExecutionError,
    ContractNotDeployed,
    ErrorClass,
    InvalidAccount,
    InvalidNonce,
    InvalidTransaction,
    RequestTimeout,
    RpcProtocolError,
    SigningError,
    TimeoutExceeded,
    TransactionFailed,
    UnknownBlock,
    UnknownTransaction,
    classify,
)
from ._http_provider import HTTPError, HTTPProvider
from ._http_provider_server import HTTPProviderServer
from ._keys import KeyType, PublicKey, SecretKey, Signature
from ._local_provider import CallContext, ContractMethod, ContractPanic, LocalProvider, SnapshotID
from ._message import (
    DEFAULT_MAX_MESSAGE_AGE,
    MESSAGE_TAG,
    MessageParams,
    SignedMessage,
    make_message_nonce,
    message_nonce_timestamp,
    verify_message_signature,
)
from ._pipeline import PipelineError, PipelineStage, TransactionPipeline
from ._provider import (
    InvalidResponse,
    NoResponse,
    ProtocolError,
    Provider,
    ProviderError,
    ProviderSession,
    RPCError,
    Unreachable,
)
from ._rpc_types import (
    AccessKeyList,
    AccessKeyView,
    AccountView,
    BlockInfo,
    ExecutionFailure,
    ExecutionOutcome,
    FinalExecutionOutcome,
    NodeStatus,
    SuccessReceiptId,
    SuccessValue,
    ViewResult,
)
from ._signer import (
    ClaimedKey,
    EnvSigner,
    FileSigner,
    InMemorySigner,
    RemoteSigner,
    RotatingSigner,
    Signer,
)
from ._transaction import (
    SignedTransaction,
    Transaction,
    decode_signed_transaction,
    decode_transaction,
    encode_signed_transaction,
    encode_transaction,
    hash_transaction,
)

__all__ = [
    "ACTION_TAGS",
    "DEFAULT_GAS",
    "DEFAULT_MAX_MESSAGE_AGE",
    "MAINNET",
    "MESSAGE_TAG",
    "TESTNET",
    "AccessKey",
    "AccessKeyList",
    "AccessKeyNotFound",
    "AccessKeyPermission",
    "AccessKeyView",
    "AccountId",
    "AccountNotFound",
    "AccountView",
    "Action",
    "AddKey",
    "BadResponseFormat",
    "BlockInfo",
    "BlockReference",
    "CallContext",
    "ClaimedKey",
    "Client",
    "ClientSession",
    "ClientSessionRPC",
    "ConfigurationError",
    "ContractExecutionError",
    "ContractMethod",
    "ContractNotDeployed",
    "ContractPanic",
    "CreateAccount",
    "CryptoHash",
    "DecodingError",
    "Delegate",
    "DelegateAction",
    "DeleteAccount",
    "DeleteKey",
    "DeployContract",
    "DeployGlobalContract",
    "EncodingError",
    "EnvSigner",
    "ErrorClass",
    "ExecutionFailure",
    "ExecutionOutcome",
    "FileSigner",
    "FinalExecutionOutcome",
    "Finality",
    "FullAccessPermission",
    "FunctionCall",
    "FunctionCallPermission",
    "Gas",
    "GlobalContractDeployMode",
    "HTTPError",
    "HTTPProvider",
    "HTTPProviderServer",
    "InMemorySigner",
    "InvalidAccount",
    "InvalidNonce",
    "InvalidResponse",
    "InvalidTransaction",
    "KeyType",
    "LocalProvider",
    "MessageParams",
    "NearToken",
    "NetworkConfig",
    "NoResponse",
    "NodeStatus",
    "ParseError",
    "PipelineError",
    "PipelineStage",
    "ProtocolError",
    "Provider",
    "ProviderError",
    "ProviderSession",
    "PublicKey",
    "RPCError",
    "RemoteSigner",
    "RequestTimeout",
    "RetryConfig",
    "RotatingSigner",
    "RpcProtocolError",
    "SecretKey",
    "Signature",
    "SignedDelegateAction",
    "SignedMessage",
    "SignedTransaction",
    "Signer",
    "SigningError",
    "SnapshotID",
    "Stake",
    "SuccessReceiptId",
    "SuccessValue",
    "TimeoutExceeded",
    "Transaction",
    "TransactionBuilder",
    "TransactionFailed",
    "TransactionPipeline",
    "Transfer",
    "TxExecutionStatus",
    "UnknownBlock",
    "UnknownTransaction",
    "Unreachable",
    "UseGlobalContract",
    "ViewResult",
    "classify",
    "decode_signed_transaction",
    "decode_transaction",
    "encode_signed_transaction",
    "encode_transaction",
    "hash_transaction",
    "make_message_nonce",
    "message_nonce_timestamp",
    "verify_message_signature",
]
