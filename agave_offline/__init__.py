"""Offline and durable-nonce transaction signing for Agave clusters."""

__version__ = "0.1.0"

from .config import Config, load_config
from .errors import (
    AccountExists,
    AccountNotFound,
    AgaveOfflineError,
    AlreadyProcessed,
    IncompleteSignatures,
    InsufficientFunds,
    MissingAuthority,
    NetworkError,
    NonceMismatch,
)
from .intent import DelegateStakeIntent, PayIntent, StakeAuthorizeIntent
from .manifest import DetachedSignatureSet
from .nonce import NonceProvider
from .signer import OfflineSigner
from .submitter import OnlineSubmitter
from .workflow import AuthorizationWorkflow
