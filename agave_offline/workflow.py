"""State machine for a single offline authorization."""

import logging
from enum import Enum
from typing import Optional, Sequence, Union

from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature

from .errors import (
    AlreadyProcessed,
    IncompleteSignatures,
    InsufficientFunds,
    NetworkError,
    NonceMismatch,
    TransactionFailed,
    WorkflowStateError,
)
from .intent import TransactionIntent
from .keys import Signer
from .manifest import DetachedSignatureSet
from .nonce import NonceProvider
from .signer import OfflineSigner
from .submitter import OnlineSubmitter

logger = logging.getLogger(__name__)


class WorkflowState(Enum):
    INTENT_BUILT = "intent_built"
    NONCE_BOUND = "nonce_bound"
    OFFLINE_SIGNED = "offline_signed"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class RejectReason(Enum):
    STALE_NONCE = "stale_nonce"
    MISSING_SIGNATURE = "missing_sig"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    ALREADY_PROCESSED = "already_processed"
    FAILED = "failed"


_REJECTIONS = (
    (NonceMismatch, RejectReason.STALE_NONCE),
    (IncompleteSignatures, RejectReason.MISSING_SIGNATURE),
    (InsufficientFunds, RejectReason.INSUFFICIENT_FUNDS),
    (AlreadyProcessed, RejectReason.ALREADY_PROCESSED),
    (TransactionFailed, RejectReason.FAILED),
)


class AuthorizationWorkflow:
    """Drives one intent through bind -> sign offline -> submit.

    A stale nonce sends the workflow back to NONCE_BOUND via `bind_nonce`;
    missing signatures or funds return it to OFFLINE_SIGNED via
    `add_signatures`. Already processed and failed transactions are final.
    """

    def __init__(self, intent: TransactionIntent, nonce_account: Pubkey, nonce_authority: Pubkey,
                 fee_payer: Optional[Pubkey] = None):
        self.intent = intent
        self.nonce_account = nonce_account
        self.nonce_authority = nonce_authority
        self.fee_payer = fee_payer
        self.state = WorkflowState.INTENT_BUILT
        self.reason: Optional[RejectReason] = None
        self.nonce_value: Optional[Hash] = None
        self.signatures = DetachedSignatureSet()
        self.signature: Optional[Signature] = None

    def _require(self, *allowed):
        if self.state not in allowed:
            raise WorkflowStateError(f"Cannot do that from state {self.state.value}")

    def bind_nonce(self, provider: NonceProvider) -> Hash:
        if self.state == WorkflowState.REJECTED and self.reason != RejectReason.STALE_NONCE:
            raise WorkflowStateError(f"Rejected for {self.reason.value}; rebinding the nonce does not help")
        self._require(WorkflowState.INTENT_BUILT, WorkflowState.NONCE_BOUND, WorkflowState.REJECTED)
        self.nonce_value = provider.get_current_nonce(self.nonce_account)
        self.signatures = DetachedSignatureSet(blockhash=self.nonce_value)
        self.reason = None
        self.state = WorkflowState.NONCE_BOUND
        logger.debug(f"Bound {self.intent} to nonce {self.nonce_value}")
        return self.nonce_value

    def sign_offline(self, signer: OfflineSigner, signer_keys: Sequence[Signer]) -> DetachedSignatureSet:
        self._require(WorkflowState.NONCE_BOUND)
        if self.fee_payer is None:
            self.fee_payer = signer_keys[0].pubkey() if signer_keys else self.nonce_authority
        self.signatures = signer.build_and_sign(
            self.intent, self.nonce_value, self.nonce_account, self.nonce_authority, signer_keys, self.fee_payer
        )
        self.state = WorkflowState.OFFLINE_SIGNED
        return self.signatures

    def add_signatures(self, detached: DetachedSignatureSet):
        if self.state == WorkflowState.REJECTED and self.reason not in (
            RejectReason.MISSING_SIGNATURE, RejectReason.INSUFFICIENT_FUNDS
        ):
            raise WorkflowStateError(f"Rejected for {self.reason.value}; new signatures do not help")
        self._require(WorkflowState.NONCE_BOUND, WorkflowState.OFFLINE_SIGNED, WorkflowState.REJECTED)
        if self.fee_payer is None:
            raise WorkflowStateError("A fee payer is required before importing signatures")
        self.signatures = self.signatures.merge(detached)
        self.reason = None
        self.state = WorkflowState.OFFLINE_SIGNED

    def submit(self, submitter: OnlineSubmitter, fee_payer: Union[Signer, Pubkey, None] = None,
               online_signers: Sequence[Signer] = ()) -> Signature:
        """Submit the signed transaction.

        Rejections move the workflow to REJECTED. A NetworkError carrying the
        transaction signature means it may have been sent, so the workflow is
        SUBMITTED and submit may be retried. Any other failure happened before
        sending and leaves the state unchanged.
        """
        self._require(WorkflowState.OFFLINE_SIGNED, WorkflowState.SUBMITTED)
        previous = self.state
        try:
            self.signature = submitter.submit(
                self.intent, self.nonce_value, self.nonce_account, self.signatures,
                fee_payer if fee_payer is not None else self.fee_payer, online_signers,
            )
        except NetworkError as e:
            self.state = WorkflowState.SUBMITTED if e.signature is not None else previous
            raise
        except tuple(exc for exc, _ in _REJECTIONS) as e:
            self.state = WorkflowState.REJECTED
            self.reason = next(reason for exc, reason in _REJECTIONS if isinstance(e, exc))
            logger.info(f"Workflow for {self.intent} rejected: {self.reason.value}")
            raise
        self.state = WorkflowState.CONFIRMED
        return self.signature
