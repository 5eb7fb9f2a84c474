"""Online submitter: re-assembles detached signatures and broadcasts."""

import logging
from typing import Optional, Sequence, Union

from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from .accounts import NonceState
from .config import Config
from .errors import (
    AlreadyProcessed,
    IncompleteSignatures,
    InsufficientFunds,
    NetworkError,
    NonceMismatch,
    transaction_error,
)
from .intent import SignableTransaction, TransactionIntent, bind
from .keys import Signer, resolve_key
from .manifest import DetachedSignatureSet
from .nonce import NonceProvider
from .transaction import assemble, estimate_fee, sign_message, verify_signatures

logger = logging.getLogger(__name__)


class OnlineSubmitter:
    def __init__(self, rpc, config: Optional[Config] = None, nonce_provider: Optional[NonceProvider] = None):
        self.rpc = rpc
        self.config = config or Config()
        self.nonces = nonce_provider or NonceProvider(rpc, self.config)

    def submit(self, intent: TransactionIntent, nonce_value: Hash, nonce_account: Pubkey,
               detached: DetachedSignatureSet, fee_payer: Union[Signer, Pubkey],
               online_signers: Sequence[Signer] = ()) -> Signature:
        """Validate and broadcast a transaction signed offline.

        The nonce authority is read from the nonce account. Online signers
        (the fee payer when given as a Signer, plus `online_signers`) only
        sign for keys the detached set does not already cover.
        """
        state = self.nonces.get_nonce_state(nonce_account)
        fee_payer_pubkey, fee_payer_signer = resolve_key(fee_payer)
        signable = bind(intent, nonce_value, nonce_account, state.authority, fee_payer_pubkey)
        message = signable.message
        required = signable.required_signers

        if detached.blockhash is not None and detached.blockhash != nonce_value:
            logger.warning(f"Signatures were produced for blockhash {detached.blockhash}, submitting with {nonce_value}")

        signatures = dict(detached.signatures)
        online = [s for s in [fee_payer_signer, *online_signers] if s is not None and s.pubkey() not in signatures]
        signatures.update(sign_message(message, online))
        tx = assemble(message, signatures)
        tx_signature = signatures.get(fee_payer_pubkey)

        if tx_signature is not None and self.rpc.get_signature_status(tx_signature) is not None:
            raise AlreadyProcessed(tx_signature)

        if state.nonce != nonce_value:
            raise NonceMismatch(nonce_account, expected=nonce_value, actual=state.nonce)

        unexpected = [k for k in signatures if k not in required]
        missing = [k for k in required if k not in signatures]
        invalid = verify_signatures(message, {k: v for k, v in signatures.items() if k in required})
        if missing or invalid or unexpected:
            raise IncompleteSignatures(missing, invalid, unexpected)

        self._check_funds(signable, message, state)
        logger.info(f"Submitting {intent} with nonce {nonce_value} from {nonce_account}")
        try:
            return self._send(tx, tx_signature, nonce_account, nonce_value)
        except NetworkError as e:
            # the transaction may have reached the cluster
            if e.signature is None:
                raise NetworkError(str(e), signature=tx_signature) from e
            raise

    def _check_funds(self, signable: SignableTransaction, message: Message, state: NonceState):
        fee = estimate_fee(self.rpc, message, state.lamports_per_signature)
        debits = {signable.fee_payer: fee}
        for pubkey in signable.intent.authorities():
            spent = signable.intent.lamports_debited(pubkey)
            if spent:
                debits[pubkey] = debits.get(pubkey, 0) + spent
        for pubkey, needed in debits.items():
            balance = self.rpc.get_balance(pubkey)
            if balance < needed:
                raise InsufficientFunds(pubkey, needed=needed, available=balance)

    def _send(self, tx: Transaction, tx_signature: Signature, nonce_account: Pubkey, nonce_value: Hash) -> Signature:
        """Send with status checks between attempts.

        A NetworkError leaves the outcome unknown, so the transaction status is
        looked up by signature and the nonce re-validated before any resend.
        """
        attempts = self.config.send_attempts
        attempt = 0
        while True:
            attempt += 1
            try:
                signature = self.rpc.send_transaction(
                    tx, skip_preflight=self.config.skip_preflight, nonce_account=nonce_account
                )
                self._confirm(signature, nonce_account)
                return signature
            except NetworkError as e:
                logger.warning(f"Attempt {attempt}/{attempts} for {tx_signature} failed: {e}")
                status = self.rpc.get_signature_status(tx_signature)
                if status is not None:
                    if status.err is not None:
                        raise transaction_error(status.err, tx_signature, nonce_account, nonce_value) from e
                    self._confirm(tx_signature, nonce_account)
                    return tx_signature
                if attempt == attempts:
                    raise NetworkError(f"{e}; transaction {tx_signature} was not found on the cluster",
                                       signature=tx_signature) from e
                current = self.nonces.get_current_nonce(nonce_account)
                if current != nonce_value:
                    raise NonceMismatch(nonce_account, expected=nonce_value, actual=current) from e

    def _confirm(self, signature: Signature, nonce_account: Pubkey):
        self.rpc.confirm_transaction(
            signature, timeout=self.config.confirm_timeout, poll_interval=self.config.poll_interval,
            nonce_account=nonce_account,
        )

    def check_status(self, signature: Signature):
        """Look up a transaction by signature, for recovery after a NetworkError."""
        return self.rpc.get_signature_status(signature)
