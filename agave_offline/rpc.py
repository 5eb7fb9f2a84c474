"""Minimal JSON-RPC client for an Agave cluster."""

import base64
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from .errors import (
    AccountNotFound,
    IncompleteSignatures,
    NetworkError,
    RpcError,
    transaction_error,
)

logger = logging.getLogger(__name__)

# JSON-RPC error codes used by the Agave RPC service
SEND_TRANSACTION_PREFLIGHT_FAILURE = -32002
TRANSACTION_SIGNATURE_VERIFICATION_FAILURE = -32003

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


@dataclass(frozen=True)
class AccountState:
    pubkey: Pubkey
    lamports: int
    owner: Pubkey
    data: bytes
    executable: bool = False


@dataclass(frozen=True)
class SignatureStatus:
    slot: int
    confirmations: Optional[int]
    err: Any
    confirmation_status: Optional[str]

    def reached(self, commitment: str) -> bool:
        if self.confirmation_status is None:
            return False
        return _COMMITMENT_RANK.get(self.confirmation_status, -1) >= _COMMITMENT_RANK[commitment]


class RpcClient:
    def __init__(self, url: str, commitment: str = "confirmed", timeout: float = 30.0,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.commitment = commitment
        self.timeout = timeout
        self.session = session or requests.Session()
        self._request_id = 0

    @classmethod
    def from_config(cls, config) -> "RpcClient":
        return cls(config.url, commitment=config.commitment, timeout=config.timeout)

    def _call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method}
        if params is not None:
            payload["params"] = params
        logger.debug(f"-> {method} {params}")
        try:
            response = self.session.post(
                self.url, json=payload, headers={"Content-Type": "application/json"}, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"{method} to {self.url} failed: {e}") from e
        if response.status_code >= 500 or response.status_code == 429:
            raise NetworkError(f"{method} to {self.url} failed with HTTP {response.status_code}")
        # other 4xx responses (auth, bad request) are not transient
        rejected = response.status_code >= 400
        try:
            body = response.json()
        except ValueError as e:
            if rejected:
                raise RpcError(response.status_code, f"{method} to {self.url} failed with HTTP {response.status_code}") from e
            raise NetworkError(f"{method} to {self.url} returned invalid JSON (HTTP {response.status_code})") from e
        if body.get("error") is not None:
            error = body["error"]
            raise RpcError(error.get("code", 0), error.get("message", ""), error.get("data"))
        if rejected:
            raise RpcError(response.status_code, f"{method} to {self.url} failed with HTTP {response.status_code}")
        return body.get("result")

    def get_account_info(self, pubkey: Pubkey) -> Optional[AccountState]:
        result = self._call("getAccountInfo", [str(pubkey), {"encoding": "base64", "commitment": self.commitment}])
        value = result["value"]
        if value is None:
            return None
        return AccountState(
            pubkey=pubkey,
            lamports=value["lamports"],
            owner=Pubkey.from_string(value["owner"]),
            data=base64.b64decode(value["data"][0]),
            executable=value.get("executable", False),
        )

    def get_balance(self, pubkey: Pubkey) -> int:
        result = self._call("getBalance", [str(pubkey), {"commitment": self.commitment}])
        return result["value"]

    def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        return self._call("getMinimumBalanceForRentExemption", [size, {"commitment": self.commitment}])

    def get_latest_blockhash(self) -> Hash:
        result = self._call("getLatestBlockhash", [{"commitment": self.commitment}])
        return Hash.from_string(result["value"]["blockhash"])

    def get_fee_for_message(self, message: Message) -> Optional[int]:
        """Fee for a message; None when its blockhash is unknown to the cluster.

        Durable nonce values are never recent blockhashes, so callers fall back
        to the fee recorded in the nonce account.
        """
        encoded = base64.b64encode(bytes(message)).decode()
        result = self._call("getFeeForMessage", [encoded, {"commitment": self.commitment}])
        return result["value"]

    def request_airdrop(self, pubkey: Pubkey, lamports: int) -> Signature:
        result = self._call("requestAirdrop", [str(pubkey), lamports, {"commitment": self.commitment}])
        return Signature.from_string(result)

    def send_transaction(self, tx: Transaction, skip_preflight: bool = False,
                         nonce_account: Optional[Pubkey] = None) -> Signature:
        encoded = base64.b64encode(bytes(tx)).decode()
        signature = tx.signatures[0]
        opts = {"encoding": "base64", "skipPreflight": skip_preflight, "preflightCommitment": self.commitment}
        try:
            result = self._call("sendTransaction", [encoded, opts])
        except RpcError as e:
            if e.code == TRANSACTION_SIGNATURE_VERIFICATION_FAILURE:
                raise IncompleteSignatures() from e
            if e.code == SEND_TRANSACTION_PREFLIGHT_FAILURE and isinstance(e.data, dict) and e.data.get("err"):
                raise transaction_error(
                    e.data["err"], signature, nonce_account=nonce_account, nonce_value=tx.message.recent_blockhash
                ) from e
            raise
        logger.info(f"Sent transaction {result}")
        return Signature.from_string(result)

    def get_signature_status(self, signature: Signature) -> Optional[SignatureStatus]:
        result = self._call("getSignatureStatuses", [[str(signature)], {"searchTransactionHistory": True}])
        value = result["value"][0]
        if value is None:
            return None
        return SignatureStatus(
            slot=value["slot"],
            confirmations=value.get("confirmations"),
            err=value.get("err"),
            confirmation_status=value.get("confirmationStatus"),
        )

    def confirm_transaction(self, signature: Signature, timeout: float = 60.0, poll_interval: float = 0.5,
                            nonce_account: Optional[Pubkey] = None) -> SignatureStatus:
        """Poll until the transaction reaches the client commitment.

        Raises the mapped error when the transaction landed with an error and
        NetworkError when the deadline passes with the outcome still unknown.
        """
        deadline = time.monotonic() + timeout
        while True:
            status = self.get_signature_status(signature)
            if status is not None:
                if status.err is not None:
                    raise transaction_error(status.err, signature, nonce_account=nonce_account)
                if status.reached(self.commitment):
                    logger.info(f"Transaction {signature} reached {status.confirmation_status} at slot {status.slot}")
                    return status
            if time.monotonic() >= deadline:
                raise NetworkError(f"Timed out waiting for {signature} to reach {self.commitment}", signature=signature)
            time.sleep(poll_interval)


def require_account(rpc, pubkey: Pubkey, owner: Optional[Pubkey] = None, kind: str = "account") -> AccountState:
    account = rpc.get_account_info(pubkey)
    if account is None:
        raise AccountNotFound(pubkey)
    if owner is not None and account.owner != owner:
        raise AccountNotFound(pubkey, f"not a {kind} (owned by {account.owner})")
    return account
