"""Error taxonomy for the offline authorization workflow."""

from typing import Any, List, Optional


class AgaveOfflineError(Exception):
    """Base class for all workflow errors."""

    retryable = False


class AccountNotFound(AgaveOfflineError):
    def __init__(self, pubkey, detail: str = "account does not exist"):
        self.pubkey = pubkey
        super().__init__(f"{pubkey}: {detail}")


class AccountExists(AgaveOfflineError):
    def __init__(self, pubkey):
        self.pubkey = pubkey
        super().__init__(f"Account {pubkey} already exists")


class InsufficientFunds(AgaveOfflineError):
    def __init__(self, pubkey, needed: Optional[int] = None, available: Optional[int] = None):
        self.pubkey = pubkey
        self.needed = needed
        self.available = available
        if needed is None:
            msg = f"Account {pubkey} has insufficient funds"
        else:
            msg = f"Account {pubkey} has insufficient funds: need {needed} lamports, have {available}"
        super().__init__(msg)


class MissingAuthority(AgaveOfflineError):
    def __init__(self, missing: List):
        self.missing = list(missing)
        super().__init__("Missing signer for required authority: " + ", ".join(str(k) for k in self.missing))


class IncompleteSignatures(AgaveOfflineError):
    def __init__(self, missing: List = (), invalid: List = (), unexpected: List = ()):
        self.missing = list(missing)
        self.invalid = list(invalid)
        self.unexpected = list(unexpected)
        parts = []
        if self.missing:
            parts.append("missing " + ", ".join(str(k) for k in self.missing))
        if self.invalid:
            parts.append("invalid " + ", ".join(str(k) for k in self.invalid))
        if self.unexpected:
            parts.append("unexpected " + ", ".join(str(k) for k in self.unexpected))
        super().__init__("Incomplete signatures: " + ("; ".join(parts) or "signature verification failed"))


class NonceMismatch(AgaveOfflineError):
    def __init__(self, nonce_account, expected=None, actual=None):
        self.nonce_account = nonce_account
        self.expected = expected
        self.actual = actual
        if actual is None:
            msg = f"Nonce {expected} is no longer current for nonce account {nonce_account}"
        else:
            msg = f"Stale nonce for {nonce_account}: signed with {expected}, account holds {actual}"
        super().__init__(msg)


class AlreadyProcessed(AgaveOfflineError):
    def __init__(self, signature):
        self.signature = signature
        super().__init__(f"Transaction {signature} has already been processed")


class NetworkError(AgaveOfflineError):
    """Transport failure; the outcome of a send may be unknown."""

    retryable = True

    def __init__(self, message: str, signature=None):
        self.signature = signature
        super().__init__(message)


class RpcError(AgaveOfflineError):
    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"RPC error {code}: {message}")


class TransactionFailed(AgaveOfflineError):
    def __init__(self, err: Any, signature=None):
        self.err = err
        self.signature = signature
        super().__init__(f"Transaction failed: {err}")


class ManifestError(AgaveOfflineError, ValueError):
    pass


class ConfigError(AgaveOfflineError):
    pass


class WorkflowStateError(AgaveOfflineError):
    pass


def transaction_error(err: Any, signature=None, nonce_account=None, nonce_value=None) -> AgaveOfflineError:
    """Translate a cluster TransactionError value into the taxonomy."""
    if err == "AlreadyProcessed":
        return AlreadyProcessed(signature)
    if err == "BlockhashNotFound" and nonce_account is not None:
        return NonceMismatch(nonce_account, expected=nonce_value)
    if err in ("InsufficientFundsForFee", "InsufficientFundsForRent", "AccountNotFound"):
        return InsufficientFunds("fee payer" if err != "InsufficientFundsForRent" else "recipient")
    if isinstance(err, dict) and "InsufficientFundsForRent" in err:
        return InsufficientFunds(f"account index {err['InsufficientFundsForRent'].get('account_index')}")
    if err == "SignatureFailure" or err == "MissingSignatureForFee":
        return IncompleteSignatures()
    return TransactionFailed(err, signature)
