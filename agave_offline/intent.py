"""Transaction intents and their binding to a durable nonce."""

from dataclasses import dataclass
from functools import cached_property
from typing import List, Optional

from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import AdvanceNonceAccountParams, TransferParams, advance_nonce_account, transfer

from . import instructions as stake_ix
from .instructions import StakeRole
from .transaction import compile_message, required_signers


class TransactionIntent:
    """Unsigned semantic payload of a transaction."""

    kind = "intent"

    def instructions(self) -> List[Instruction]:
        raise NotImplementedError

    def authorities(self) -> List[Pubkey]:
        """Keys that must sign for the intent's authority role."""
        raise NotImplementedError

    def lamports_debited(self, pubkey: Pubkey) -> int:
        return 0


@dataclass(frozen=True)
class StakeAuthorizeIntent(TransactionIntent):
    stake_account: Pubkey
    authority: Pubkey
    new_authority: Pubkey
    role: StakeRole
    custodian: Optional[Pubkey] = None

    kind = "stake-authorize"

    def instructions(self) -> List[Instruction]:
        return [stake_ix.authorize(self.stake_account, self.authority, self.new_authority, self.role, self.custodian)]

    def authorities(self) -> List[Pubkey]:
        keys = [self.authority]
        if self.custodian is not None and self.custodian != self.authority:
            keys.append(self.custodian)
        return keys

    def __str__(self):
        return f"authorize {self.role.name.lower()} of {self.stake_account} to {self.new_authority}"


@dataclass(frozen=True)
class DelegateStakeIntent(TransactionIntent):
    stake_account: Pubkey
    vote_account: Pubkey
    stake_authority: Pubkey

    kind = "delegate-stake"

    def instructions(self) -> List[Instruction]:
        return [stake_ix.delegate_stake(self.stake_account, self.vote_account, self.stake_authority)]

    def authorities(self) -> List[Pubkey]:
        return [self.stake_authority]

    def __str__(self):
        return f"delegate {self.stake_account} to vote account {self.vote_account}"


@dataclass(frozen=True)
class PayIntent(TransactionIntent):
    sender: Pubkey
    recipient: Pubkey
    lamports: int

    kind = "pay"

    def __post_init__(self):
        if self.lamports <= 0:
            raise ValueError("payment amount must be positive")

    def instructions(self) -> List[Instruction]:
        return [transfer(TransferParams(from_pubkey=self.sender, to_pubkey=self.recipient, lamports=self.lamports))]

    def authorities(self) -> List[Pubkey]:
        return [self.sender]

    def lamports_debited(self, pubkey: Pubkey) -> int:
        return self.lamports if pubkey == self.sender else 0

    def __str__(self):
        return f"pay {self.lamports} lamports from {self.sender} to {self.recipient}"


@dataclass(frozen=True)
class SignableTransaction:
    """An intent bound to a nonce value and a fee payer.

    The first instruction always advances the nonce, which makes the nonce
    value usable in place of a recent blockhash.
    """

    intent: TransactionIntent
    nonce_account: Pubkey
    nonce_authority: Pubkey
    nonce_value: Hash
    fee_payer: Pubkey

    @cached_property
    def message(self) -> Message:
        advance = advance_nonce_account(
            AdvanceNonceAccountParams(nonce_pubkey=self.nonce_account, authorized_pubkey=self.nonce_authority)
        )
        return compile_message([advance, *self.intent.instructions()], self.fee_payer, self.nonce_value)

    @property
    def message_bytes(self) -> bytes:
        return bytes(self.message)

    @property
    def required_signers(self) -> List[Pubkey]:
        return required_signers(self.message)

    @property
    def authorities(self) -> List[Pubkey]:
        keys = list(self.intent.authorities())
        if self.nonce_authority not in keys:
            keys.append(self.nonce_authority)
        return keys


def bind(intent: TransactionIntent, nonce_value: Hash, nonce_account: Pubkey, nonce_authority: Pubkey,
         fee_payer: Pubkey) -> SignableTransaction:
    return SignableTransaction(intent, nonce_account, nonce_authority, nonce_value, fee_payer)
