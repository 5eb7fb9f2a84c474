"""Message compilation, detached signing and transaction assembly."""

import logging
from typing import Dict, Iterable, List, Sequence

from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from .errors import InsufficientFunds

logger = logging.getLogger(__name__)


def compile_message(instructions: Sequence[Instruction], fee_payer: Pubkey, blockhash: Hash) -> Message:
    return Message.new_with_blockhash(list(instructions), fee_payer, blockhash)


def required_signers(message: Message) -> List[Pubkey]:
    return list(message.account_keys[:message.header.num_required_signatures])


def sign_message(message: Message, signers: Iterable) -> Dict[Pubkey, Signature]:
    """Sign with every signer whose key the message requires; others are skipped."""
    by_pubkey = {}
    for signer in signers:
        by_pubkey.setdefault(signer.pubkey(), signer)
    payload = bytes(message)
    return {
        pubkey: by_pubkey[pubkey].sign_message(payload)
        for pubkey in required_signers(message)
        if pubkey in by_pubkey
    }


def verify_signatures(message: Message, signatures: Dict[Pubkey, Signature]) -> List[Pubkey]:
    """Return the keys whose signatures do not verify against the message."""
    payload = bytes(message)
    return [pubkey for pubkey, signature in signatures.items() if not signature.verify(pubkey, payload)]


def assemble(message: Message, signatures: Dict[Pubkey, Signature]) -> Transaction:
    """Order signatures by the message's signer keys; gaps get the default signature."""
    ordered = [signatures.get(pubkey, Signature.default()) for pubkey in required_signers(message)]
    return Transaction.populate(message, ordered)


def estimate_fee(rpc, message: Message, lamports_per_signature: int = 5000) -> int:
    fee = rpc.get_fee_for_message(message)
    if fee is None:
        fee = lamports_per_signature * message.header.num_required_signatures
    return fee


def send_and_confirm(rpc, config, instructions: Sequence[Instruction], fee_payer, signers: Sequence,
                     spend: int = 0) -> Signature:
    """Build, sign and send a recent-blockhash transaction and wait for it.

    `spend` is what the fee payer transfers on top of the fee.
    """
    blockhash = rpc.get_latest_blockhash()
    message = compile_message(instructions, fee_payer.pubkey(), blockhash)

    fee = estimate_fee(rpc, message)
    balance = rpc.get_balance(fee_payer.pubkey())
    if balance < spend + fee:
        raise InsufficientFunds(fee_payer.pubkey(), needed=spend + fee, available=balance)

    tx = assemble(message, sign_message(message, [fee_payer, *signers]))
    signature = rpc.send_transaction(tx, skip_preflight=config.skip_preflight)
    rpc.confirm_transaction(signature, timeout=config.confirm_timeout, poll_interval=config.poll_interval)
    return signature
