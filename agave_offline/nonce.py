"""Durable nonce provider."""

import logging
from typing import Optional

from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import (
    ID as SYS_PROGRAM_ID,
    CreateAccountParams,
    InitializeNonceAccountParams,
    WithdrawNonceAccountParams,
    create_account,
    initialize_nonce_account,
    withdraw_nonce_account,
)

from .accounts import NonceState, decode_nonce_account
from .config import Config
from .errors import AccountExists, AccountNotFound, InsufficientFunds, MissingAuthority
from .instructions import NONCE_STATE_SIZE
from .keys import Signer, generate_keypair
from .rpc import require_account
from .transaction import send_and_confirm

logger = logging.getLogger(__name__)


class NonceProvider:
    def __init__(self, rpc, config: Optional[Config] = None):
        self.rpc = rpc
        self.config = config or Config()

    def create_nonce_account(self, funding_key: Signer, nonce_authority: Pubkey, lamports: int,
                             nonce_account: Optional[Signer] = None) -> Pubkey:
        """Create and initialize a nonce account funded by `funding_key`.

        A fresh keypair is generated for the account address unless one is
        supplied. Its secret is only needed for this single transaction.
        """
        nonce_account = nonce_account or generate_keypair()
        nonce_pubkey = nonce_account.pubkey()

        if self.rpc.get_account_info(nonce_pubkey) is not None:
            raise AccountExists(nonce_pubkey)

        minimum = self.rpc.get_minimum_balance_for_rent_exemption(NONCE_STATE_SIZE)
        if lamports < minimum:
            raise ValueError(f"need at least {minimum} lamports for nonce account to be rent exempt, got {lamports}")

        ixs = [
            create_account(CreateAccountParams(
                from_pubkey=funding_key.pubkey(), to_pubkey=nonce_pubkey,
                lamports=lamports, space=NONCE_STATE_SIZE, owner=SYS_PROGRAM_ID,
            )),
            initialize_nonce_account(InitializeNonceAccountParams(nonce_pubkey=nonce_pubkey, authority=nonce_authority)),
        ]
        signature = send_and_confirm(self.rpc, self.config, ixs, funding_key, [nonce_account], spend=lamports)
        logger.info(f"Created nonce account {nonce_pubkey} with authority {nonce_authority} ({signature})")
        return nonce_pubkey

    def get_nonce_state(self, nonce_account: Pubkey) -> NonceState:
        account = require_account(self.rpc, nonce_account, owner=SYS_PROGRAM_ID, kind="nonce account")
        try:
            return decode_nonce_account(account.data)
        except ValueError as e:
            raise AccountNotFound(nonce_account, f"not a nonce account ({e})") from e

    def get_current_nonce(self, nonce_account: Pubkey) -> Hash:
        return self.get_nonce_state(nonce_account).nonce

    def withdraw_nonce_account(self, nonce_account: Pubkey, nonce_authority: Signer, destination: Pubkey,
                               lamports: Optional[int] = None, fee_payer: Optional[Signer] = None) -> Signature:
        """Withdraw from a nonce account; withdrawing everything closes it."""
        state = self.get_nonce_state(nonce_account)
        if state.authority != nonce_authority.pubkey():
            raise MissingAuthority([state.authority])

        balance = self.rpc.get_balance(nonce_account)
        if lamports is None:
            lamports = balance
        elif lamports > balance:
            raise InsufficientFunds(nonce_account, needed=lamports, available=balance)

        remaining = balance - lamports
        minimum = self.rpc.get_minimum_balance_for_rent_exemption(NONCE_STATE_SIZE)
        if 0 < remaining < minimum:
            raise ValueError(
                f"withdrawing {lamports} lamports would leave {remaining} in nonce account {nonce_account}, "
                f"below the rent exempt minimum of {minimum}; withdraw everything to close it"
            )

        ix = withdraw_nonce_account(WithdrawNonceAccountParams(
            nonce_pubkey=nonce_account, authorized_pubkey=nonce_authority.pubkey(),
            to_pubkey=destination, lamports=lamports,
        ))
        payer = fee_payer or nonce_authority
        signature = send_and_confirm(self.rpc, self.config, [ix], payer, [nonce_authority])
        logger.info(f"Withdrew {lamports} lamports from nonce account {nonce_account} to {destination}")
        return signature
