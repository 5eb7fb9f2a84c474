"""Stake account creation and inspection."""

import logging
from typing import Optional

from solders.pubkey import Pubkey
from solders.system_program import (
    CreateAccountParams,
    CreateAccountWithSeedParams,
    create_account,
    create_account_with_seed,
)

from . import instructions as stake_ix
from .accounts import StakeState, decode_stake_account
from .config import Config
from .errors import AccountExists, AccountNotFound
from .instructions import STAKE_PROGRAM_ID, STAKE_STATE_SIZE
from .keys import Signer, generate_keypair
from .rpc import require_account
from .transaction import send_and_confirm

logger = logging.getLogger(__name__)

PROGRAM_ALIASES = {
    "STAKE": STAKE_PROGRAM_ID,
    "SYSTEM": Pubkey.from_string("11111111111111111111111111111111"),
    "VOTE": Pubkey.from_string("Vote111111111111111111111111111111111111111"),
}


def create_address_with_seed(base: Pubkey, seed: str, program_id=STAKE_PROGRAM_ID) -> Pubkey:
    if isinstance(program_id, str):
        program_id = PROGRAM_ALIASES.get(program_id.upper()) or Pubkey.from_string(program_id)
    if len(seed.encode()) > 32:
        raise ValueError(f"seed '{seed}' is longer than 32 bytes")
    return Pubkey.create_with_seed(base, seed, program_id)


class StakeAccounts:
    def __init__(self, rpc, config: Optional[Config] = None):
        self.rpc = rpc
        self.config = config or Config()

    def create_stake_account(self, funding: Signer, lamports: int, staker: Pubkey, withdrawer: Pubkey,
                             stake_account: Optional[Signer] = None, seed: Optional[str] = None) -> Pubkey:
        """Create and initialize a stake account.

        With a seed the address is derived from `stake_account` as the base
        key, or from the funding key when no stake account signer is given.
        """
        if seed is not None:
            base = stake_account or funding
            address = create_address_with_seed(base.pubkey(), seed)
            signers = [stake_account] if stake_account is not None else []
        else:
            stake_account = stake_account or generate_keypair()
            address = stake_account.pubkey()
            signers = [stake_account]

        if self.rpc.get_account_info(address) is not None:
            raise AccountExists(address)

        minimum = self.rpc.get_minimum_balance_for_rent_exemption(STAKE_STATE_SIZE)
        if lamports < minimum:
            raise ValueError(f"need at least {minimum} lamports for stake account to be rent exempt, got {lamports}")

        if seed is not None:
            create = create_account_with_seed(CreateAccountWithSeedParams(
                from_pubkey=funding.pubkey(), to_pubkey=address, base=base.pubkey(), seed=seed,
                lamports=lamports, space=STAKE_STATE_SIZE, owner=STAKE_PROGRAM_ID,
            ))
        else:
            create = create_account(CreateAccountParams(
                from_pubkey=funding.pubkey(), to_pubkey=address,
                lamports=lamports, space=STAKE_STATE_SIZE, owner=STAKE_PROGRAM_ID,
            ))
        ixs = [create, stake_ix.initialize(address, staker, withdrawer)]
        signature = send_and_confirm(self.rpc, self.config, ixs, funding, signers, spend=lamports)
        logger.info(f"Created stake account {address} (staker {staker}, withdrawer {withdrawer}) in {signature}")
        return address

    def get_stake_account(self, stake_account: Pubkey) -> StakeState:
        account = require_account(self.rpc, stake_account, owner=STAKE_PROGRAM_ID, kind="stake account")
        try:
            return decode_stake_account(account.data)
        except ValueError as e:
            raise AccountNotFound(stake_account, f"not a stake account ({e})") from e
