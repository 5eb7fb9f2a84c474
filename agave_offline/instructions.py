"""Stake program instruction encoders.

Instruction data is the bincode layout used by the stake program: a u32
little-endian variant tag followed by the variant fields.
"""

import struct
from enum import IntEnum
from typing import Optional

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

STAKE_PROGRAM_ID = Pubkey.from_string("Stake11111111111111111111111111111111111111")
STAKE_CONFIG_ID = Pubkey.from_string("StakeConfig11111111111111111111111111111111")
SYSVAR_CLOCK_ID = Pubkey.from_string("SysvarC1ock11111111111111111111111111111111")
SYSVAR_RENT_ID = Pubkey.from_string("SysvarRent111111111111111111111111111111111")
SYSVAR_STAKE_HISTORY_ID = Pubkey.from_string("SysvarStakeHistory1111111111111111111111111")

STAKE_STATE_SIZE = 200
NONCE_STATE_SIZE = 80
LAMPORTS_PER_SOL = 1_000_000_000

STAKE_IX_INITIALIZE = 0
STAKE_IX_AUTHORIZE = 1
STAKE_IX_DELEGATE = 2


class StakeRole(IntEnum):
    STAKER = 0
    WITHDRAWER = 1

    @classmethod
    def parse(cls, value: str) -> "StakeRole":
        try:
            return cls[value.upper()]
        except KeyError:
            raise ValueError(f"Unknown stake authority role '{value}'") from None


def initialize(stake_account: Pubkey, staker: Pubkey, withdrawer: Pubkey,
               lockup_timestamp: int = 0, lockup_epoch: int = 0, custodian: Optional[Pubkey] = None) -> Instruction:
    data = struct.pack("<I", STAKE_IX_INITIALIZE) + bytes(staker) + bytes(withdrawer)
    data += struct.pack("<qQ", lockup_timestamp, lockup_epoch) + bytes(custodian or Pubkey.default())
    keys = [
        AccountMeta(pubkey=stake_account, is_signer=False, is_writable=True),
        AccountMeta(pubkey=SYSVAR_RENT_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id=STAKE_PROGRAM_ID, data=data, accounts=keys)


def authorize(stake_account: Pubkey, authority: Pubkey, new_authority: Pubkey, role: StakeRole,
              custodian: Optional[Pubkey] = None) -> Instruction:
    data = struct.pack("<I", STAKE_IX_AUTHORIZE) + bytes(new_authority) + struct.pack("<I", int(role))
    keys = [
        AccountMeta(pubkey=stake_account, is_signer=False, is_writable=True),
        AccountMeta(pubkey=SYSVAR_CLOCK_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
    ]
    if custodian is not None:
        keys.append(AccountMeta(pubkey=custodian, is_signer=True, is_writable=False))
    return Instruction(program_id=STAKE_PROGRAM_ID, data=data, accounts=keys)


def delegate_stake(stake_account: Pubkey, vote_account: Pubkey, authority: Pubkey) -> Instruction:
    data = struct.pack("<I", STAKE_IX_DELEGATE)
    keys = [
        AccountMeta(pubkey=stake_account, is_signer=False, is_writable=True),
        AccountMeta(pubkey=vote_account, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSVAR_CLOCK_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSVAR_STAKE_HISTORY_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=STAKE_CONFIG_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
    ]
    return Instruction(program_id=STAKE_PROGRAM_ID, data=data, accounts=keys)
