"""Decoders for nonce and stake account data."""

import struct
from dataclasses import dataclass
from typing import Optional

from solders.hash import Hash
from solders.pubkey import Pubkey

from .instructions import NONCE_STATE_SIZE

# nonce Versions / State variant tags
NONCE_VERSION_LEGACY = 0
NONCE_VERSION_CURRENT = 1
NONCE_STATE_UNINITIALIZED = 0
NONCE_STATE_INITIALIZED = 1

STAKE_STATE_KINDS = {0: "uninitialized", 1: "initialized", 2: "delegated", 3: "rewards_pool"}

# StakeStateV2 field offsets
_META_OFFSET = 4
_STAKER_OFFSET = _META_OFFSET + 8
_WITHDRAWER_OFFSET = _STAKER_OFFSET + 32
_LOCKUP_OFFSET = _WITHDRAWER_OFFSET + 32
_DELEGATION_OFFSET = _LOCKUP_OFFSET + 8 + 8 + 32


@dataclass(frozen=True)
class NonceState:
    authority: Pubkey
    nonce: Hash
    lamports_per_signature: int


@dataclass(frozen=True)
class StakeState:
    kind: str
    rent_exempt_reserve: int = 0
    staker: Optional[Pubkey] = None
    withdrawer: Optional[Pubkey] = None
    lockup_timestamp: int = 0
    lockup_epoch: int = 0
    custodian: Optional[Pubkey] = None
    voter: Optional[Pubkey] = None
    delegated_stake: int = 0
    activation_epoch: Optional[int] = None
    deactivation_epoch: Optional[int] = None


def decode_nonce_account(data: bytes) -> NonceState:
    if len(data) < NONCE_STATE_SIZE:
        raise ValueError(f"nonce account data too short ({len(data)} bytes)")
    version, state = struct.unpack_from("<II", data, 0)
    if version not in (NONCE_VERSION_LEGACY, NONCE_VERSION_CURRENT):
        raise ValueError(f"unknown nonce account version {version}")
    if state != NONCE_STATE_INITIALIZED:
        raise ValueError("nonce account is not initialized")
    authority = Pubkey(data[8:40])
    nonce = Hash(data[40:72])
    (lamports_per_signature,) = struct.unpack_from("<Q", data, 72)
    return NonceState(authority=authority, nonce=nonce, lamports_per_signature=lamports_per_signature)


def encode_nonce_account(state: NonceState) -> bytes:
    return (
        struct.pack("<II", NONCE_VERSION_CURRENT, NONCE_STATE_INITIALIZED)
        + bytes(state.authority)
        + bytes(state.nonce)
        + struct.pack("<Q", state.lamports_per_signature)
    )


def decode_stake_account(data: bytes) -> StakeState:
    if len(data) < 4:
        raise ValueError("stake account data too short")
    (tag,) = struct.unpack_from("<I", data, 0)
    if tag not in STAKE_STATE_KINDS:
        raise ValueError(f"unknown stake state {tag}")
    kind = STAKE_STATE_KINDS[tag]
    if kind in ("uninitialized", "rewards_pool"):
        return StakeState(kind=kind)

    (rent_exempt_reserve,) = struct.unpack_from("<Q", data, _META_OFFSET)
    staker = Pubkey(data[_STAKER_OFFSET:_STAKER_OFFSET + 32])
    withdrawer = Pubkey(data[_WITHDRAWER_OFFSET:_WITHDRAWER_OFFSET + 32])
    lockup_timestamp, lockup_epoch = struct.unpack_from("<qQ", data, _LOCKUP_OFFSET)
    custodian = Pubkey(data[_LOCKUP_OFFSET + 16:_LOCKUP_OFFSET + 48])
    if kind == "initialized":
        return StakeState(kind, rent_exempt_reserve, staker, withdrawer, lockup_timestamp, lockup_epoch, custodian)

    voter = Pubkey(data[_DELEGATION_OFFSET:_DELEGATION_OFFSET + 32])
    stake, activation_epoch, deactivation_epoch = struct.unpack_from("<QQQ", data, _DELEGATION_OFFSET + 32)
    return StakeState(
        kind, rent_exempt_reserve, staker, withdrawer, lockup_timestamp, lockup_epoch, custodian,
        voter=voter, delegated_stake=stake, activation_epoch=activation_epoch, deactivation_epoch=deactivation_epoch,
    )
