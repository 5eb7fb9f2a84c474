import hashlib
import struct
from types import SimpleNamespace

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYS_PROGRAM_ID

from agave_offline.accounts import NonceState, decode_nonce_account, encode_nonce_account
from agave_offline.config import Config
from agave_offline.errors import (
    AlreadyProcessed,
    IncompleteSignatures,
    InsufficientFunds,
    NetworkError,
    NonceMismatch,
    TransactionFailed,
)
from agave_offline.instructions import LAMPORTS_PER_SOL, NONCE_STATE_SIZE, STAKE_PROGRAM_ID, STAKE_STATE_SIZE
from agave_offline.keys import KeypairSigner
from agave_offline.nonce import NonceProvider
from agave_offline.rpc import AccountState, SignatureStatus
from agave_offline.stake import StakeAccounts

LAMPORTS_PER_SIGNATURE = 5000
U64_MAX = 2**64 - 1


def named_hash(name: str) -> Hash:
    return Hash(hashlib.sha256(name.encode()).digest())


class ProgramError(Exception):
    pass


class _Account:
    def __init__(self, lamports, owner, data=b""):
        self.lamports = lamports
        self.owner = owner
        self.data = bytes(data)

    def copy(self):
        return _Account(self.lamports, self.owner, self.data)


def encode_stake(tag, reserve, staker, withdrawer, custodian=None, voter=None, stake=0):
    data = struct.pack("<IQ", tag, reserve) + bytes(staker) + bytes(withdrawer)
    data += struct.pack("<qQ", 0, 0) + bytes(custodian or Pubkey.default())
    if voter is not None:
        data += bytes(voter) + struct.pack("<QQQd", stake, 0, U64_MAX, 0.25) + struct.pack("<Q", 0)
    return data.ljust(STAKE_STATE_SIZE, b"\0")


class FakeCluster:
    """In-memory cluster that executes system and stake program instructions.

    Implements the same surface as RpcClient and raises the mapped errors a
    real RpcClient would raise.
    """

    def __init__(self):
        self.accounts = {}
        self.statuses = {}
        self.slot = 1
        self.blockhash = named_hash("genesis")
        self.next_nonces = []
        self.nonce_counter = 0
        self.sent = []
        self.fail_sends = 0
        self.lose_responses = 0

    def fund(self, pubkey, lamports):
        account = self.accounts.setdefault(pubkey, _Account(0, SYS_PROGRAM_ID))
        account.lamports += lamports

    def set_nonce(self, nonce_account, value):
        state = decode_nonce_account(self.accounts[nonce_account].data)
        self.accounts[nonce_account].data = encode_nonce_account(
            NonceState(state.authority, value, state.lamports_per_signature)
        )

    def next_nonce(self):
        if self.next_nonces:
            return self.next_nonces.pop(0)
        self.nonce_counter += 1
        return named_hash(f"nonce-{self.nonce_counter}")

    # RpcClient surface

    def get_account_info(self, pubkey):
        account = self.accounts.get(pubkey)
        if account is None:
            return None
        return AccountState(pubkey, account.lamports, account.owner, account.data)

    def get_balance(self, pubkey):
        account = self.accounts.get(pubkey)
        return account.lamports if account else 0

    def get_minimum_balance_for_rent_exemption(self, size):
        return (size + 128) * 6960

    def get_latest_blockhash(self):
        return self.blockhash

    def get_fee_for_message(self, message):
        if message.recent_blockhash != self.blockhash:
            return None
        return LAMPORTS_PER_SIGNATURE * message.header.num_required_signatures

    def request_airdrop(self, pubkey, lamports):
        raise NotImplementedError

    def get_signature_status(self, signature):
        return self.statuses.get(signature)

    def confirm_transaction(self, signature, timeout=60.0, poll_interval=0.5, nonce_account=None):
        status = self.statuses.get(signature)
        if status is None:
            raise NetworkError(f"Timed out waiting for {signature}", signature=signature)
        return status

    def send_transaction(self, tx, skip_preflight=False, nonce_account=None):
        if self.fail_sends:
            self.fail_sends -= 1
            raise NetworkError("connection reset by peer")

        message = tx.message
        signature = tx.signatures[0]
        if signature in self.statuses:
            raise AlreadyProcessed(signature)

        keys = list(message.account_keys)
        num_signers = message.header.num_required_signatures
        payload = bytes(message)
        invalid = [k for k, s in zip(keys[:num_signers], tx.signatures) if not s.verify(k, payload)]
        if invalid:
            raise IncompleteSignatures(invalid=invalid)

        instructions = list(message.instructions)
        first = instructions[0] if instructions else None
        if first is not None and keys[first.program_id_index] == SYS_PROGRAM_ID and bytes(first.data)[:4] == struct.pack("<I", 4):
            nonce_key = keys[bytes(first.accounts)[0]]
            state = decode_nonce_account(self.accounts[nonce_key].data)
            if state.nonce != message.recent_blockhash:
                raise NonceMismatch(nonce_key, expected=message.recent_blockhash, actual=state.nonce)
        elif message.recent_blockhash != self.blockhash:
            raise TransactionFailed("BlockhashNotFound", signature)

        fee_payer = keys[0]
        fee = LAMPORTS_PER_SIGNATURE * num_signers
        if self.get_balance(fee_payer) < fee:
            raise InsufficientFunds(fee_payer)

        working = {k: a.copy() for k, a in self.accounts.items()}
        working[fee_payer].lamports -= fee
        try:
            for ix in instructions:
                self._execute(working, keys, set(keys[:num_signers]), ix)
        except ProgramError as e:
            raise TransactionFailed(str(e), signature) from e

        self.accounts = {k: a for k, a in working.items() if a.lamports > 0 or a.data}
        self.statuses[signature] = SignatureStatus(self.slot, None, None, "finalized")
        self.slot += 1
        self.sent.append(signature)
        if self.lose_responses:
            self.lose_responses -= 1
            raise NetworkError("response lost")
        return signature

    # program execution

    def _execute(self, accounts, keys, signers, ix):
        program = keys[ix.program_id_index]
        metas = [keys[i] for i in bytes(ix.accounts)]
        data = bytes(ix.data)
        (tag,) = struct.unpack_from("<I", data, 0)
        if program == SYS_PROGRAM_ID:
            self._system(accounts, metas, signers, tag, data)
        elif program == STAKE_PROGRAM_ID:
            self._stake(accounts, metas, signers, tag, data)
        else:
            raise ProgramError(f"unsupported program {program}")

    def _debit(self, accounts, pubkey, lamports):
        account = accounts.get(pubkey)
        if account is None or account.lamports < lamports:
            raise ProgramError("ResultWithNegativeLamports")
        account.lamports -= lamports

    def _create(self, accounts, to, lamports, space, owner):
        existing = accounts.get(to)
        if existing is not None and (existing.lamports or existing.data):
            raise ProgramError("AccountAlreadyInUse")
        accounts[to] = _Account(lamports, owner, b"\0" * space)

    def _system(self, accounts, metas, signers, tag, data):
        if tag == 0:
            lamports, space = struct.unpack_from("<QQ", data, 4)
            owner = Pubkey(data[20:52])
            if metas[0] not in signers or metas[1] not in signers:
                raise ProgramError("MissingRequiredSignature")
            self._debit(accounts, metas[0], lamports)
            self._create(accounts, metas[1], lamports, space, owner)
        elif tag == 2:
            (lamports,) = struct.unpack_from("<Q", data, 4)
            if metas[0] not in signers:
                raise ProgramError("MissingRequiredSignature")
            self._debit(accounts, metas[0], lamports)
            accounts.setdefault(metas[1], _Account(0, SYS_PROGRAM_ID)).lamports += lamports
        elif tag == 3:
            base = Pubkey(data[4:36])
            (seed_len,) = struct.unpack_from("<Q", data, 36)
            seed = data[44:44 + seed_len].decode()
            offset = 44 + seed_len
            lamports, space = struct.unpack_from("<QQ", data, offset)
            owner = Pubkey(data[offset + 16:offset + 48])
            if base not in signers or metas[1] != Pubkey.create_with_seed(base, seed, owner):
                raise ProgramError("AddressWithSeedMismatch")
            self._debit(accounts, metas[0], lamports)
            self._create(accounts, metas[1], lamports, space, owner)
        elif tag == 4:
            nonce_key, authority = metas[0], metas[2]
            state = decode_nonce_account(accounts[nonce_key].data)
            if authority != state.authority or authority not in signers:
                raise ProgramError("MissingRequiredSignature")
            accounts[nonce_key].data = encode_nonce_account(
                NonceState(state.authority, self.next_nonce(), LAMPORTS_PER_SIGNATURE)
            )
        elif tag == 5:
            (lamports,) = struct.unpack_from("<Q", data, 4)
            nonce_key, to, authority = metas[0], metas[1], metas[4]
            state = decode_nonce_account(accounts[nonce_key].data)
            if authority != state.authority or authority not in signers:
                raise ProgramError("MissingRequiredSignature")
            self._debit(accounts, nonce_key, lamports)
            if accounts[nonce_key].lamports == 0:
                del accounts[nonce_key]
            elif accounts[nonce_key].lamports < self.get_minimum_balance_for_rent_exemption(NONCE_STATE_SIZE):
                raise ProgramError("InsufficientFunds")
            accounts.setdefault(to, _Account(0, SYS_PROGRAM_ID)).lamports += lamports
        elif tag == 6:
            nonce_key = metas[0]
            account = accounts[nonce_key]
            if account.owner != SYS_PROGRAM_ID or len(account.data) != NONCE_STATE_SIZE or any(account.data):
                raise ProgramError("InvalidAccountData")
            account.data = encode_nonce_account(NonceState(Pubkey(data[4:36]), self.next_nonce(), LAMPORTS_PER_SIGNATURE))
        else:
            raise ProgramError(f"unsupported system instruction {tag}")

    def _stake(self, accounts, metas, signers, tag, data):
        stake_key = metas[0]
        account = accounts.get(stake_key)
        if account is None or account.owner != STAKE_PROGRAM_ID:
            raise ProgramError("InvalidAccountOwner")
        (state,) = struct.unpack_from("<I", account.data, 0)
        staker = Pubkey(account.data[12:44])
        withdrawer = Pubkey(account.data[44:76])
        if tag == 0:
            if state != 0:
                raise ProgramError("InvalidAccountData")
            reserve = self.get_minimum_balance_for_rent_exemption(STAKE_STATE_SIZE)
            account.data = encode_stake(1, reserve, Pubkey(data[4:36]), Pubkey(data[36:68]), Pubkey(data[84:116]))
        elif tag == 1:
            new_authority = Pubkey(data[4:36])
            (role,) = struct.unpack_from("<I", data, 36)
            authority = metas[2]
            allowed = (staker, withdrawer) if role == 0 else (withdrawer,)
            if state not in (1, 2) or authority not in signers or authority not in allowed:
                raise ProgramError("MissingRequiredSignature")
            offset = 12 if role == 0 else 44
            account.data = account.data[:offset] + bytes(new_authority) + account.data[offset + 32:]
        elif tag == 2:
            vote, authority = metas[1], metas[5]
            if state not in (1, 2) or authority != staker or authority not in signers:
                raise ProgramError("MissingRequiredSignature")
            (reserve,) = struct.unpack_from("<Q", account.data, 4)
            account.data = encode_stake(
                2, reserve, staker, withdrawer, Pubkey(account.data[92:124]), voter=vote, stake=account.lamports - reserve
            )
        else:
            raise ProgramError(f"unsupported stake instruction {tag}")


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def config():
    return Config(confirm_timeout=1.0, poll_interval=0.01)


@pytest.fixture
def funded(cluster):
    def make(lamports=100 * LAMPORTS_PER_SOL):
        signer = KeypairSigner(Keypair())
        if lamports:
            cluster.fund(signer.pubkey(), lamports)
        return signer
    return make


@pytest.fixture
def stake_setup(cluster, config, funded):
    """A funded staker (also nonce authority and fee payer), a stake account and a nonce account."""
    staker = funded()
    withdrawer = funded()
    nonces = NonceProvider(cluster, config)
    cluster.next_nonces.append(named_hash("abc123"))
    nonce_account = nonces.create_nonce_account(staker, staker.pubkey(), LAMPORTS_PER_SOL)
    stake_account = StakeAccounts(cluster, config).create_stake_account(
        staker, 10 * LAMPORTS_PER_SOL, staker.pubkey(), withdrawer.pubkey()
    )
    return SimpleNamespace(
        staker=staker,
        withdrawer=withdrawer,
        nonces=nonces,
        nonce_account=nonce_account,
        stake_account=stake_account,
        vote_account=Keypair().pubkey(),
    )
