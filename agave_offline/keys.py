"""Key management: keypair files and signers.

Keypair files use the solana-keygen JSON layout (a list of 64 byte values).
Workflow code only sees the Signer interface and never the secret bytes.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Tuple, Union

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

logger = logging.getLogger(__name__)


class Signer:
    """Anything able to produce an ed25519 signature for a pubkey."""

    def pubkey(self) -> Pubkey:
        raise NotImplementedError

    def sign_message(self, message: bytes) -> Signature:
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}({self.pubkey()})"


class KeypairSigner(Signer):
    def __init__(self, keypair: Keypair, path: Optional[str] = None):
        self._keypair = keypair
        self.path = path

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "KeypairSigner":
        return cls(read_keypair_file(path), str(path))

    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    def sign_message(self, message: bytes) -> Signature:
        return self._keypair.sign_message(message)


def read_keypair_file(path: Union[str, Path]) -> Keypair:
    resolved = Path(path).expanduser()
    try:
        with open(resolved, 'r') as f:
            raw = json.load(f)
        return Keypair.from_bytes(bytes(raw))
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid keypair file {resolved}: {e}") from e


def write_keypair_file(keypair: Keypair, path: Union[str, Path], force: bool = False) -> Path:
    resolved = Path(path).expanduser()
    if resolved.exists() and not force:
        raise FileExistsError(f"Refusing to overwrite {resolved} without force")
    os.makedirs(resolved.parent, exist_ok=True)
    with open(resolved, 'w') as f:
        json.dump(list(bytes(keypair)), f)
    os.chmod(resolved, 0o600)
    return resolved


def generate_keypair(outfile: Optional[Union[str, Path]] = None, force: bool = False) -> KeypairSigner:
    """Create a new keypair, optionally persisting it to a keypair file."""
    keypair = Keypair()
    if outfile is None:
        return KeypairSigner(keypair)
    path = write_keypair_file(keypair, outfile, force=force)
    logger.debug(f"Wrote new keypair {keypair.pubkey()} to {path}")
    return KeypairSigner(keypair, str(path))


def parse_pubkey(value: str) -> Optional[Pubkey]:
    try:
        return Pubkey.from_string(value)
    except ValueError:
        return None


def resolve_key(value: Union[str, Path, Pubkey, Signer]) -> Tuple[Pubkey, Optional[Signer]]:
    """Resolve a CLI key argument: a base58 pubkey or a keypair file.

    Returns the pubkey and, when a keypair file was given, its signer.
    """
    if isinstance(value, Signer):
        return value.pubkey(), value
    if isinstance(value, Pubkey):
        return value, None
    text = str(value)
    pubkey = parse_pubkey(text)
    if pubkey is not None and not Path(text).expanduser().exists():
        return pubkey, None
    signer = KeypairSigner.from_file(text)
    return signer.pubkey(), signer


def resolve_pubkey(value: Union[str, Path, Pubkey, Signer]) -> Pubkey:
    return resolve_key(value)[0]
