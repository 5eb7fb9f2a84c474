"""Detached signature sets and the textual signer manifest.

The manifest is what crosses the air gap:

    Blockhash: <nonce value>
    Signers (Pubkey=Signature):
      <pubkey>=<signature>
    Absent Signers (Pubkey):
      <pubkey>
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from solders.hash import Hash, ParseHashError
from solders.pubkey import Pubkey
from solders.signature import Signature

from .errors import ManifestError

BLOCKHASH_HEADER = "Blockhash:"
SIGNERS_HEADER = "Signers (Pubkey=Signature):"
ABSENT_HEADER = "Absent Signers (Pubkey):"


def parse_signer_arg(value: str) -> Tuple[Pubkey, Signature]:
    """Parse a `<pubkey>=<signature>` pair as given to --signer."""
    pubkey_text, sep, signature_text = value.strip().partition("=")
    if not sep or not pubkey_text or not signature_text:
        raise ManifestError(f"Invalid signer '{value}', expected <pubkey>=<signature>")
    try:
        return Pubkey.from_string(pubkey_text), Signature.from_string(signature_text)
    except ValueError as e:
        raise ManifestError(f"Invalid signer '{value}': {e}") from e


def parse_blockhash(value: str) -> Hash:
    """Parse a base58 blockhash or nonce value."""
    try:
        return Hash.from_string(value.strip())
    except (ParseHashError, ValueError) as e:
        raise ManifestError(f"Invalid blockhash '{value}': {e}") from e


@dataclass
class DetachedSignatureSet:
    signatures: Dict[Pubkey, Signature] = field(default_factory=dict)
    absent: List[Pubkey] = field(default_factory=list)
    blockhash: Optional[Hash] = None

    def __contains__(self, pubkey: Pubkey) -> bool:
        return pubkey in self.signatures

    def __len__(self):
        return len(self.signatures)

    def pubkeys(self) -> List[Pubkey]:
        return list(self.signatures)

    def merge(self, other: "DetachedSignatureSet") -> "DetachedSignatureSet":
        if self.blockhash is not None and other.blockhash is not None and self.blockhash != other.blockhash:
            raise ManifestError(f"Cannot merge signatures for blockhash {other.blockhash} into {self.blockhash}")
        signatures = dict(self.signatures)
        for pubkey, signature in other.signatures.items():
            if pubkey in signatures and signatures[pubkey] != signature:
                raise ManifestError(f"Conflicting signatures for {pubkey}")
            signatures[pubkey] = signature
        absent = [k for k in [*self.absent, *other.absent] if k not in signatures]
        return DetachedSignatureSet(signatures, list(dict.fromkeys(absent)), self.blockhash or other.blockhash)

    def to_text(self) -> str:
        lines = []
        if self.blockhash is not None:
            lines.append(f"{BLOCKHASH_HEADER} {self.blockhash}")
        if self.signatures:
            lines.append(SIGNERS_HEADER)
            lines.extend(f"  {pubkey}={signature}" for pubkey, signature in self.signatures.items())
        if self.absent:
            lines.append(ABSENT_HEADER)
            lines.extend(f"  {pubkey}" for pubkey in self.absent)
        return "\n".join(lines) + "\n"

    def signer_args(self) -> List[str]:
        return [f"{pubkey}={signature}" for pubkey, signature in self.signatures.items()]

    @classmethod
    def from_signer_args(cls, values: Iterable[str], blockhash: Optional[Hash] = None) -> "DetachedSignatureSet":
        signatures = {}
        for value in values:
            pubkey, signature = parse_signer_arg(value)
            if pubkey in signatures and signatures[pubkey] != signature:
                raise ManifestError(f"Conflicting signatures for {pubkey}")
            signatures[pubkey] = signature
        return cls(signatures, [], blockhash)

    @classmethod
    def from_text(cls, text: str) -> "DetachedSignatureSet":
        """Parse manifest text, ignoring lines outside the known sections."""
        blockhash = None
        signatures = {}
        absent = []
        section = None
        for line in text.splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            if stripped.startswith(BLOCKHASH_HEADER):
                blockhash = parse_blockhash(stripped[len(BLOCKHASH_HEADER):])
                section = None
            elif stripped == SIGNERS_HEADER:
                section = "signers"
            elif stripped == ABSENT_HEADER:
                section = "absent"
            elif line.startswith("  ") and section == "signers":
                pubkey, signature = parse_signer_arg(stripped)
                if pubkey in signatures and signatures[pubkey] != signature:
                    raise ManifestError(f"Conflicting signatures for {pubkey}")
                signatures[pubkey] = signature
            elif line.startswith("  ") and section == "absent":
                try:
                    absent.append(Pubkey.from_string(stripped))
                except ValueError as e:
                    raise ManifestError(f"Invalid absent signer '{stripped}': {e}") from e
            else:
                section = None
        if not signatures and not absent:
            raise ManifestError("No signers found in manifest")
        return cls(signatures, absent, blockhash)
