"""Offline signer: builds the nonce-bound transaction and signs it detached.

Nothing here talks to the network, so it can run on an air-gapped machine.
"""

import logging
from typing import Optional, Sequence

from solders.hash import Hash
from solders.pubkey import Pubkey

from .errors import MissingAuthority
from .intent import TransactionIntent, bind
from .keys import Signer
from .manifest import DetachedSignatureSet
from .transaction import sign_message

logger = logging.getLogger(__name__)


class OfflineSigner:
    def build_and_sign(self, intent: TransactionIntent, nonce_value: Hash, nonce_account: Pubkey,
                       nonce_authority: Pubkey, signer_keys: Sequence[Signer],
                       fee_payer: Optional[Pubkey] = None) -> DetachedSignatureSet:
        """Sign `intent` bound to `nonce_value` with every signer key it requires.

        The fee payer defaults to the first signer key. Required signers not
        in `signer_keys` other than the authorities are reported as absent so
        they can sign at submission time.
        """
        if not signer_keys:
            raise MissingAuthority(intent.authorities() + [nonce_authority])
        if fee_payer is None:
            fee_payer = signer_keys[0].pubkey()

        signable = bind(intent, nonce_value, nonce_account, nonce_authority, fee_payer)
        available = {signer.pubkey() for signer in signer_keys}
        missing = [key for key in signable.authorities if key not in available]
        if missing:
            raise MissingAuthority(missing)

        required = signable.required_signers
        for signer in signer_keys:
            if signer.pubkey() not in required:
                logger.warning(f"Signer {signer.pubkey()} is not required by the transaction; ignoring it")

        signatures = sign_message(signable.message, signer_keys)
        absent = [key for key in required if key not in signatures]
        logger.debug(f"Signed {intent} with {len(signatures)} signer(s), {len(absent)} absent")
        return DetachedSignatureSet(signatures, absent, nonce_value)
