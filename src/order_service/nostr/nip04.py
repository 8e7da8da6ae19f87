"""NIP-04 encrypted direct messages.

Content is AES-256-CBC encrypted with the ECDH shared x coordinate as key
and serialized as ``base64(ciphertext)?iv=base64(iv)``.
"""

from __future__ import annotations

import base64
import os
from typing import TYPE_CHECKING

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from order_service.nostr.event import KIND_ENCRYPTED_DM, EventTemplate

if TYPE_CHECKING:
    from order_service.nostr.keys import Keys

_IV_SEPARATOR = "?iv="


def encrypt(keys: Keys, recipient_pubkey: str, plaintext: str) -> str:
    """Encrypt *plaintext* for *recipient_pubkey*."""
    key = keys.shared_secret(recipient_pubkey)
    iv = os.urandom(16)
    padder = padding.PKCS7(128).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return (
        base64.b64encode(ciphertext).decode("ascii")
        + _IV_SEPARATOR
        + base64.b64encode(iv).decode("ascii")
    )


def decrypt(keys: Keys, sender_pubkey: str, content: str) -> str:
    """Decrypt NIP-04 *content* sent by *sender_pubkey*.

    Raises:
        ValueError: If the payload is malformed or cannot be decrypted.
    """
    ct_b64, sep, iv_b64 = content.partition(_IV_SEPARATOR)
    if not sep:
        msg = "NIP-04 payload is missing the iv"
        raise ValueError(msg)
    ciphertext = base64.b64decode(ct_b64)
    iv = base64.b64decode(iv_b64)
    key = keys.shared_secret(sender_pubkey)
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(128).unpadder()
    return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")


def build_direct_message(keys: Keys, recipient_pubkey: str, text: str) -> EventTemplate:
    """Build a kind-4 encrypted DM template addressed to *recipient_pubkey*."""
    return EventTemplate(
        kind=KIND_ENCRYPTED_DM,
        tags=(("p", recipient_pubkey),),
        content=encrypt(keys, recipient_pubkey, text),
    )
