"""
Decoder for the layered token returned by the Vidify API.

The token is a space-separated list of binary octets. Once XOR-ed against a
shared secret, the bytes split into:

    password (32) | salt (16) | iv (16) | ciphertext (rest)

The AES-256 key is PBKDF2-HMAC-SHA512(password, salt, 100000) and the
ciphertext is AES-CBC with PKCS7 padding over a UTF-8 JSON document.
"""

from typing import Optional

import orjson
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from meteor.core.exceptions import DecodeFailure
from meteor.core.logger import logger
from meteor.utils.concurrency import run_in_executor

PASSWORD_SIZE = 32
SALT_SIZE = 16
IV_SIZE = 16
HEADER_SIZE = PASSWORD_SIZE + SALT_SIZE + IV_SIZE
KDF_ITERATIONS = 100000
KEY_SIZE = 32
BLOCK_SIZE_BITS = 128


def xor_binary_octets(token: str, secret: bytes) -> bytes:
    if not secret:
        raise DecodeFailure("Empty XOR secret")

    octets = token.split(" ")
    try:
        values = [int(octet, 2) for octet in octets]
    except ValueError:
        raise DecodeFailure("Token is not a sequence of binary octets")

    if any(value > 0xFF for value in values):
        raise DecodeFailure("Token octet out of range")

    return bytes(
        value ^ secret[index % len(secret)] for index, value in enumerate(values)
    )


def split_segments(buffer: bytes):
    if len(buffer) <= HEADER_SIZE:
        raise DecodeFailure(f"Buffer too short ({len(buffer)} bytes)")

    password = buffer[:PASSWORD_SIZE]
    salt = buffer[PASSWORD_SIZE : PASSWORD_SIZE + SALT_SIZE]
    iv = buffer[PASSWORD_SIZE + SALT_SIZE : HEADER_SIZE]
    ciphertext = buffer[HEADER_SIZE:]
    return password, salt, iv, ciphertext


def derive_key(password: bytes, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=KEY_SIZE,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(password)


def decrypt_payload(key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
    try:
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError as e:
        raise DecodeFailure(f"AES-CBC decryption failed: {e}")


def decode_token(token: str, secret: bytes):
    """Run every pipeline stage, raising DecodeFailure on the first bad one."""
    if not isinstance(token, str) or not token.strip():
        raise DecodeFailure("Empty token")

    buffer = xor_binary_octets(token.strip(), secret)
    password, salt, iv, ciphertext = split_segments(buffer)
    plaintext = decrypt_payload(derive_key(password, salt), iv, ciphertext)

    try:
        return orjson.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, orjson.JSONDecodeError) as e:
        raise DecodeFailure(f"Decrypted payload is not JSON: {e}")


def decode_payload(token: str, secret: bytes) -> Optional[dict]:
    try:
        data = decode_token(token, secret)
    except DecodeFailure as e:
        logger.debug(f"Token decode failed: {e}")
        return None

    if not isinstance(data, dict):
        logger.debug(f"Decoded token is a {type(data).__name__}, expected an object")
        return None

    return data


async def decode_payload_async(token: str, secret: bytes) -> Optional[dict]:
    """Decode off the event loop, the key derivation is CPU bound."""
    return await run_in_executor(decode_payload, token, secret)
