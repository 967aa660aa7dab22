"""
RSA helper — Encrypt short texts for a public key.

Stateless wrappers over ``cryptography`` RSA: 2048-bit keys exported as
PKCS#1 PEM, text encoded as UTF-16-LE, PKCS#1 v1.5 padding, base64 output.
Not used by the tree operations.
"""
import base64
from dataclasses import dataclass

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537
TEXT_ENCODING = "utf-16-le"


@dataclass(frozen=True)
class KeyPair:
    private_key: str
    public_key: str


def generate_keys() -> KeyPair:
    """Generate a new RSA key pair as PEM strings."""
    private = rsa.generate_private_key(
        public_exponent=PUBLIC_EXPONENT, key_size=KEY_SIZE,
    )
    private_pem = private.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.PKCS1,
    )
    return KeyPair(
        private_key=private_pem.decode("ascii"),
        public_key=public_pem.decode("ascii"),
    )


def encrypt(text: str, public_key: str) -> str:
    """Encrypt ``text`` for ``public_key`` and return base64 ciphertext."""
    key = serialization.load_pem_public_key(public_key.encode("ascii"))
    ct = key.encrypt(text.encode(TEXT_ENCODING), padding.PKCS1v15())
    return base64.b64encode(ct).decode("ascii")


def decrypt(cipher_text: str, private_key: str) -> str:
    """Decrypt base64 ``cipher_text`` with ``private_key``."""
    key = serialization.load_pem_private_key(
        private_key.encode("ascii"), password=None,
    )
    plaintext = key.decrypt(base64.b64decode(cipher_text), padding.PKCS1v15())
    return plaintext.decode(TEXT_ENCODING)
