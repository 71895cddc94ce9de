"""Signing abstraction for certificates (KMS-ready)."""

import base64
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.serialization import load_der_public_key

from forj_api.ledger.canonical import canonicalize
from forj_api.settings import Settings, get_settings

logger = logging.getLogger(__name__)

ALGORITHM = "PS256"  # RSA-PSS with SHA-256


def _pss() -> padding.PSS:
    return padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH)


def _int_to_base64url(value: int) -> str:
    byte_length = (value.bit_length() + 7) // 8
    return base64.urlsafe_b64encode(value.to_bytes(byte_length, "big")).decode("utf-8").rstrip("=")


def public_key_to_jwk(public_key: rsa.RSAPublicKey, kid: str) -> dict:
    """Render an RSA public key as a JWK."""
    numbers = public_key.public_numbers()
    return {
        "kty": "RSA",
        "kid": kid,
        "use": "sig",
        "alg": ALGORITHM,
        "n": _int_to_base64url(numbers.n),
        "e": _int_to_base64url(numbers.e),
    }


class Signer(ABC):
    """Abstract signer interface."""

    algorithm = ALGORITHM

    @abstractmethod
    def sign(self, data: bytes) -> bytes:
        """Sign data and return signature bytes."""

    @abstractmethod
    def public_key(self) -> rsa.RSAPublicKey:
        """Public half of the signing key."""

    @abstractmethod
    def get_key_id(self) -> str:
        """Get key identifier."""

    def get_public_jwk(self) -> dict:
        return public_key_to_jwk(self.public_key(), self.get_key_id())

    def sign_payload(self, payload: dict) -> str:
        """Sign the canonical encoding of ``payload``; base64 signature."""
        return base64.b64encode(self.sign(canonicalize(payload))).decode()

    def verify_payload(self, payload: dict, signature: str) -> bool:
        """Check a base64 signature produced by ``sign_payload``."""
        try:
            self.public_key().verify(
                base64.b64decode(signature),
                canonicalize(payload),
                _pss(),
                hashes.SHA256(),
            )
        except (InvalidSignature, ValueError):
            return False
        return True


class LocalSigner(Signer):
    """Development signer using an RSA keypair stored as PEM on disk."""

    def __init__(self, key_path: str, key_id: str = "local-dev-key-1"):
        self.key_path = Path(key_path)
        self._key_id = key_id
        self._private_key = self._load_or_generate_key()

    def _load_or_generate_key(self) -> rsa.RSAPrivateKey:
        if self.key_path.exists():
            return serialization.load_pem_private_key(self.key_path.read_bytes(), password=None)

        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.key_path.parent.mkdir(parents=True, exist_ok=True)
        self.key_path.write_bytes(
            private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )
        logger.info("Generated local signing key", extra={"key_path": str(self.key_path)})
        return private_key

    def sign(self, data: bytes) -> bytes:
        return self._private_key.sign(data, _pss(), hashes.SHA256())

    def public_key(self) -> rsa.RSAPublicKey:
        return self._private_key.public_key()

    def get_key_id(self) -> str:
        return self._key_id


class KmsSigner(Signer):
    """AWS KMS signer for production."""

    def __init__(self, key_id: str, region: Optional[str] = None):
        self.key_id = key_id
        self._public_key = None
        try:
            self._kms_client = boto3.client("kms", region_name=region)
            metadata = self._kms_client.describe_key(KeyId=key_id)["KeyMetadata"]
        except ClientError as e:
            raise ValueError(f"Failed to access KMS key {key_id}: {_kms_error(e)}") from e
        except BotoCoreError as e:
            raise ValueError(f"Failed to initialize KMS client: {e}") from e

        if "RSA" not in metadata.get("KeySpec", ""):
            raise ValueError(f"KMS key {key_id} must be an RSA key, got {metadata.get('KeySpec')}")
        if metadata.get("KeyUsage") != "SIGN_VERIFY":
            raise ValueError(f"KMS key {key_id} must have SIGN_VERIFY usage, got {metadata.get('KeyUsage')}")
        logger.info("KMS signer initialized", extra={"key_arn": metadata.get("Arn")})

    def sign(self, data: bytes) -> bytes:
        try:
            response = self._kms_client.sign(
                KeyId=self.key_id,
                Message=data,
                MessageType="RAW",
                SigningAlgorithm="RSASSA_PSS_SHA_256",
            )
        except ClientError as e:
            raise ValueError(f"KMS signing failed: {_kms_error(e)}") from e
        return response["Signature"]

    def public_key(self) -> rsa.RSAPublicKey:
        if self._public_key is None:
            try:
                response = self._kms_client.get_public_key(KeyId=self.key_id)
            except ClientError as e:
                raise ValueError(f"Failed to get KMS public key: {_kms_error(e)}") from e
            public_key = load_der_public_key(response["PublicKey"])
            if not isinstance(public_key, rsa.RSAPublicKey):
                raise ValueError(f"KMS key {self.key_id} is not RSA")
            self._public_key = public_key
        return self._public_key

    def get_key_id(self) -> str:
        return self.key_id


def _kms_error(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "") or str(error)


def get_signer(settings: Optional[Settings] = None) -> Signer:
    """Get signer instance based on settings."""
    settings = settings or get_settings()
    provider = settings.signing_key_provider.lower()

    if provider == "local":
        return LocalSigner(settings.signing_key_path)
    if provider == "aws_kms":
        if not settings.signing_key_id:
            raise ValueError("SIGNING_KEY_ID required for AWS KMS")
        if not settings.aws_region:
            raise ValueError("AWS_REGION required for AWS KMS")
        return KmsSigner(settings.signing_key_id, settings.aws_region)
    raise ValueError(f"Unknown signing provider: {provider}")
