"""Sparkle update signatures (EdDSA, or legacy DSA)"""

import base64
import binascii
import hashlib
from dataclasses import dataclass
from pathlib import Path

from nacl.signing import SigningKey as Ed25519SigningKey  # type: ignore[import]

from .errors import CommandError, ConfigError
from .process import CommandRunner

ED25519 = "ed25519"
DSA = "dsa"

ED25519_SEED_BYTES = 32

# Appcast enclosure attribute per scheme
SIGNATURE_ATTRIBUTES = {ED25519: "edSignature", DSA: "dsaSignature"}


@dataclass(frozen=True)
class SigningKey:
    scheme: str
    path: Path

    @classmethod
    def load(cls, path: Path) -> "SigningKey":
        """Pick the scheme from the key material: PEM is DSA, a base64 seed is EdDSA"""
        if not path.exists():
            raise ConfigError(f"Signing key not found: {path}", stage="appcast")
        data = path.read_bytes().strip()
        if data.startswith(b"-----BEGIN"):
            if b"OPENSSH" in data or b"EC PRIVATE" in data or b"RSA PRIVATE" in data:
                raise ConfigError(f"Unsupported PEM key type in {path}", stage="appcast")
            return cls(DSA, path)
        _decode_seed(data, path)
        return cls(ED25519, path)

    def sign(self, artifact: Path, runner: CommandRunner) -> str:
        if self.scheme == ED25519:
            return sign_ed25519(artifact, self.path)
        return sign_dsa(artifact, self.path, runner)


def _decode_seed(data: bytes, path: Path) -> bytes:
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigError(f"{path} is neither a PEM DSA key nor a base64 EdDSA key", stage="appcast") from e
    # Sparkle exports either the 32-byte seed or seed + public key
    if len(raw) not in (ED25519_SEED_BYTES, ED25519_SEED_BYTES * 2):
        raise ConfigError(
            f"{path} decodes to {len(raw)} bytes; expected an Ed25519 seed", stage="appcast"
        )
    return raw[:ED25519_SEED_BYTES]


def sign_ed25519(artifact: Path, key_path: Path) -> str:
    seed = _decode_seed(key_path.read_bytes().strip(), key_path)
    signed = Ed25519SigningKey(seed).sign(artifact.read_bytes())
    return base64.b64encode(signed.signature).decode("ascii")


def sign_dsa(artifact: Path, key_path: Path, runner: CommandRunner) -> str:
    """Sparkle's legacy scheme: DSA over the SHA-1 of the SHA-1 digest"""
    digest = hashlib.sha1()
    with open(artifact, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(chunk)
    try:
        result = runner.run(
            ["openssl", "dgst", "-sha1", "-sign", str(key_path)],
            input=digest.digest(),
            text=False,
            show_output=False,
        )
    except CommandError as e:
        raise ConfigError(
            f"DSA signing failed: {e.output.strip() or e.message}",
            stage="appcast",
            remediation="Check the key with: openssl dsa -in <key> -noout",
        ) from e
    return base64.b64encode(result.stdout).decode("ascii")
