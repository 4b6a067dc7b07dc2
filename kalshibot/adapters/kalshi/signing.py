from __future__ import annotations

import base64
import re
from pathlib import Path
from typing import Dict, Optional

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from kalshibot.core.errors import ConfigError


_BASE64_CHARS = re.compile(r"[^A-Za-z0-9+/=]")


def _extract_block(raw: str, label: str) -> Optional[str]:
    begin = f"-----BEGIN {label}-----"
    end = f"-----END {label}-----"
    start = raw.find(begin)
    stop = raw.find(end)
    if start < 0 or stop < 0 or stop < start:
        return None
    body = raw[start + len(begin):stop]
    data = _BASE64_CHARS.sub("", body)
    lines = [data[i:i + 64] for i in range(0, len(data), 64)]
    return "\n".join([begin, *lines, end])


def normalize_pem(raw: str) -> str:
    """Repair PEM text pasted into env vars: literal \\n, CRs, one-line bodies, stray chars."""
    pem = raw.strip().replace("\\n", "\n").replace("\r", "")
    for label in ("RSA PRIVATE KEY", "PRIVATE KEY"):
        block = _extract_block(pem, label)
        if block is not None:
            return block
    return pem


def load_private_key(pem: Optional[str] = None, path: Optional[str | Path] = None) -> rsa.RSAPrivateKey:
    """Load an RSA key from PEM text (PKCS#1 or PKCS#8) or from a file; PEM text wins."""
    if pem:
        source = "KALSHI_PRIVATE_KEY_PEM"
        text = pem
    elif path:
        source = f"KALSHI_PRIVATE_KEY_PATH ({path})"
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"failed to read private key at {path}: {e}") from e
    else:
        raise ConfigError("missing KALSHI_PRIVATE_KEY_PEM or KALSHI_PRIVATE_KEY_PATH")
    try:
        key = serialization.load_pem_private_key(normalize_pem(text).encode("ascii"), password=None)
    except (ValueError, TypeError, UnicodeEncodeError) as e:
        raise ConfigError(f"failed to parse {source} (PKCS#1 or PKCS#8): {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ConfigError(f"{source} is not an RSA private key")
    return key


class RequestSigner:
    def __init__(self, api_key: str, private_key: rsa.RSAPrivateKey):
        self.api_key = api_key
        self._key = private_key

    def sign(self, timestamp_ms: str, method: str, full_path: str) -> str:
        path = full_path.split("?", 1)[0]
        message = f"{timestamp_ms}{method.upper()}{path}".encode("utf-8")
        signature = self._key.sign(
            message,
            padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.DIGEST_LENGTH),
            hashes.SHA256(),
        )
        return base64.b64encode(signature).decode("ascii")

    def headers(self, timestamp_ms: str, method: str, full_path: str) -> Dict[str, str]:
        return {
            "KALSHI-ACCESS-KEY": self.api_key,
            "KALSHI-ACCESS-TIMESTAMP": timestamp_ms,
            "KALSHI-ACCESS-SIGNATURE": self.sign(timestamp_ms, method, full_path),
            "Content-Type": "application/json",
        }
