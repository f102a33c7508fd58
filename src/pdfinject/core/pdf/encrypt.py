"""PDF standard security handler (password protection).

Derives the document key, the /O and /U entries and per-object keys as
described in ISO 32000-1 S7.6.3 (Algorithms 1, 2, 3 and 5), and encrypts
the strings and stream data inside raw object payloads.

Two 128-bit variants are supported:
  - ``"rc4"``: /V 2 /R 3, RC4 on every string and stream.
  - ``"aes"``: /V 4 /R 4 with the /StdCF crypt filter using AESV2.

Cipher primitives come from tlslite-ng; hashing is hashlib's MD5, which
the standard mandates.
"""

from __future__ import annotations

import enum
import hashlib
import logging
import os
import re
from dataclasses import dataclass

from tlslite.utils.cipherfactory import createAES, createRC4

from ...errors import MalformedDocumentError, ProtectionError
from .objects import join_stream, split_stream

_logger = logging.getLogger(__name__)

__all__ = [
    "ALGORITHMS",
    "Permission",
    "ProtectionConfig",
    "SecurityHandler",
    "encrypt_strings",
]


class Permission(enum.IntFlag):
    """User access permission bits (ISO 32000-1 Table 22)."""

    PRINT = 4
    MODIFY = 8
    COPY = 16
    ANNOTATE = 32
    FILL_FORMS = 256
    EXTRACT_ACCESSIBILITY = 512
    ASSEMBLE = 1024
    PRINT_HIGH_QUALITY = 2048


# Bits a caller may set; all others are reserved by the standard
_PERMISSION_MASK = 0xF3C
# Reserved bits 7-8 and 13-32 must be 1; bits 1-2 must be 0
_RESERVED_ONES = 0xFFFFF0C0

# Algorithm 2 step (a): the fixed 32-byte password padding string
_PASSWORD_PAD = bytes.fromhex(
    "28bf4e5e4e758a4164004e56fffa01082e2e00b6d0683e802f0ca9fe6453697a"
)

_KEY_LENGTH = 16  # 128-bit
_AES_BLOCK = 16
_MD5_ITERATIONS = 50
_RC4_ITERATIONS = 19

ALGORITHMS = ("rc4", "aes")


@dataclass(frozen=True)
class ProtectionConfig:
    """Validated protection parameters.

    Attributes:
        permissions: Bitwise OR of :class:`Permission` values (0 = nothing allowed).
        user_password: Password needed to open the document (may be empty).
        owner_password: Password granting full access; the user password is
            used when empty.
        algorithm: ``"rc4"`` or ``"aes"``.
    """

    permissions: int
    user_password: bytes
    owner_password: bytes
    algorithm: str = "rc4"

    @classmethod
    def create(
        cls,
        permissions: int,
        user_password: str | bytes,
        owner_password: str | bytes,
        algorithm: str = "rc4",
    ) -> ProtectionConfig:
        """Validate caller input and build a config.

        Raises:
            ProtectionError: On reserved permission bits, passwords that are
                not Latin-1 encodable, or an unknown algorithm.
        """
        if isinstance(permissions, bool) or not isinstance(permissions, int):
            raise ProtectionError(f"Permission bits must be an integer, got {permissions!r}")
        if permissions < 0 or permissions & ~_PERMISSION_MASK:
            raise ProtectionError(
                f"Permission bits {permissions:#x} set reserved bits "
                f"(allowed mask {_PERMISSION_MASK:#x})"
            )
        algorithm = algorithm.lower().strip()
        if algorithm not in ALGORITHMS:
            raise ProtectionError(
                f"Unknown encryption algorithm {algorithm!r}. Valid: {', '.join(ALGORITHMS)}"
            )
        return cls(
            permissions=permissions,
            user_password=_password_bytes(user_password, "user"),
            owner_password=_password_bytes(owner_password, "owner"),
            algorithm=algorithm,
        )

    @property
    def p_value(self) -> int:
        """The signed 32-bit /P entry."""
        p = (self.permissions | _RESERVED_ONES) & 0xFFFFFFFF
        return p - (1 << 32) if p >= (1 << 31) else p


def _password_bytes(password: str | bytes, which: str) -> bytes:
    if isinstance(password, bytes):
        return password
    try:
        return password.encode("latin-1")
    except UnicodeEncodeError as exc:
        raise ProtectionError(f"The {which} password must be Latin-1 encodable.") from exc


def _pad(password: bytes) -> bytes:
    return (password + _PASSWORD_PAD)[:32]


def _rc4(key: bytes, data: bytes) -> bytes:
    cipher = createRC4(bytearray(key), bytearray())
    return bytes(cipher.encrypt(bytearray(data)))


def _aes_cbc(key: bytes, data: bytes, iv: bytes | None = None) -> bytes:
    """AES-128-CBC with PKCS#5 padding; the IV is prepended to the output."""
    if iv is None:
        iv = os.urandom(_AES_BLOCK)
    pad_len = _AES_BLOCK - len(data) % _AES_BLOCK
    padded = data + bytes([pad_len]) * pad_len
    cipher = createAES(bytearray(key), bytearray(iv))
    return iv + bytes(cipher.encrypt(bytearray(padded)))


def _xor_key(key: bytes, value: int) -> bytes:
    return bytes(b ^ value for b in key)


class SecurityHandler:
    """Key material for one save operation.

    Derived once from a :class:`ProtectionConfig` and the file identifier
    (the first /ID element) and held for the lifetime of the save.
    """

    def __init__(self, config: ProtectionConfig, file_id: bytes = b""):
        self.config = config
        self.file_id = file_id
        self.revision = 4 if config.algorithm == "aes" else 3
        self.o_value = self._compute_o()
        self.key = self._compute_key()
        self.u_value = self._compute_u()
        _logger.debug("Derived %d-bit %s document key (R%d)", _KEY_LENGTH * 8, config.algorithm, self.revision)

    # ── Algorithm 3: owner password entry ────────────────────────────

    def _compute_o(self) -> bytes:
        owner = self.config.owner_password or self.config.user_password
        digest = hashlib.md5(_pad(owner)).digest()
        for _ in range(_MD5_ITERATIONS):
            digest = hashlib.md5(digest).digest()
        rc4_key = digest[:_KEY_LENGTH]
        result = _rc4(rc4_key, _pad(self.config.user_password))
        for i in range(1, _RC4_ITERATIONS + 1):
            result = _rc4(_xor_key(rc4_key, i), result)
        return result

    # ── Algorithm 2: document encryption key ─────────────────────────

    def _compute_key(self) -> bytes:
        h = hashlib.md5()
        h.update(_pad(self.config.user_password))
        h.update(self.o_value)
        h.update((self.config.p_value & 0xFFFFFFFF).to_bytes(4, "little"))
        h.update(self.file_id)
        digest = h.digest()
        for _ in range(_MD5_ITERATIONS):
            digest = hashlib.md5(digest[:_KEY_LENGTH]).digest()
        return digest[:_KEY_LENGTH]

    # ── Algorithm 5: user password entry (R3 and later) ──────────────

    def _compute_u(self) -> bytes:
        digest = hashlib.md5(_PASSWORD_PAD + self.file_id).digest()
        result = _rc4(self.key, digest)
        for i in range(1, _RC4_ITERATIONS + 1):
            result = _rc4(_xor_key(self.key, i), result)
        # The last 16 bytes are arbitrary padding
        return result + _PASSWORD_PAD[:16]

    # ── Algorithm 1: per-object keys ─────────────────────────────────

    def object_key(self, obj_num: int, generation: int = 0) -> bytes:
        h = hashlib.md5()
        h.update(self.key)
        h.update(obj_num.to_bytes(4, "little")[:3])
        h.update(generation.to_bytes(2, "little"))
        if self.config.algorithm == "aes":
            h.update(b"sAlT")
        # n + 5 bytes, capped at 16; always 16 for a 128-bit key
        return h.digest()[:16]

    def encrypt_bytes(self, obj_num: int, data: bytes) -> bytes:
        key = self.object_key(obj_num)
        if self.config.algorithm == "aes":
            return _aes_cbc(key, data)
        return _rc4(key, data)

    def encrypt_payload(self, obj_num: int, payload: bytes) -> bytes:
        """Encrypt every string and the stream data of one object payload."""

        def _encrypt(data: bytes) -> bytes:
            return self.encrypt_bytes(obj_num, data)

        parts = split_stream(payload)
        if parts is None:
            return encrypt_strings(payload, _encrypt)
        head = encrypt_strings(parts.head, _encrypt)
        return join_stream(head, _encrypt(parts.data), parts.tail)

    def encryption_dict(self) -> bytes:
        """The /Encrypt dictionary payload."""
        entries = [
            "/Filter /Standard",
            f"/Length {_KEY_LENGTH * 8}",
            f"/O <{self.o_value.hex()}>",
            f"/U <{self.u_value.hex()}>",
            f"/P {self.config.p_value}",
        ]
        if self.config.algorithm == "aes":
            entries[1:1] = [
                "/V 4",
                "/R 4",
                f"/CF << /StdCF << /CFM /AESV2 /AuthEvent /DocOpen /Length {_KEY_LENGTH} >> >>",
                "/StmF /StdCF",
                "/StrF /StdCF",
            ]
        else:
            entries[1:1] = ["/V 2", "/R 3"]
        body = "\n".join(f"  {entry}" for entry in entries)
        return f"<<\n{body}\n>>".encode("latin-1")


# ── String scanning ──────────────────────────────────────────────────

_ESCAPES = {
    ord("n"): b"\n",
    ord("r"): b"\r",
    ord("t"): b"\t",
    ord("b"): b"\b",
    ord("f"): b"\f",
    ord("("): b"(",
    ord(")"): b")",
    ord("\\"): b"\\",
}
_OCTAL = re.compile(rb"[0-7]{1,3}")
_WHITESPACE = re.compile(rb"\s+")


def _read_literal(data: bytes, start: int) -> tuple[bytes, int]:
    """Decode the literal string opening at ``data[start] == b"("``.

    Returns (decoded bytes, index just past the closing parenthesis).
    """
    out = bytearray()
    depth = 1
    i = start + 1
    n = len(data)
    while i < n:
        c = data[i]
        if c == 0x5C:  # backslash
            i += 1
            if i >= n:
                break
            esc = data[i]
            if esc in _ESCAPES:
                out += _ESCAPES[esc]
                i += 1
            elif esc == 0x0D:  # line continuation, CR or CRLF
                i += 2 if data[i + 1 : i + 2] == b"\n" else 1
            elif esc == 0x0A:
                i += 1
            else:
                m = _OCTAL.match(data, i)
                if m:
                    out.append(int(m.group(0), 8) & 0xFF)
                    i = m.end()
                else:
                    out.append(esc)  # unknown escape: backslash is dropped
                    i += 1
            continue
        if c == 0x28:
            depth += 1
        elif c == 0x29:
            depth -= 1
            if depth == 0:
                return bytes(out), i + 1
        if c == 0x0D:  # unescaped EOL in a literal string reads as \n
            out += b"\n"
            i += 2 if data[i + 1 : i + 2] == b"\n" else 1
            continue
        out.append(c)
        i += 1
    raise MalformedDocumentError("Unterminated literal string in object.")


def encrypt_strings(data: bytes, encrypt) -> bytes:
    """Replace every literal and hex string in ``data`` with its encryption.

    Encrypted strings are re-emitted as hex strings.  Comments and
    dictionary delimiters are copied unchanged.
    """
    out = bytearray()
    i = 0
    n = len(data)
    while i < n:
        c = data[i]
        if c == 0x25:  # '%' comment runs to end of line
            j = i
            while j < n and data[j] not in b"\r\n":
                j += 1
            out += data[i:j]
            i = j
        elif c == 0x28:  # '('
            raw, i = _read_literal(data, i)
            out += b"<" + encrypt(raw).hex().encode("ascii") + b">"
        elif c == 0x3C:  # '<'
            if data[i + 1 : i + 2] == b"<":
                out += b"<<"
                i += 2
                continue
            j = data.find(b">", i)
            if j == -1:
                raise MalformedDocumentError("Unterminated hex string in object.")
            digits = _WHITESPACE.sub(b"", data[i + 1 : j])
            if len(digits) % 2:
                digits += b"0"
            try:
                raw = bytes.fromhex(digits.decode("ascii"))
            except ValueError as exc:
                raise MalformedDocumentError(f"Invalid hex string: {digits[:40]!r}") from exc
            out += b"<" + encrypt(raw).hex().encode("ascii") + b">"
            i = j + 1
        else:
            out.append(c)
            i += 1
    return bytes(out)
