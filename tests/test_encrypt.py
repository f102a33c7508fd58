"""Tests for pdfinject.core.pdf.encrypt -- standard security handler."""

import hashlib
import re

import pytest
from tlslite.utils.cipherfactory import createAES

from pdfinject.core.pdf import parse_document, split_stream, stream_payload
from pdfinject.core.pdf.encrypt import Permission, ProtectionConfig, SecurityHandler, encrypt_strings
from pdfinject.errors import MalformedDocumentError, ProtectionError

PAD = bytes.fromhex("28bf4e5e4e758a4164004e56fffa01082e2e00b6d0683e802f0ca9fe6453697a")


def _handler(algorithm="rc4", permissions=0):
    return SecurityHandler(ProtectionConfig.create(permissions, "u", "o", algorithm))


def _identity(data):
    return data


# ── ProtectionConfig ────────────────────────────────────────────────


def test_permission_values():
    assert Permission.PRINT == 4
    assert Permission.MODIFY == 8
    assert Permission.COPY == 16
    assert Permission.ANNOTATE == 32
    assert Permission.PRINT_HIGH_QUALITY == 2048


def test_all_permissions_allowed():
    every = 0
    for flag in Permission:
        every |= flag
    config = ProtectionConfig.create(every, "", "owner")
    assert config.permissions == 0xF3C


@pytest.mark.parametrize("permissions", [1, 2, 64, 0x1000, -4])
def test_reserved_permission_bits_rejected(permissions):
    with pytest.raises(ProtectionError, match="reserved bits"):
        ProtectionConfig.create(permissions, "u", "o")


def test_non_integer_permissions_rejected():
    with pytest.raises(ProtectionError, match="integer"):
        ProtectionConfig.create(True, "u", "o")


def test_non_latin1_password_rejected():
    with pytest.raises(ProtectionError, match="user password"):
        ProtectionConfig.create(0, "пароль", "o")
    with pytest.raises(ProtectionError, match="owner password"):
        ProtectionConfig.create(0, "u", "密码")


def test_unknown_algorithm_rejected():
    with pytest.raises(ProtectionError, match="Unknown encryption algorithm"):
        ProtectionConfig.create(0, "u", "o", "des")


def test_algorithm_is_normalized():
    assert ProtectionConfig.create(0, "u", "o", " AES ").algorithm == "aes"


@pytest.mark.parametrize(
    ("permissions", "expected"),
    [(0, -3904), (Permission.PRINT, -3900), (0xF3C, -4)],
)
def test_p_value_is_signed_with_reserved_bits(permissions, expected):
    assert ProtectionConfig.create(permissions, "u", "o").p_value == expected


# ── Key material ────────────────────────────────────────────────────


def test_key_material_sizes():
    handler = _handler()
    assert len(handler.key) == 16
    assert len(handler.o_value) == 32
    assert len(handler.u_value) == 32
    assert handler.u_value[16:] == PAD[:16]


def test_key_depends_on_passwords():
    a = SecurityHandler(ProtectionConfig.create(0, "u", "o"))
    b = SecurityHandler(ProtectionConfig.create(0, "u", "other"))
    c = SecurityHandler(ProtectionConfig.create(0, "x", "o"))
    assert a.o_value != b.o_value
    assert a.key != c.key


def test_key_derivation_is_deterministic():
    assert _handler().key == _handler().key
    assert _handler().u_value == _handler().u_value


def test_empty_owner_password_uses_user_password():
    a = SecurityHandler(ProtectionConfig.create(0, "u", ""))
    b = SecurityHandler(ProtectionConfig.create(0, "u", "u"))
    assert a.o_value == b.o_value


def test_object_keys_differ_per_object_and_algorithm():
    rc4 = _handler("rc4")
    aes = _handler("aes")
    assert rc4.object_key(1) != rc4.object_key(2)
    assert len(rc4.object_key(1)) == 16
    # Same document key; AES salts the per-object key
    assert rc4.key == aes.key
    assert rc4.object_key(1) != aes.object_key(1)


def test_object_key_is_full_md5_digest():
    handler = _handler("aes")
    seed = handler.key + bytes([0x12, 0x34, 0x01, 0, 0]) + b"sAlT"
    assert handler.object_key(0x13412) == hashlib.md5(seed).digest()


# ── Ciphers ─────────────────────────────────────────────────────────


def test_rc4_is_symmetric():
    handler = _handler("rc4")
    plain = b"Hello, encrypted world"
    cipher = handler.encrypt_bytes(7, plain)
    assert cipher != plain
    assert len(cipher) == len(plain)
    assert handler.encrypt_bytes(7, cipher) == plain


def test_aes_prepends_iv_and_pads():
    handler = _handler("aes")
    plain = b"exactly sixteen!"
    cipher = handler.encrypt_bytes(3, plain)
    assert len(cipher) == 16 + 32  # IV + data + full padding block

    iv, body = cipher[:16], cipher[16:]
    decrypted = bytes(createAES(bytearray(handler.object_key(3)), bytearray(iv)).decrypt(bytearray(body)))
    assert decrypted == plain + bytes([16]) * 16


def test_aes_uses_fresh_iv():
    handler = _handler("aes")
    assert handler.encrypt_bytes(1, b"same") != handler.encrypt_bytes(1, b"same")


# ── String scanning ─────────────────────────────────────────────────


def test_encrypt_strings_literal_escapes():
    out = encrypt_strings(rb"<< /T (a\)b\(c\\d\n) >>", _identity)
    assert out == b"<< /T <61296228635c640a> >>"


def test_encrypt_strings_nested_parentheses():
    out = encrypt_strings(b"[(a(b)c)]", _identity)
    assert out == b"[<61286229" + b"63>]"


def test_encrypt_strings_octal_escape():
    assert encrypt_strings(rb"(\101\0)", _identity) == b"<4100>"


def test_encrypt_strings_hex_with_whitespace_and_odd_length():
    assert encrypt_strings(b"<< /ID <AB CD E> >>", _identity) == b"<< /ID <abcde0> >>"


def test_encrypt_strings_leaves_dictionaries_and_names():
    src = b"<< /Type /Font /Widths [1 2 3] /Sub << /K true >> >>"
    assert encrypt_strings(src, _identity) == src


def test_encrypt_strings_skips_comments():
    src = b"<< /A 1 % comment with (parens)\n/B (x) >>"
    out = encrypt_strings(src, lambda data: b"Z")
    assert b"% comment with (parens)\n" in out
    assert out.endswith(b"/B <5a> >>")


def test_encrypt_strings_unterminated():
    with pytest.raises(MalformedDocumentError, match="Unterminated literal"):
        encrypt_strings(b"(never closed", _identity)
    with pytest.raises(MalformedDocumentError, match="Unterminated hex"):
        encrypt_strings(b"<abc", _identity)


# ── Payload encryption ──────────────────────────────────────────────


def test_encrypt_payload_stream_rewrites_length():
    handler = _handler("aes")
    payload = stream_payload("/Filter /FlateDecode", b"0123456789")
    out = handler.encrypt_payload(5, payload)
    parts = split_stream(out)
    assert len(parts.data) == 32  # IV + one padded block
    assert re.search(rb"/Length 32\b", parts.head)


def test_encrypt_payload_without_strings_is_unchanged():
    handler = _handler()
    assert handler.encrypt_payload(1, b"<< /Type /Catalog /Pages 2 0 R >>") == b"<< /Type /Catalog /Pages 2 0 R >>"


def _carries_strings_or_streams(payload):
    parts = split_stream(payload)
    if parts is not None and parts.data:
        return True
    return re.search(rb"\([^)]|<[0-9A-Fa-f]", payload) is not None


@pytest.mark.parametrize("algorithm", ["rc4", "aes"])
def test_every_string_or_stream_object_changes(multi_page_pdf_bytes, algorithm):
    doc = parse_document(multi_page_pdf_bytes)
    handler = _handler(algorithm)
    checked = 0
    for obj in doc:
        if _carries_strings_or_streams(obj.payload):
            assert handler.encrypt_payload(obj.obj_num, obj.payload) != obj.payload
            checked += 1
    assert checked >= 2  # the page content stream and /Info


# ── Encrypt dictionary ──────────────────────────────────────────────


def test_rc4_encryption_dict():
    text = _handler("rc4").encryption_dict().decode()
    assert "/Filter /Standard" in text
    assert "/V 2" in text
    assert "/R 3" in text
    assert "/Length 128" in text
    assert "/P -3904" in text
    assert "/CF" not in text


def test_aes_encryption_dict():
    text = _handler("aes").encryption_dict().decode()
    assert "/V 4" in text
    assert "/R 4" in text
    assert "/CFM /AESV2" in text
    assert "/StmF /StdCF" in text
    assert "/StrF /StdCF" in text
