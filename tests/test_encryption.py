import base64
import json

import pytest
from django.core.exceptions import ImproperlyConfigured

from shop.encryption import (
    IV_LENGTH,
    TAG_LENGTH,
    CredentialsFormatError,
    EncryptionError,
    decrypt_credentials,
    encrypt_credentials,
    validate_credentials_format,
)


def test_encrypt_then_decrypt_returns_the_same_credentials():
    data = {"email": "user@ai.example", "password": "p@ssword"}
    assert decrypt_credentials(encrypt_credentials(data)) == data


def test_ciphertext_layout_is_iv_tag_then_body():
    data = {"email": "user@ai.example", "password": "secret"}
    raw = base64.b64decode(encrypt_credentials(data))
    assert len(raw) == IV_LENGTH + TAG_LENGTH + len(json.dumps(data).encode())


def test_same_plaintext_encrypts_differently_each_time():
    data = {"email": "user@ai.example", "password": "secret"}
    assert encrypt_credentials(data) != encrypt_credentials(data)


def test_tampered_ciphertext_is_rejected():
    raw = bytearray(base64.b64decode(encrypt_credentials({"email": "a@b.co", "password": "x"})))
    raw[-1] ^= 0x01
    with pytest.raises(EncryptionError, match="Failed to decrypt credentials"):
        decrypt_credentials(base64.b64encode(bytes(raw)).decode())


def test_garbage_input_is_rejected():
    with pytest.raises(EncryptionError):
        decrypt_credentials("not-base64!!")


def test_wrong_key_cannot_decrypt(settings):
    encrypted = encrypt_credentials({"email": "a@b.co", "password": "x"})
    settings.ENCRYPTION_KEY = "ff" * 32
    with pytest.raises(EncryptionError):
        decrypt_credentials(encrypted)


@pytest.mark.parametrize("key", ["", "abcd", "zz" * 32])
def test_invalid_key_is_a_configuration_error(settings, key):
    settings.ENCRYPTION_KEY = key
    with pytest.raises(ImproperlyConfigured):
        encrypt_credentials({"email": "a@b.co", "password": "x"})


def test_bulk_parser_skips_blank_lines_and_trims():
    text = "\n  one@ai.example : pw1 \n\ntwo@ai.example:pw2\n"
    assert validate_credentials_format(text) == [
        {"email": "one@ai.example", "password": "pw1"},
        {"email": "two@ai.example", "password": "pw2"},
    ]


def test_bulk_parser_reports_every_bad_line():
    text = "ok@ai.example:pw\nno-colon\nbad-email:pw\nx@ai.example:\na:b:c"
    with pytest.raises(CredentialsFormatError) as exc:
        validate_credentials_format(text)

    assert exc.value.errors == [
        'Line 2: Invalid format. Expected "email:password"',
        "Line 3: Invalid email format",
        "Line 4: Password cannot be empty",
        'Line 5: Invalid format. Expected "email:password"',
    ]
    assert str(exc.value).startswith("Validation errors:\nLine 2")
