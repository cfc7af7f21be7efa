import pytest
from Crypto.Cipher import AES

from dotguard.crypto import (
    HEADER_SIZE,
    EncryptionManager,
    KdfParams,
    derive_key,
    decrypt_bytes,
    decrypt_file,
    encrypt_bytes,
    encrypt_file,
    encryption_overhead,
    is_encrypted_bytes,
    is_encrypted_file,
)
from dotguard.errors import DecryptionError, EncryptionError
from dotguard.settings import Settings

# Low scrypt cost keeps the suite fast; production uses the default params.
FAST = KdfParams(n=2 ** 4)
PASSWORD = "correct horse battery"


def test_round_trip_with_fresh_salt_and_nonce():
    data = b"export TOKEN=abc\n"
    first = encrypt_bytes(data, PASSWORD, FAST)
    second = encrypt_bytes(data, PASSWORD, FAST)

    assert first != second
    assert len(first) == len(data) + encryption_overhead() == len(data) + HEADER_SIZE
    assert HEADER_SIZE == 55
    assert is_encrypted_bytes(first)
    assert not is_encrypted_bytes(data)
    assert decrypt_bytes(first, PASSWORD, FAST) == data


def test_blob_layout_is_magic_salt_nonce_tag_ciphertext():
    data = b"layout check"
    blob = encrypt_bytes(data, PASSWORD, FAST)

    assert blob[:11] == b"DOTGD-ENC-1"
    salt, nonce, tag, ciphertext = blob[11:27], blob[27:39], blob[39:55], blob[55:]
    cipher = AES.new(derive_key(PASSWORD, salt, FAST), AES.MODE_GCM, nonce=nonce)
    assert cipher.decrypt_and_verify(ciphertext, tag) == data


def test_empty_plaintext():
    blob = encrypt_bytes(b"", PASSWORD, FAST)
    assert decrypt_bytes(blob, PASSWORD, FAST) == b""


def test_wrong_password_fails_generically():
    blob = encrypt_bytes(b"data", PASSWORD, FAST)
    with pytest.raises(DecryptionError) as excinfo:
        decrypt_bytes(blob, "wrong password", FAST)
    assert excinfo.value.message == DecryptionError.GENERIC_MESSAGE


@pytest.mark.parametrize("offset", [0, 11, 27, 39, 55, 60])
def test_any_flipped_bit_is_detected(offset):
    blob = bytearray(encrypt_bytes(b"0123456789abcdef", PASSWORD, FAST))
    blob[offset] ^= 0x01
    with pytest.raises(DecryptionError) as excinfo:
        decrypt_bytes(bytes(blob), PASSWORD, FAST)
    assert excinfo.value.message == DecryptionError.GENERIC_MESSAGE


def test_short_input_is_rejected():
    blob = encrypt_bytes(b"data", PASSWORD, FAST)
    with pytest.raises(DecryptionError):
        decrypt_bytes(blob[: HEADER_SIZE - 1], PASSWORD, FAST)
    with pytest.raises(DecryptionError):
        decrypt_bytes(b"", PASSWORD, FAST)


def test_file_helpers(tmp_path):
    src = tmp_path / "plain.txt"
    src.write_bytes(b"hello\n")
    enc = tmp_path / "plain.txt.enc"
    out = tmp_path / "out.txt"

    encrypt_file(src, enc, PASSWORD, FAST)
    assert is_encrypted_file(enc)
    assert not is_encrypted_file(src)
    assert not is_encrypted_file(tmp_path / "missing")

    decrypt_file(enc, out, PASSWORD, FAST)
    assert out.read_bytes() == b"hello\n"


def test_manager_setup_and_verify(repo):
    manager = EncryptionManager(repo, FAST)
    assert not manager.is_enabled()
    assert manager.verify("anything")

    with pytest.raises(EncryptionError):
        manager.setup("short")

    manager.setup(PASSWORD)
    assert manager.is_enabled()
    assert manager.verify(PASSWORD)
    assert not manager.verify("not the password")

    enc = Settings.load(manager.settings_file).encryption
    assert len(bytes.fromhex(enc.salt)) == 16
    assert PASSWORD not in manager.settings_file.read_text()


def test_manager_keeps_other_settings(repo):
    (repo / "dotguard.yml").write_text("tracking:\n  files: []\nsecurity:\n  min_severity: medium\n")
    EncryptionManager(repo, FAST).setup(PASSWORD)
    settings = Settings.for_repo(repo)
    assert settings.extra == {"tracking": {"files": []}}
    assert settings.security.min_severity.value == "medium"


def test_change_password(repo):
    manager = EncryptionManager(repo, FAST)
    manager.setup(PASSWORD)
    with pytest.raises(EncryptionError):
        manager.change_password("wrong password", "another password")
    manager.change_password(PASSWORD, "another password")
    assert manager.verify("another password")


def test_password_from_environment(repo, monkeypatch):
    manager = EncryptionManager(repo, FAST)
    manager.setup(PASSWORD)

    with pytest.raises(EncryptionError, match="No encryption password"):
        manager.get_password()

    monkeypatch.setenv("DOTGUARD_PASSWORD", "wrong password")
    with pytest.raises(EncryptionError):
        manager.get_password()

    monkeypatch.setenv("DOTGUARD_PASSWORD", PASSWORD)
    assert manager.get_password() == PASSWORD


def test_manager_file_round_trip(repo, tmp_path, monkeypatch):
    manager = EncryptionManager(repo, FAST)
    manager.setup(PASSWORD)
    src = tmp_path / "src"
    src.write_text("payload")

    with pytest.raises(EncryptionError):
        manager.encrypt_file(src, tmp_path / "enc", "wrong password")

    manager.encrypt_file(src, tmp_path / "enc", PASSWORD)
    monkeypatch.setenv("DOTGUARD_PASSWORD", PASSWORD)
    manager.decrypt_file(tmp_path / "enc", tmp_path / "dec")
    assert (tmp_path / "dec").read_text() == "payload"

    manager.disable()
    assert not manager.is_enabled()
