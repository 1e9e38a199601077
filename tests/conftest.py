"""
Shared pytest fixtures for the Personal Vault test suite.

Autouse fixtures below isolate tests from the live user data:
  - Environment     -> PERSONAL_VAULT_* cleared   (a developer's .env never leaks in)
  - Audit logger    -> temp directory             (no test events in the real trail)

scrypt runs with a small cost parameter so key derivation stays fast.
"""

import base64
import io

import pytest

PASSWORD = "correct horse battery staple"
FAST_SCRYPT_N = 2 ** 10


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    """Remove PERSONAL_VAULT_* variables and stop .env discovery."""
    import os

    import personal_vault.config as config_mod

    for name in list(os.environ):
        if name.startswith("PERSONAL_VAULT_"):
            monkeypatch.delenv(name, raising=False)

    orig_load = config_mod.load_dotenv

    def patched_load(dotenv_path=None, override=False):
        # Only explicit files; never walk up from the test directory
        if dotenv_path is None:
            return False
        return orig_load(dotenv_path, override=override)

    monkeypatch.setattr(config_mod, "load_dotenv", patched_load)

    yield

    # load_dotenv writes straight into os.environ
    for name in list(os.environ):
        if name.startswith("PERSONAL_VAULT_"):
            del os.environ[name]


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect any AuditLogger() without an explicit log_dir to a temp directory.

    Without this, a test that builds an AuditLogger with the default
    directory writes into ./audit_logs/ of whatever cwd pytest runs in.
    """
    import personal_vault.core.audit_log as audit_mod

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)


@pytest.fixture
def settings(tmp_path):
    """Settings for a fresh vault under tmp_path with fast key derivation."""
    from personal_vault.config import VaultSettings

    return VaultSettings(
        root=tmp_path / "vault",
        audit_dir=tmp_path / "audit_logs",
        scrypt_n=FAST_SCRYPT_N,
    )


@pytest.fixture
def storage(settings):
    from personal_vault.vault.storage import FileStorage

    return FileStorage(settings.root)


@pytest.fixture
def key_manager(storage, settings):
    from personal_vault.vault.key_manager import KeyManager

    return KeyManager(storage, settings)


@pytest.fixture
def session():
    """An unlocked session with a random key (no salt record involved)."""
    import os

    from personal_vault.vault.key_manager import VaultSession

    s = VaultSession(bytearray(os.urandom(32)))
    yield s
    s.lock()


@pytest.fixture
def vault(settings):
    """A Vault for tmp_path that the test still has to create() or unlock()."""
    from personal_vault.vault import Vault

    v = Vault(settings=settings)
    yield v
    v.close()


def make_png(width=640, height=480, color=(200, 30, 30), mode="RGB") -> bytes:
    from PIL import Image

    img = Image.new(mode, (width, height), color)
    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


def to_data_url(mime_type: str, raw: bytes) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(raw).decode('ascii')}"


async def write_legacy_salt_record(key_manager, password, with_verifier=True) -> bytearray:
    """Write a pre-wrapping salt record; the password-derived key is the data key."""
    from personal_vault.vault.encryption import EncryptionService
    from personal_vault.vault.key_manager import SaltRecord

    settings = key_manager.settings
    record = SaltRecord(
        salt=EncryptionService.generate_salt(),
        kdf_params={"n": settings.scrypt_n, "r": settings.scrypt_r, "p": settings.scrypt_p},
        version=2,
    )
    key = await key_manager.derive(password, record)
    if with_verifier:
        record.verifier = EncryptionService.seal_bytes(key_manager.CANARY_PLAINTEXT, key)
    key_manager.write_salt_record(record)
    return key
