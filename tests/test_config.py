# Tests for VaultSettings

from pathlib import Path

import pytest

from personal_vault.config import DEFAULT_ROOT, VaultSettings


class TestVaultSettings:
    def test_defaults(self):
        s = VaultSettings()
        assert s.root == DEFAULT_ROOT
        assert s.scrypt_n == 2 ** 15
        assert s.thumbnail_size == 200
        assert s.thumbnail_quality == 70
        assert s.effective_audit_dir == DEFAULT_ROOT / "audit_logs"

    def test_audit_dir_override(self, tmp_path):
        s = VaultSettings(root=tmp_path, audit_dir=str(tmp_path / "logs"))
        assert s.effective_audit_dir == tmp_path / "logs"

    @pytest.mark.parametrize("n", [0, 1, 1000, 3])
    def test_scrypt_n_must_be_power_of_two(self, n):
        with pytest.raises(ValueError, match="power of two"):
            VaultSettings(scrypt_n=n)

    def test_tiny_thumbnail_rejected(self):
        with pytest.raises(ValueError):
            VaultSettings(thumbnail_size=8)


class TestFromEnv:
    def test_environment_variables(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PERSONAL_VAULT_ROOT", str(tmp_path / "v"))
        monkeypatch.setenv("PERSONAL_VAULT_SCRYPT_N", "1024")
        monkeypatch.setenv("PERSONAL_VAULT_THUMBNAIL_SIZE", "128")

        s = VaultSettings.from_env()
        assert s.root == tmp_path / "v"
        assert s.scrypt_n == 1024
        assert s.thumbnail_size == 128
        assert s.audit_dir is None

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            f"PERSONAL_VAULT_ROOT={tmp_path / 'from-file'}\n"
            f"PERSONAL_VAULT_AUDIT_DIR={tmp_path / 'audit'}\n"
            "PERSONAL_VAULT_MAX_DOCUMENT_BYTES=2048\n"
        )

        s = VaultSettings.from_env(str(env_file))
        assert s.root == tmp_path / "from-file"
        assert s.effective_audit_dir == tmp_path / "audit"
        assert s.max_document_bytes == 2048

    def test_environment_beats_env_file(self, monkeypatch, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("PERSONAL_VAULT_SCRYPT_N=2048\n")
        monkeypatch.setenv("PERSONAL_VAULT_SCRYPT_N", "4096")

        assert VaultSettings.from_env(str(env_file)).scrypt_n == 4096

    def test_bad_integer(self, monkeypatch):
        monkeypatch.setenv("PERSONAL_VAULT_SCRYPT_N", "lots")
        with pytest.raises(ValueError, match="PERSONAL_VAULT_SCRYPT_N"):
            VaultSettings.from_env()

    def test_default_root_when_unset(self):
        assert VaultSettings.from_env().root == Path(DEFAULT_ROOT).expanduser()
