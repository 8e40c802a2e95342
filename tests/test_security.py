"""Security tests: wrong passwords, tampering, truncation, and key material reuse."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import PASSWORD
from zencore.errors import (AuthenticationFailure, ContainerFormatError,
                            InvalidParameter)
from zencore.models import ArchiveJob, CipherSuite, CompressionAlgorithm
from zencore.pipeline import ArchivePipeline, VerifyStatus, read_archive

# Encrypted header: magic(4) version(1) codec(1) level(1) cipher(1) hash(1)
# salt_len(2) salt(16) nonce_len(2) nonce(12) kdf(9) chunk_size(4)
SALT_OFFSET = 11
LEVEL_OFFSET = 6
TIME_COST_LAST_BYTE = 44
CHUNK_SIZE_LAST_BYTE = 53
BODY_OFFSET = 54


def _restore(path: str, password: str | None = None) -> dict[str, bytes]:
    return {entry.relative_path: data.read() for entry, data in read_archive(path, password)}


@pytest.fixture(params=list(CipherSuite), ids=lambda s: s.label)
def encrypted_archive(request, pipeline: ArchivePipeline, sample_tree: Path, dest: Path) -> Path:
    job = ArchiveJob(str(sample_tree), str(dest), "locked", encrypt=True, cipher_suite=request.param)
    return Path(pipeline.backup(job, PASSWORD).record.file_path)


def _flip(path: Path, offset: int, mask: int = 0x01) -> None:
    data = bytearray(path.read_bytes())
    data[offset] ^= mask
    path.write_bytes(bytes(data))


class TestWrongPassword:
    @pytest.mark.parametrize(
        "password",
        ["wrong", PASSWORD[:-1], PASSWORD + " ", PASSWORD.upper()],
        ids=["different", "prefix", "trailing-space", "case"],
    )
    def test_rejected(self, encrypted_archive: Path, password: str) -> None:
        with pytest.raises(AuthenticationFailure):
            _restore(str(encrypted_archive), password)

    def test_no_entries_released_before_failure(self, encrypted_archive: Path) -> None:
        released = []
        with pytest.raises(AuthenticationFailure):
            for entry, _ in read_archive(str(encrypted_archive), "wrong"):
                released.append(entry)
        assert released == []

    def test_missing_password(self, encrypted_archive: Path) -> None:
        with pytest.raises(InvalidParameter, match="password"):
            _restore(str(encrypted_archive))


class TestTampering:
    @pytest.mark.parametrize(
        "offset, mask",
        [
            (LEVEL_OFFSET, 0x01),
            (SALT_OFFSET, 0x01),
            (TIME_COST_LAST_BYTE, 0x02),
            (CHUNK_SIZE_LAST_BYTE, 0x01),
        ],
        ids=["codec-level", "salt", "kdf-cost", "chunk-size"],
    )
    def test_header_edit_detected(self, encrypted_archive: Path, offset: int, mask: int) -> None:
        _flip(encrypted_archive, offset, mask)
        with pytest.raises(AuthenticationFailure):
            _restore(str(encrypted_archive), PASSWORD)

    @pytest.mark.parametrize("where", ["first-length", "first-frame", "middle", "last-byte"])
    def test_body_edit_detected(self, encrypted_archive: Path, where: str) -> None:
        size = encrypted_archive.stat().st_size
        offset = {
            "first-length": BODY_OFFSET + 1,
            "first-frame": BODY_OFFSET + 10,
            "middle": (BODY_OFFSET + size) // 2,
            "last-byte": size - 1,
        }[where]
        _flip(encrypted_archive, offset)
        with pytest.raises(AuthenticationFailure):
            _restore(str(encrypted_archive), PASSWORD)

    def test_truncated_archive(self, encrypted_archive: Path) -> None:
        data = encrypted_archive.read_bytes()
        encrypted_archive.write_bytes(data[:-10])
        with pytest.raises(AuthenticationFailure):
            _restore(str(encrypted_archive), PASSWORD)

    def test_appended_bytes(self, encrypted_archive: Path) -> None:
        with open(encrypted_archive, "ab") as f:
            f.write(b"\x00\x00\x00\x20" + b"\x00" * 32)
        with pytest.raises(AuthenticationFailure):
            _restore(str(encrypted_archive), PASSWORD)

    def test_tampering_also_fails_verify(self, pipeline: ArchivePipeline, encrypted_archive: Path) -> None:
        _flip(encrypted_archive, BODY_OFFSET + 10)
        assert pipeline.verify("locked").status is VerifyStatus.MISMATCH


class TestNotAnArchive:
    def test_random_file(self, tmp_path: Path) -> None:
        p = tmp_path / "random.zca"
        p.write_bytes(b"PK\x03\x04 this is a zip, not ours")
        with pytest.raises(ContainerFormatError):
            _restore(str(p))

    def test_empty_file(self, tmp_path: Path) -> None:
        p = tmp_path / "empty.zca"
        p.write_bytes(b"")
        with pytest.raises(ContainerFormatError):
            _restore(str(p))


class TestKeyMaterial:
    def test_salt_and_nonce_unique_per_archive(self, pipeline: ArchivePipeline, sample_tree: Path,
                                               dest: Path) -> None:
        records = [
            pipeline.backup(
                ArchiveJob(str(sample_tree), str(dest), "same", encrypt=True,
                           cipher_suite=CipherSuite.AES_256_GCM),
                PASSWORD,
            ).record
            for _ in range(4)
        ]
        assert len({r.salt for r in records}) == 4
        assert len({r.nonce for r in records}) == 4

    def test_same_input_different_ciphertext(self, pipeline: ArchivePipeline, sample_tree: Path,
                                             dest: Path) -> None:
        job = ArchiveJob(str(sample_tree), str(dest), "det", compression_algorithm=CompressionAlgorithm.STORE,
                         encrypt=True, cipher_suite=CipherSuite.CHACHA20_POLY1305)
        a = pipeline.backup(job, PASSWORD).record
        b = pipeline.backup(job, PASSWORD).record
        assert a.hash_value != b.hash_value

    def test_password_never_persisted(self, pipeline: ArchivePipeline, sample_tree: Path,
                                      dest: Path, state_path: Path) -> None:
        job = ArchiveJob(str(sample_tree), str(dest), "pw", encrypt=True,
                         cipher_suite=CipherSuite.AES_256_GCM)
        record = pipeline.backup(job, PASSWORD).record
        assert PASSWORD not in state_path.read_text()
        assert PASSWORD.encode() not in Path(record.file_path).read_bytes()
