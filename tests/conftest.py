"""Shared fixtures for the zencore test suite."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from zencore.cipher import KdfParams
from zencore.pipeline import ArchivePipeline
from zencore.state import StateStore

# ── Reusable constants ───────────────────────────────────────────────────────

PASSWORD = "t3st-P@ssw0rd!#"
UNICODE_PASSWORD = "пароль_密码_κωδ_🔑"  # Cyrillic + CJK + Greek + emoji

# Argon2id at its minimum legal cost keeps the suite fast.
FAST_KDF = KdfParams(time_cost=1, memory_cost=8, parallelism=1)
SMALL_CHUNK = 4096


# ── Directory tree fixtures ──────────────────────────────────────────────────

@pytest.fixture()
def sample_tree(tmp_path: Path) -> Path:
    """Create a non-trivial directory tree for round-trip tests.

    Layout::

        source/
        ├── hello.txt          (text, ~1.4 KiB)
        ├── empty.txt          (0 bytes)
        ├── binary.bin         (random 20 KiB)
        ├── subdir/
        │   ├── data.bin       (random 4 KiB)
        │   └── deeper/
        │       └── note.md
        └── empty_dir/
    """
    root = tmp_path / "source"
    root.mkdir()
    (root / "hello.txt").write_text("Hello, World!\n" * 100)
    (root / "empty.txt").write_bytes(b"")
    (root / "binary.bin").write_bytes(os.urandom(20 * 1024))
    sub = root / "subdir"
    sub.mkdir()
    (sub / "data.bin").write_bytes(os.urandom(4096))
    deeper = sub / "deeper"
    deeper.mkdir()
    (deeper / "note.md").write_text("# notes\n")
    (root / "empty_dir").mkdir()
    return root


@pytest.fixture()
def unicode_tree(tmp_path: Path) -> Path:
    """Directory tree with unicode names and content."""
    root = tmp_path / "юнікод_源"
    root.mkdir()
    (root / "файл_文件.txt").write_text("Привіт 你好 🌍\n" * 50, encoding="utf-8")
    sub = root / "підкаталог_子目录"
    sub.mkdir()
    (sub / "δεδομένα.bin").write_bytes(os.urandom(1024))
    return root


@pytest.fixture()
def music_tree(tmp_path: Path) -> Path:
    """Two readable tracks plus one that cannot be read.

    ``c.mp3`` is a dangling symlink so it stays unreadable even when the
    suite runs as root.
    """
    root = tmp_path / "music"
    root.mkdir()
    (root / "a.mp3").write_bytes(os.urandom(4 * 1024 * 1024))
    (root / "b.mp3").write_bytes(os.urandom(3 * 1024 * 1024))
    os.symlink(root / "missing-target.mp3", root / "c.mp3")
    return root


# ── Store / pipeline fixtures ────────────────────────────────────────────────

@pytest.fixture()
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "archives.json"


@pytest.fixture()
def store(state_path: Path) -> StateStore:
    return StateStore.load(state_path)


@pytest.fixture()
def dest(tmp_path: Path) -> Path:
    d = tmp_path / "backups"
    d.mkdir()
    return d


@pytest.fixture()
def pipeline(store: StateStore) -> ArchivePipeline:
    return ArchivePipeline(store, kdf_params=FAST_KDF, chunk_size=SMALL_CHUNK, thread_count=2)


def read_tree(root: Path) -> dict[str, bytes]:
    """Map of POSIX relative path → bytes for every regular file under *root*."""
    out: dict[str, bytes] = {}
    for path in root.rglob("*"):
        if path.is_file() and not path.is_symlink():
            out[path.relative_to(root).as_posix()] = path.read_bytes()
    return out
