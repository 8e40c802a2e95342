#!/usr/bin/env python3
"""Command-line front end for zencore backups.

Examples
--------
Back up a directory (Zstandard, BLAKE3)::

    $ zencore backup ~/Music -d /mnt/backups -n music -v

Encrypted backup with ChaCha20-Poly1305::

    $ zencore backup ~/Music -d /mnt/backups --encrypt --cipher chacha20

Query the index::

    $ zencore list
    $ zencore show music
    $ zencore verify music
    $ zencore contents /mnt/backups/music.zca

Exit status: 0 success, 1 job failure, 2 usage error, 3 verification
mismatch, 4 archive not found.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from getpass import getpass
from pathlib import Path

from zencore.cipher import DEFAULT_CHUNK_SIZE
from zencore.config import Settings
from zencore.container import read_header
from zencore.errors import ArchiveNotFound, ZencoreError
from zencore.models import (ArchiveJob, CipherSuite, CompressionAlgorithm,
                            HashAlgorithm)
from zencore.pipeline import (ArchivePipeline, PipelineStage, VerifyStatus,
                              list_archive)
from zencore.state import StateStore

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_MISMATCH = 3
EXIT_NOT_FOUND = 4

# ── Progress reporting ───────────────────────────────────────────────────────

def _format_size(size_bytes: int | float) -> str:
    """Format *size_bytes* with an appropriate binary unit (B … TiB)."""
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if abs(size_bytes) < 1024:
            return f"{size_bytes:.1f} {unit}" if unit != "B" else f"{int(size_bytes)} B"
        size_bytes /= 1024
    return f"{size_bytes:.1f} PiB"


def _progress_bar(current: int, total: int, label: str) -> None:
    """Print ``label: |████░░░░| pct% (cur/tot)`` to stderr."""
    if total <= 0:
        return
    pct = min(current / total, 1.0) * 100
    width = 40
    filled = min(width, int(width * current // total))
    bar = "█" * filled + "░" * (width - filled)
    print(
        f"\r{label}: |{bar}| {pct:5.1f}% ({_format_size(current)}/{_format_size(total)})",
        end="",
        flush=True,
        file=sys.stderr,
    )


def _log(msg: str) -> None:
    """Print a status line to stderr."""
    print(msg, file=sys.stderr)


class _StageReporter:
    """Renders pipeline progress callbacks as status lines and a byte bar."""

    def __init__(self) -> None:
        self._bar_open = False

    def __call__(self, stage: PipelineStage, done: int, total: int) -> None:
        if stage is PipelineStage.COMPRESSING and done > 0:
            _progress_bar(done, total, "Compressing")
            self._bar_open = True
            return
        if self._bar_open:
            print(file=sys.stderr)  # newline after progress bar
            self._bar_open = False
        if stage is not PipelineStage.FAILED:
            _log(f"[{stage.value}]")


# ── CLI helpers ──────────────────────────────────────────────────────────────

def _parse_size(value: str) -> int:
    """Parse a human-readable byte size (e.g. ``512KiB``, ``4MiB``, ``1048576``)."""
    value = value.strip()
    multipliers = {
        "GIB": 1024**3, "GB": 1000**3,
        "MIB": 1024**2, "MB": 1000**2,
        "KIB": 1024,    "KB": 1000,
        "B": 1,
    }
    upper = value.upper()
    for suffix, mult in multipliers.items():
        if upper.endswith(suffix):
            num = value[: len(value) - len(suffix)].strip()
            return int(float(num) * mult)
    return int(value)


def _display(path: str) -> str:
    """Make an undecodable file name printable (invalid bytes become U+FFFD)."""
    return path.encode("utf-8", "surrogateescape").decode("utf-8", "replace")


def _prompt_password(confirm: bool = False) -> str | None:
    """Prompt interactively for a password (hidden input); ``None`` on refusal."""
    pw = getpass("Password: ")
    if not pw:
        _log("Error: password cannot be empty.")
        return None
    if confirm and getpass("Confirm password: ") != pw:
        _log("Error: passwords do not match.")
        return None
    return pw


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )


# ── Argument parser ──────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    """Construct the CLI argument parser."""

    shared = argparse.ArgumentParser(add_help=False)
    shared.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show progress bars and status messages.",
    )
    shared.add_argument(
        "--state-dir",
        default=None,
        help="Directory holding archives.json (default: $ZENCORE_STATE_DIR "
        "or ~/.local/share/zencore).",
    )

    from zencore import __version__

    parser = argparse.ArgumentParser(
        prog="zencore",
        description=(
            "Back up directories into compressed, optionally encrypted "
            "archives and keep a verifiable index of them."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "examples:\n"
            "  %(prog)s backup ~/Music -d /mnt/backups -n music -v\n"
            "  %(prog)s backup ~/Music -d /mnt/backups --encrypt --cipher chacha20\n"
            "  %(prog)s list\n"
            "  %(prog)s show music\n"
            "  %(prog)s verify music\n"
        ),
    )
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # ── backup ───────────────────────────────────────────────────────────
    bak = sub.add_parser("backup", parents=[shared], help="Create a new archive.")
    bak.add_argument("source", help="Directory to back up.")
    bak.add_argument(
        "-d",
        "--destination",
        required=True,
        help="Directory the archive is written to.",
    )
    bak.add_argument(
        "-n",
        "--name",
        default=None,
        help="Archive name (default: current date and time). "
        "A numeric suffix is appended on collision.",
    )
    bak.add_argument(
        "--algorithm",
        choices=[a.label for a in CompressionAlgorithm],
        default=None,
        help="Compression algorithm (default: $ZENCORE_ALGORITHM or zst).",
    )
    bak.add_argument(
        "--compression-level",
        type=int,
        default=None,
        metavar="N",
        help="Compression level (gz: 1–9, zst: 1–22, none: 0).",
    )
    bak.add_argument(
        "--encrypt",
        action="store_true",
        help="Encrypt the archive with a password.",
    )
    bak.add_argument(
        "--cipher",
        default=None,
        help="aes-256-gcm or chacha20-poly1305 (default: $ZENCORE_CIPHER or aes-256-gcm).",
    )
    bak.add_argument(
        "--hash",
        dest="hash_algorithm",
        choices=[h.label for h in HashAlgorithm],
        default=None,
        help="Integrity hash (default: $ZENCORE_HASH or blake3).",
    )
    bak.add_argument(
        "--threads",
        type=int,
        default=None,
        metavar="N",
        help="Worker threads, 0 for one per CPU (default: $ZENCORE_THREADS or 0).",
    )
    bak.add_argument(
        "--chunk-size",
        type=_parse_size,
        default=DEFAULT_CHUNK_SIZE,
        help="Encryption chunk size (default: 1MiB). Accepts: KiB, MiB, GiB.",
    )
    bak.add_argument(
        "--password",
        default=None,
        help="Password (prompted securely if omitted).",
    )

    # ── list / show / verify ─────────────────────────────────────────────
    lst = sub.add_parser("list", parents=[shared], help="List recorded archives.")
    lst.add_argument("--json", action="store_true", help="Emit JSON.")

    shw = sub.add_parser("show", parents=[shared], help="Show an archive's entries.")
    shw.add_argument("name", help="Archive name.")

    ver = sub.add_parser("verify", parents=[shared], help="Re-check an archive's digest.")
    ver.add_argument("target", help="Archive name or path to the archive file.")

    # ── contents ─────────────────────────────────────────────────────────
    con = sub.add_parser(
        "contents",
        parents=[shared],
        help="List entries read from the archive file itself.",
    )
    con.add_argument("archive", help="Path to a .zca file.")
    con.add_argument(
        "--password",
        default=None,
        help="Password for encrypted archives (prompted if needed).",
    )

    return parser


# ── Commands ─────────────────────────────────────────────────────────────────

def _cmd_backup(args: argparse.Namespace, settings: Settings, store: StateStore) -> int:
    algorithm = (
        CompressionAlgorithm.from_name(args.algorithm) if args.algorithm else settings.algorithm
    )
    level = args.compression_level
    if level is None and algorithm is settings.algorithm:
        level = settings.compression_level
    cipher = CipherSuite.from_name(args.cipher) if args.cipher else settings.cipher
    job = ArchiveJob(
        source_root=args.source,
        destination_dir=args.destination,
        requested_name=args.name,
        compression_algorithm=algorithm,
        compression_level=level,
        encrypt=args.encrypt,
        cipher_suite=cipher if args.encrypt else None,
        thread_count=settings.thread_count if args.threads is None else args.threads,
        hash_algorithm=(
            HashAlgorithm.from_name(args.hash_algorithm)
            if args.hash_algorithm else settings.hash_algorithm
        ),
    )
    job.validate()

    password = None
    if args.encrypt:
        password = args.password or _prompt_password(confirm=True)
        if password is None:
            return EXIT_FAILURE

    pipeline = ArchivePipeline(
        store,
        chunk_size=args.chunk_size,
        date_format=settings.date_format,
        thread_count=job.thread_count,
        progress=_StageReporter() if args.verbose else None,
    )
    result = pipeline.backup(job, password)
    for warning in result.warnings:
        _log(f"Warning: skipped {warning}")
    record = result.record
    print(f"{record.name}\t{record.file_path}")
    if args.verbose:
        _log(
            f"{record.entry_count} file(s), {_format_size(record.size_bytes)}, "
            f"{record.hash_algorithm.label}:{record.hash_value}"
        )
    return EXIT_OK


def _cmd_list(args: argparse.Namespace, store: StateStore) -> int:
    summaries = ArchivePipeline(store).list_archives()
    if args.json:
        print(json.dumps(summaries, indent=2))
        return EXIT_OK
    if not summaries:
        _log("No archives recorded.")
    for s in summaries:
        lock = " [encrypted]" if s["encrypted"] else ""
        print(
            f"{s['name']}\t{s['created_at']}\t{s['entry_count']} file(s)\t"
            f"{_format_size(s['size_bytes'])}\t{s['compression']}{lock}"
        )
    return EXIT_OK


def _cmd_show(args: argparse.Namespace, store: StateStore) -> int:
    entries = ArchivePipeline(store).show(args.name)
    for entry in entries:
        print(f"{entry.size_bytes:>12}  {_display(entry.relative_path)}")
    return EXIT_OK


def _cmd_verify(args: argparse.Namespace, store: StateStore) -> int:
    report = ArchivePipeline(store).verify(args.target)
    if report.status is VerifyStatus.NOT_FOUND:
        _log(f"Not found: {args.target} ({report.detail})")
        return EXIT_NOT_FOUND
    if report.status is VerifyStatus.MISMATCH:
        _log(f"MISMATCH: {report.name}")
        _log(f"  expected {report.expected}")
        _log(f"  actual   {report.actual}")
        return EXIT_MISMATCH
    print(f"OK: {report.name} ({report.hash_algorithm.label if report.hash_algorithm else ''})")
    return EXIT_OK


def _cmd_contents(args: argparse.Namespace) -> int:
    path = Path(args.archive)
    if not path.is_file():
        _log(f"Not found: {path}")
        return EXIT_NOT_FOUND
    password = args.password
    with open(path, "rb") as f:
        header, _ = read_header(f)
    if header.encrypted and not password:
        password = _prompt_password()
        if password is None:
            return EXIT_FAILURE
    for entry in list_archive(str(path), password):
        print(f"{entry.size_bytes:>12}  {_display(entry.relative_path)}")
    return EXIT_OK


# ── Entry point ──────────────────────────────────────────────────────────────

def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    verbose: bool = args.verbose
    _configure_logging(verbose)

    try:
        settings = Settings.from_env()
        if args.state_dir:
            settings = replace(settings, state_dir=Path(args.state_dir))
        store = StateStore.load(settings.state_file)

        if args.command == "backup":
            code = _cmd_backup(args, settings, store)
        elif args.command == "list":
            code = _cmd_list(args, store)
        elif args.command == "show":
            code = _cmd_show(args, store)
        elif args.command == "verify":
            code = _cmd_verify(args, store)
        else:
            code = _cmd_contents(args)
    except ArchiveNotFound as exc:
        _log(f"Not found: {exc}")
        return EXIT_NOT_FOUND
    except ZencoreError as exc:
        _log(f"Error ({type(exc).__name__}): {exc}")
        return EXIT_FAILURE
    except OSError as exc:
        _log(f"Error: {exc}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        _log("Interrupted.")
        return EXIT_FAILURE

    if verbose and code == EXIT_OK:
        _log("Done.")
    return code


if __name__ == "__main__":
    sys.exit(main())
