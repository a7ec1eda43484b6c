"""Artifact packaging.

After a successful producer run the outputs are bundled into a single
zstd-compressed tar stream (``data.tar.zst``), equivalent to:

    tar -cf - categories keywords dump | zstd -o data.tar.zst

Packaging problems are never treated as "no new data". The producer said it
wrote its outputs, so anything missing here is a contract violation and
raises PackagingConsistencyError.
"""

from __future__ import annotations

import tarfile
from collections.abc import Sequence
from pathlib import Path

import zstandard

from dump_release.errors import PackagingConsistencyError
from dump_release.logging_config import get_logger

logger = get_logger(__name__)


def _normalize(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    return info


def build_archive(
    workdir: Path,
    outputs: Sequence[str],
    archive_name: str = "data.tar.zst",
    level: int = 3,
) -> Path:
    """Bundle ``outputs`` (in order) into ``workdir / archive_name``.

    Args:
        workdir: Directory holding the producer outputs
        outputs: Output paths relative to ``workdir``; order is preserved
        archive_name: File name of the archive
        level: zstd compression level

    Returns:
        Path to the verified archive

    Raises:
        PackagingConsistencyError: If an output is missing or the archive
            does not verify
    """
    workdir = Path(workdir)
    missing = [name for name in outputs if not (workdir / name).exists()]
    if missing:
        raise PackagingConsistencyError(
            f"Producer reported success but outputs are missing: {', '.join(missing)}"
        )

    archive = workdir / archive_name
    compressor = zstandard.ZstdCompressor(level=level)
    try:
        with archive.open("wb") as fh:
            with compressor.stream_writer(fh, closefd=False) as writer:
                with tarfile.open(fileobj=writer, mode="w|") as tar:
                    for name in outputs:
                        tar.add(workdir / name, arcname=name, filter=_normalize)
    except (OSError, tarfile.TarError, zstandard.ZstdError) as exc:
        raise PackagingConsistencyError(f"Could not write {archive}: {exc}") from exc

    verify_archive(archive, outputs)
    logger.info("archive_built", archive=str(archive), size=archive.stat().st_size)
    return archive


def verify_archive(archive: Path, outputs: Sequence[str]) -> None:
    """Check that ``archive`` exists, is non-empty and holds exactly ``outputs``.

    Raises:
        PackagingConsistencyError: On any mismatch or read error
    """
    archive = Path(archive)
    if not archive.is_file():
        raise PackagingConsistencyError(f"Archive {archive} was not created")
    if archive.stat().st_size == 0:
        raise PackagingConsistencyError(f"Archive {archive} is empty")

    top_level: list[str] = []
    try:
        with archive.open("rb") as fh:
            with zstandard.ZstdDecompressor().stream_reader(fh) as reader:
                with tarfile.open(fileobj=reader, mode="r|") as tar:
                    for member in tar:
                        root = member.name.split("/", 1)[0]
                        if root not in top_level:
                            top_level.append(root)
    except (OSError, tarfile.TarError, zstandard.ZstdError) as exc:
        raise PackagingConsistencyError(f"Archive {archive} is unreadable: {exc}") from exc

    if top_level != list(outputs):
        raise PackagingConsistencyError(
            f"Archive {archive} holds {top_level}, expected {list(outputs)}"
        )
