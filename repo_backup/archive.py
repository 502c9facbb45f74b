"""Backup archive naming and packaging."""

import logging
import os
import stat
import time
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from repo_backup.errors import ArchiveError

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = '%Y-%m-%d-%H-%M-%S'
ARCHIVE_EXTENSION = '.zip'

# Earliest timestamp a zip entry can carry (1980-01-01)
_ZIP_EPOCH = 315532800


@dataclass
class ArchiveResult:
    """Result of packaging a working tree."""
    archive_path: Path
    file_count: int = 0
    directory_count: int = 0
    symlink_count: int = 0
    original_size: int = 0
    compressed_size: int = 0
    compression_ratio: float = 0.0


def archive_timestamp(when: datetime) -> str:
    """Format a generation time as YYYY-MM-DD-HH-MM-SS (UTC for aware datetimes)."""
    if when.tzinfo is not None:
        when = when.astimezone(timezone.utc)
    return when.strftime(TIMESTAMP_FORMAT)


def archive_name(commit_id: str, when: datetime) -> str:
    """Archive file name for a commit, e.g. abc123_2024-05-01-12-00-00.zip."""
    return f"{commit_id}_{archive_timestamp(when)}{ARCHIVE_EXTENSION}"


def object_key(repository_name: str, reference_name: str, name: str) -> str:
    """S3 key for an archive: {repository}/{reference}/{archive name}."""
    return f"{repository_name}/{reference_name}/{name}"


def _zip_date_time(mtime: float):
    return time.localtime(max(mtime, _ZIP_EPOCH))[:6]


def _symlink_info(path: Path, arcname: str) -> zipfile.ZipInfo:
    """Zip entry that stores a symlink as a link rather than its target."""
    st = path.lstat()
    info = zipfile.ZipInfo(arcname, date_time=_zip_date_time(st.st_mtime))
    info.create_system = 3
    info.external_attr = (st.st_mode & 0xFFFF) << 16
    info.compress_type = zipfile.ZIP_STORED
    return info


def create_archive(
    source_dir: Path,
    archive_path: Path,
    compression_level: int = 6,
    progress_callback: Optional[Callable[[int, str], None]] = None
) -> ArchiveResult:
    """Package everything under source_dir into a zip archive.

    Entry names are relative to source_dir. Nothing is excluded, including
    version-control metadata. Symlinks are stored as links and never
    followed; file and directory permission bits are kept.

    Args:
        source_dir: Directory to package
        archive_path: Zip file to create (must not be inside source_dir)
        compression_level: Deflate level 1-9, or 0 to store uncompressed
        progress_callback: Optional callback(entries_written, arcname)

    Returns:
        ArchiveResult with counts and sizes

    Raises:
        ArchiveError: if the tree cannot be read or the archive written
    """
    source_dir = Path(source_dir)
    archive_path = Path(archive_path)

    if not source_dir.is_dir():
        raise ArchiveError(f"Source directory not found: {source_dir}")
    if archive_path.resolve().is_relative_to(source_dir.resolve()):
        raise ArchiveError(f"Archive {archive_path} would be written inside {source_dir}")

    if compression_level > 0:
        compression = zipfile.ZIP_DEFLATED
        compress_args = {'compresslevel': compression_level}
    else:
        compression = zipfile.ZIP_STORED
        compress_args = {}

    result = ArchiveResult(archive_path=archive_path)
    written = 0

    logger.info(f"Creating archive: {archive_path}")
    logger.info(f"  Source: {source_dir}")

    try:
        with zipfile.ZipFile(archive_path, 'w', compression=compression,
                             strict_timestamps=False, **compress_args) as zf:
            for root, dirnames, filenames in os.walk(source_dir, followlinks=False):
                root_path = Path(root)
                dirnames.sort()

                for name in list(dirnames):
                    path = root_path / name
                    arcname = path.relative_to(source_dir).as_posix()

                    if path.is_symlink():
                        # os.walk lists links to directories here; keep them as links
                        dirnames.remove(name)
                        zf.writestr(_symlink_info(path, arcname), os.readlink(path))
                        result.symlink_count += 1
                    else:
                        zf.write(path, arcname)
                        result.directory_count += 1

                    written += 1
                    if progress_callback:
                        progress_callback(written, arcname)

                for name in sorted(filenames):
                    path = root_path / name
                    arcname = path.relative_to(source_dir).as_posix()
                    mode = path.lstat().st_mode

                    if stat.S_ISLNK(mode):
                        zf.writestr(_symlink_info(path, arcname), os.readlink(path))
                        result.symlink_count += 1
                    elif stat.S_ISREG(mode):
                        zf.write(path, arcname)
                        result.file_count += 1
                        result.original_size += path.stat().st_size
                    else:
                        logger.warning(f"Skipping special file: {path}")
                        continue

                    written += 1
                    if progress_callback:
                        progress_callback(written, arcname)

    except (OSError, zipfile.BadZipFile, ValueError) as e:
        if archive_path.exists():
            archive_path.unlink()
        raise ArchiveError(f"Failed to create archive {archive_path}: {e}") from e

    result.compressed_size = archive_path.stat().st_size
    if result.original_size > 0:
        result.compression_ratio = result.compressed_size / result.original_size

    logger.info(f"✓ Archive created: {archive_path.name}")
    logger.info(f"  Files: {result.file_count}, directories: {result.directory_count}, "
                f"symlinks: {result.symlink_count}")
    logger.info(f"  Original size: {format_bytes(result.original_size)}")
    logger.info(f"  Archive size: {format_bytes(result.compressed_size)}")

    return result


def format_bytes(bytes_size: int) -> str:
    """Format bytes as human-readable size."""
    if bytes_size == 0:
        return "0 B"
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_size < 1024.0:
            return f"{bytes_size:.2f} {unit}"
        bytes_size /= 1024.0
    return f"{bytes_size:.2f} PB"
