from __future__ import annotations

from .config import EXCLUDED_FILE_NAMES, EXCLUDED_FILE_SUFFIXES, EXCLUDED_FOLDERS


def is_excluded_folder_name(name: str) -> bool:
    """Tool caches and VCS folders never hold retrieved metadata."""
    return name in EXCLUDED_FOLDERS


def is_excluded_file_name(name: str) -> bool:
    """Files that are never components: OS litter, editor backups and manifests."""
    return name in EXCLUDED_FILE_NAMES or name.endswith(EXCLUDED_FILE_SUFFIXES)
