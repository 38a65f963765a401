from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from .config import EngineConfig
from .errors import EmissionError, EmissionErrorKind
from .files import atomic_write_text
from .manifest import (
    DEPLOY_MANIFEST_NAME,
    DESTRUCTIVE_MANIFEST_NAME,
    emit_deploy_manifest,
    emit_destructive_manifest,
)
from .models import ComparisonResult, EmissionResult

LOGGER = logging.getLogger(__name__)

PACKAGE_SOURCE_DIR = PurePosixPath("force-app/main/default")
PROJECT_FILE_NAME = "sfdx-project.json"


@dataclass(frozen=True)
class PackageResult:
    output_dir: Path
    deploy: EmissionResult
    destructive: EmissionResult | None
    copied_files: int

    @property
    def manifest_path(self) -> Path:
        return self.output_dir / DEPLOY_MANIFEST_NAME


def package_relpath(relpath: str, config: EngineConfig) -> PurePosixPath:
    """Place a retrieved file under the package source dir, from its type folder down."""
    parts = PurePosixPath(relpath).parts
    for index, part in enumerate(parts[:-1]):
        if part in config.type_map:
            return PACKAGE_SOURCE_DIR.joinpath(*parts[index:])
    return PACKAGE_SOURCE_DIR / relpath


def _prepare_output_dir(output_dir: Path, overwrite: bool) -> None:
    if output_dir.exists():
        if not output_dir.is_dir():
            raise FileExistsError(f"Package output is not a directory: {output_dir}")
        if any(output_dir.iterdir()):
            if not overwrite:
                raise FileExistsError(
                    f"Package output directory is not empty: {output_dir}"
                )
            shutil.rmtree(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)


def _project_file(api_version: str) -> str:
    project = {
        "packageDirectories": [{"path": "force-app", "default": True}],
        "sourceApiVersion": api_version,
    }
    return json.dumps(project, indent=2, sort_keys=True) + "\n"


def build_delta_package(
    comparison: ComparisonResult,
    output_dir: Path,
    config: EngineConfig,
    *,
    include_destructive: bool = False,
    strict: bool = False,
    overwrite: bool = False,
) -> PackageResult:
    """Materialize the Added and Changed components as a deployable project.

    The directory receives the component files copied from the source tree,
    ``package.xml``, ``sfdx-project.json`` and, when requested,
    ``destructiveChanges.xml``.
    """
    output_dir = output_dir.expanduser().resolve()
    source_root = comparison.source.root
    if strict and not comparison.delta.changed():
        raise EmissionError(
            EmissionErrorKind.EMPTY_MANIFEST,
            path=str(output_dir / DEPLOY_MANIFEST_NAME),
            message="no components selected for the deploy package",
        )
    _prepare_output_dir(output_dir, overwrite)

    copied = 0
    for entry in comparison.delta.changed():
        record = comparison.source.records[entry.key]
        for relpath in record.member_paths:
            target = output_dir / package_relpath(relpath, config).as_posix()
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source_root / relpath, target)
            copied += 1

    deploy = emit_deploy_manifest(
        comparison.delta,
        output_dir / DEPLOY_MANIFEST_NAME,
        config.api_version,
        strict=strict,
    )
    destructive = None
    if include_destructive:
        destructive = emit_destructive_manifest(
            comparison.delta,
            output_dir / DESTRUCTIVE_MANIFEST_NAME,
            config.api_version,
        )
    atomic_write_text(output_dir / PROJECT_FILE_NAME, _project_file(config.api_version))

    LOGGER.info(
        "delta package %s: %d files, %d deploy members",
        output_dir,
        copied,
        deploy.member_count,
    )
    return PackageResult(
        output_dir=output_dir,
        deploy=deploy,
        destructive=destructive,
        copied_files=copied,
    )
