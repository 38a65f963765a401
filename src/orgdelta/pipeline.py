from __future__ import annotations

import concurrent.futures
import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path

from .classify import classify
from .config import EngineConfig
from .errors import EmissionError, EmissionErrorKind
from .inventory import ProgressCallback, build_inventory
from .manifest import (
    DEPLOY_MANIFEST_NAME,
    DESTRUCTIVE_MANIFEST_NAME,
    emit_deploy_manifest,
    emit_destructive_manifest,
)
from .models import ComparisonResult, EmissionResult, Inventory
from .org_client import OrgClient
from .report import REPORT_NAME, write_report

LOGGER = logging.getLogger(__name__)

RETRIEVE_MANIFEST_NAME = "retrieve.xml"


@dataclass(frozen=True)
class ArtifactPaths:
    deploy: EmissionResult
    destructive: EmissionResult | None
    report: Path


def _timed_build(
    root: Path, config: EngineConfig, progress_cb: ProgressCallback | None
) -> tuple[Inventory, float]:
    started = time.perf_counter()
    inventory = build_inventory(root, config, progress_cb=progress_cb)
    return inventory, time.perf_counter() - started


def compare_trees(
    source_root: Path,
    dest_root: Path,
    config: EngineConfig,
    *,
    source_progress: ProgressCallback | None = None,
    dest_progress: ProgressCallback | None = None,
) -> ComparisonResult:
    """Build both inventories in parallel, then classify them."""
    with concurrent.futures.ThreadPoolExecutor(max_workers=2) as pool:
        future_source = pool.submit(_timed_build, source_root, config, source_progress)
        future_dest = pool.submit(_timed_build, dest_root, config, dest_progress)
        source, source_elapsed = future_source.result()
        destination, dest_elapsed = future_dest.result()

    delta = classify(source.records, destination.records, config.exempt_types)
    LOGGER.info(
        "compared %d source and %d destination components in %.2fs/%.2fs",
        len(source),
        len(destination),
        source_elapsed,
        dest_elapsed,
    )
    return ComparisonResult(
        source=source,
        destination=destination,
        delta=delta,
        source_scan_seconds=source_elapsed,
        destination_scan_seconds=dest_elapsed,
    )


def write_artifacts(
    result: ComparisonResult,
    out_dir: Path,
    config: EngineConfig,
    *,
    destructive: bool = False,
    strict: bool = False,
    include_unchanged: bool = False,
) -> ArtifactPaths:
    if strict:
        # Fail before anything is written so a strict run leaves no partial output.
        selections = [(DEPLOY_MANIFEST_NAME, result.delta.changed(), "deploy")]
        if destructive:
            selections.append(
                (DESTRUCTIVE_MANIFEST_NAME, result.delta.removed(), "destructive")
            )
        for name, entries, label in selections:
            if not entries:
                raise EmissionError(
                    EmissionErrorKind.EMPTY_MANIFEST,
                    path=str(out_dir / name),
                    message=f"no components selected for the {label} manifest",
                )
    deploy = emit_deploy_manifest(
        result.delta, out_dir / DEPLOY_MANIFEST_NAME, config.api_version, strict=strict
    )
    destructive_result = None
    if destructive:
        destructive_result = emit_destructive_manifest(
            result.delta,
            out_dir / DESTRUCTIVE_MANIFEST_NAME,
            config.api_version,
            strict=strict,
        )
    report = write_report(
        result.delta, out_dir / REPORT_NAME, include_unchanged=include_unchanged
    )
    return ArtifactPaths(deploy=deploy, destructive=destructive_result, report=report)


def _fresh_dir(path: Path) -> Path:
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)
    return path


def compare_orgs(
    client: OrgClient,
    source_alias: str,
    dest_alias: str,
    work_dir: Path,
    config: EngineConfig,
    *,
    manifest_path: Path | None = None,
    source_progress: ProgressCallback | None = None,
    dest_progress: ProgressCallback | None = None,
) -> ComparisonResult:
    """Retrieve both orgs into ``work_dir`` and compare the retrieved trees.

    Without ``manifest_path`` the retrieval manifest is generated from the
    source org, so every component type the source holds is compared.
    """
    work_dir = work_dir.expanduser().resolve()
    work_dir.mkdir(parents=True, exist_ok=True)
    if manifest_path is None:
        LOGGER.info("generating retrieval manifest from %s", source_alias)
        manifest_path = client.generate_manifest(
            source_alias, work_dir / RETRIEVE_MANIFEST_NAME
        )

    source_dir = _fresh_dir(work_dir / "source")
    dest_dir = _fresh_dir(work_dir / "dest")
    LOGGER.info("retrieving %s into %s", source_alias, source_dir)
    client.retrieve_metadata(manifest_path, source_alias, source_dir)
    LOGGER.info("retrieving %s into %s", dest_alias, dest_dir)
    client.retrieve_metadata(manifest_path, dest_alias, dest_dir)

    return compare_trees(
        source_dir,
        dest_dir,
        config,
        source_progress=source_progress,
        dest_progress=dest_progress,
    )
