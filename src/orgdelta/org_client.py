"""Thin wrapper over the ``sf`` CLI.

Every call runs ``sf ... --json`` and reads the JSON envelope
(``{"status": 0, "result": ...}`` on success). Retries and timeouts beyond a
single per-command limit are left to the caller.
"""

from __future__ import annotations

import json
import logging
import shlex
import subprocess
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, TypeAlias

from .errors import OrgClientError

LOGGER = logging.getLogger(__name__)

DEFAULT_LOGIN_URL = "https://login.salesforce.com"
DEFAULT_TIMEOUT_SECONDS = 60 * 60
TEST_LEVELS = ("NoTestRun", "RunSpecifiedTests", "RunLocalTests", "RunAllTestsInOrg")

Runner: TypeAlias = Callable[..., subprocess.CompletedProcess[str]]


@dataclass(frozen=True)
class OrgInfo:
    alias: str | None
    username: str
    org_id: str | None = None
    instance_url: str | None = None
    is_default: bool = False


@dataclass(frozen=True)
class DeployOptions:
    test_level: str = "NoTestRun"
    run_destructive: bool = False
    destructive_manifest: str = "destructiveChanges.xml"
    check_only: bool = False
    wait_minutes: int = 33
    tests: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.test_level not in TEST_LEVELS:
            raise ValueError(
                f"Unknown test level {self.test_level!r}; expected one of {', '.join(TEST_LEVELS)}"
            )
        if self.test_level == "RunSpecifiedTests" and not self.tests:
            raise ValueError("RunSpecifiedTests needs at least one test class")


@dataclass(frozen=True)
class DeployResult:
    success: bool
    deploy_id: str | None
    status: str
    component_failures: tuple[str, ...] = ()
    test_failures: tuple[str, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


class OrgClient(Protocol):
    def authorize(self, alias: str, login_url: str = DEFAULT_LOGIN_URL) -> OrgInfo: ...

    def list_orgs(self) -> list[OrgInfo]: ...

    def retrieve_metadata(
        self, manifest_path: Path, org_alias: str, output_dir: Path
    ) -> None: ...

    def deploy(
        self, package_dir: Path, org_alias: str, options: DeployOptions
    ) -> DeployResult: ...

    def generate_manifest(self, org_alias: str, output_path: Path) -> Path: ...


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _describe_component_failure(item: dict[str, Any]) -> str:
    kind = item.get("componentType") or "?"
    name = item.get("fullName") or "?"
    problem = item.get("problem") or item.get("error") or "failed"
    return f"{kind}/{name}: {problem}"


def _describe_test_failure(item: dict[str, Any]) -> str:
    name = ".".join(str(part) for part in (item.get("name"), item.get("methodName")) if part)
    return f"{name or '?'}: {item.get('message') or 'failed'}"


class SfCliClient:
    def __init__(
        self,
        executable: str = "sf",
        runner: Runner = subprocess.run,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.executable = executable
        self.runner = runner
        self.timeout = timeout

    def _run(
        self,
        args: list[str],
        *,
        cwd: Path | None = None,
        accept_failed_result: bool = False,
    ) -> Any:
        command = [self.executable, *args, "--json"]
        LOGGER.debug("running %s", shlex.join(command))
        try:
            completed = self.runner(
                command,
                capture_output=True,
                text=True,
                cwd=None if cwd is None else str(cwd),
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise OrgClientError(command, f"{self.executable!r} not found on PATH") from exc
        except subprocess.TimeoutExpired as exc:
            raise OrgClientError(command, f"timed out after {self.timeout:g}s") from exc

        stdout = (completed.stdout or "").strip()
        try:
            payload = json.loads(stdout) if stdout else {}
        except json.JSONDecodeError as exc:
            detail = (completed.stderr or stdout).strip().splitlines()
            raise OrgClientError(
                command,
                f"unreadable output: {detail[-1] if detail else 'empty'}",
                completed.returncode,
            ) from exc
        if not isinstance(payload, dict):
            raise OrgClientError(command, "unexpected JSON envelope", completed.returncode)

        status = payload.get("status", completed.returncode)
        if status == 0 and completed.returncode == 0:
            return payload.get("result", {})
        if accept_failed_result and isinstance(payload.get("result"), dict):
            return payload["result"]
        message = payload.get("message") or (completed.stderr or "").strip() or "command failed"
        raise OrgClientError(command, str(message), completed.returncode)

    def authorize(self, alias: str, login_url: str = DEFAULT_LOGIN_URL) -> OrgInfo:
        result = self._run(
            ["org", "login", "web", "--alias", alias, "--instance-url", login_url]
        )
        return OrgInfo(
            alias=alias,
            username=str(result.get("username", "")),
            org_id=result.get("orgId"),
            instance_url=result.get("instanceUrl", login_url),
        )

    def list_orgs(self) -> list[OrgInfo]:
        result = self._run(["org", "list"])
        orgs: dict[str, OrgInfo] = {}
        for group in ("nonScratchOrgs", "sandboxes", "devHubs", "scratchOrgs", "other"):
            for item in _as_list(result.get(group)):
                username = item.get("username")
                if not username or username in orgs:
                    continue
                orgs[username] = OrgInfo(
                    alias=item.get("alias"),
                    username=username,
                    org_id=item.get("orgId"),
                    instance_url=item.get("instanceUrl"),
                    is_default=bool(item.get("isDefaultUsername")),
                )
        return sorted(orgs.values(), key=lambda org: ((org.alias or "").lower(), org.username))

    def retrieve_metadata(
        self, manifest_path: Path, org_alias: str, output_dir: Path
    ) -> None:
        output_dir.mkdir(parents=True, exist_ok=True)
        self._run(
            [
                "project",
                "retrieve",
                "start",
                "--manifest",
                str(manifest_path),
                "--target-org",
                org_alias,
                "--output-dir",
                str(output_dir),
            ]
        )

    def deploy(
        self, package_dir: Path, org_alias: str, options: DeployOptions
    ) -> DeployResult:
        args = [
            "project",
            "deploy",
            "start",
            "--manifest",
            "package.xml",
            "--target-org",
            org_alias,
            "--test-level",
            options.test_level,
            "--wait",
            str(options.wait_minutes),
        ]
        for test in options.tests:
            args.extend(["--tests", test])
        if options.run_destructive:
            args.extend(["--post-destructive-changes", options.destructive_manifest])
        if options.check_only:
            args.append("--dry-run")

        result = self._run(args, cwd=package_dir, accept_failed_result=True)
        details = result.get("details") or {}
        run_tests = details.get("runTestResult") or {}
        return DeployResult(
            success=bool(result.get("success")),
            deploy_id=result.get("id"),
            status=str(result.get("status", "Unknown")),
            component_failures=tuple(
                _describe_component_failure(item)
                for item in _as_list(details.get("componentFailures"))
            ),
            test_failures=tuple(
                _describe_test_failure(item) for item in _as_list(run_tests.get("failures"))
            ),
            raw=result,
        )

    def generate_manifest(self, org_alias: str, output_path: Path) -> Path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        self._run(
            [
                "project",
                "generate",
                "manifest",
                "--from-org",
                org_alias,
                "--output-dir",
                str(output_path.parent),
                "--name",
                output_path.name,
            ]
        )
        return output_path
