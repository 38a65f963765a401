from __future__ import annotations

import json
import subprocess
from hashlib import sha256
from pathlib import Path

from orgdelta.models import ComponentRecord
from orgdelta.org_client import DeployOptions, DeployResult, OrgInfo

CLASS_META = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<ApexClass xmlns="http://soap.sforce.com/2006/04/metadata">\n'
    "    <apiVersion>60.0</apiVersion>\n"
    "    <status>Active</status>\n"
    "</ApexClass>\n"
)


def digest(text: str) -> bytes:
    return sha256(text.encode("utf-8")).digest()


def mk_record(
    type_name: str,
    full_name: str,
    content: str = "",
    *,
    file_path: str | None = None,
    folder_path: tuple[str, ...] = (),
) -> ComponentRecord:
    return ComponentRecord(
        type=type_name,
        full_name=full_name,
        file_path=file_path or f"{type_name}/{full_name}",
        content_hash=digest(content),
        folder_path=folder_path,
    )


def mk_inventory(*records: ComponentRecord) -> dict[tuple[str, str], ComponentRecord]:
    return {record.key: record for record in records}


def write_tree(root: Path, files: dict[str, str]) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    for relpath, content in files.items():
        path = root / relpath
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


def apex_class(name: str, body: str = "") -> dict[str, str]:
    return {
        f"classes/{name}.cls": f"public class {name} {{{body}}}\n",
        f"classes/{name}.cls-meta.xml": CLASS_META,
    }


class FakeOrgClient:
    """Org client double that drops canned trees where `sf` would retrieve."""

    def __init__(self, trees: dict[str, dict[str, str]]) -> None:
        self.trees = trees
        self.calls: list[tuple] = []
        self.deploy_result = DeployResult(
            success=True, deploy_id="0Af000000000001", status="Succeeded"
        )

    def authorize(self, alias: str, login_url: str = "https://login.salesforce.com") -> OrgInfo:
        self.calls.append(("authorize", alias, login_url))
        return OrgInfo(alias=alias, username=f"{alias}@example.com", instance_url=login_url)

    def list_orgs(self) -> list[OrgInfo]:
        self.calls.append(("list_orgs",))
        return [
            OrgInfo(alias=alias, username=f"{alias}@example.com", is_default=index == 0)
            for index, alias in enumerate(sorted(self.trees))
        ]

    def retrieve_metadata(self, manifest_path: Path, org_alias: str, output_dir: Path) -> None:
        self.calls.append(("retrieve_metadata", manifest_path, org_alias, output_dir))
        write_tree(output_dir, self.trees[org_alias])

    def deploy(self, package_dir: Path, org_alias: str, options: DeployOptions) -> DeployResult:
        self.calls.append(("deploy", package_dir, org_alias, options))
        return self.deploy_result

    def generate_manifest(self, org_alias: str, output_path: Path) -> Path:
        self.calls.append(("generate_manifest", org_alias, output_path))
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text("<Package/>\n", encoding="utf-8")
        return output_path


class FakeRunner:
    """Stands in for `subprocess.run`, answering with canned `sf --json` output."""

    def __init__(self, payload: object, returncode: int = 0, stderr: str = "") -> None:
        self.payload = payload
        self.returncode = returncode
        self.stderr = stderr
        self.calls: list[tuple[list[str], dict[str, object]]] = []

    def __call__(self, command: list[str], **kwargs) -> subprocess.CompletedProcess[str]:
        self.calls.append((command, kwargs))
        stdout = self.payload if isinstance(self.payload, str) else json.dumps(self.payload)
        return subprocess.CompletedProcess(
            command, self.returncode, stdout=stdout, stderr=self.stderr
        )
