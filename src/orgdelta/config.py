from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigError

CACHE_FOLDERS = {"__pycache__", ".pytest_cache", ".cache"}
EXCLUDED_FOLDERS = {".sfdx", ".sf", ".git", "node_modules", ".localdevserver"} | (
    CACHE_FOLDERS
)
EXCLUDED_FILE_NAMES = {
    ".DS_Store",
    "Thumbs.db",
    ".forceignore",
    "package.xml",
    "destructiveChanges.xml",
    "destructiveChangesPre.xml",
    "destructiveChangesPost.xml",
    "jsconfig.json",
    ".eslintrc.json",
}

EXCLUDED_FILE_SUFFIXES = ("~", ".swp", ".orig")

SIDECAR_SUFFIX = "-meta.xml"
FORCEIGNORE_NAME = ".forceignore"
METADATA_NAMESPACE = "http://soap.sforce.com/2006/04/metadata"

DEFAULT_API_VERSION = "60.0"
DEFAULT_HOME = Path("~/.orgdelta")
DEFAULT_SETTINGS_DB = DEFAULT_HOME / "settings.sqlite3"
DEFAULT_WORK_DIR = DEFAULT_HOME / "work"
DEFAULT_CONFIG_FILE = Path("orgdelta.toml")

LAYOUT_FILE = "file"
LAYOUT_FOLDER = "folder"
LAYOUT_BUNDLE = "bundle"
LAYOUTS = {LAYOUT_FILE, LAYOUT_FOLDER, LAYOUT_BUNDLE}


@dataclass(frozen=True)
class TypeMapping:
    folder: str
    type: str
    layout: str = LAYOUT_FILE


def _mappings(*entries: tuple[str, str] | tuple[str, str, str]) -> dict[str, TypeMapping]:
    return {entry[0]: TypeMapping(*entry) for entry in entries}


DEFAULT_TYPE_MAP: dict[str, TypeMapping] = _mappings(
    ("applications", "CustomApplication"),
    ("aura", "AuraDefinitionBundle", LAYOUT_BUNDLE),
    ("classes", "ApexClass"),
    ("components", "ApexComponent"),
    ("contentassets", "ContentAsset"),
    ("customMetadata", "CustomMetadata"),
    ("customPermissions", "CustomPermission"),
    ("dashboards", "Dashboard", LAYOUT_FOLDER),
    ("documents", "Document", LAYOUT_FOLDER),
    ("email", "EmailTemplate", LAYOUT_FOLDER),
    ("flexipages", "FlexiPage"),
    ("flows", "Flow"),
    ("globalValueSets", "GlobalValueSet"),
    ("labels", "CustomLabels"),
    ("layouts", "Layout"),
    ("lwc", "LightningComponentBundle", LAYOUT_BUNDLE),
    ("namedCredentials", "NamedCredential"),
    ("objectTranslations", "CustomObjectTranslation", LAYOUT_BUNDLE),
    ("objects", "CustomObject", LAYOUT_BUNDLE),
    ("pages", "ApexPage"),
    ("permissionsetgroups", "PermissionSetGroup"),
    ("permissionsets", "PermissionSet"),
    ("profiles", "Profile"),
    ("queues", "Queue"),
    ("remoteSiteSettings", "RemoteSiteSetting"),
    ("reports", "Report", LAYOUT_FOLDER),
    ("staticresources", "StaticResource", LAYOUT_BUNDLE),
    ("tabs", "CustomTab"),
    ("translations", "Translations"),
    ("triggers", "ApexTrigger"),
    ("workflows", "Workflow"),
)

DEFAULT_EXEMPT_TYPES = frozenset({"CustomObjectTranslation", "Translations"})


@dataclass(frozen=True)
class EngineConfig:
    type_map: dict[str, TypeMapping] = field(
        default_factory=lambda: dict(DEFAULT_TYPE_MAP)
    )
    exempt_types: frozenset[str] = DEFAULT_EXEMPT_TYPES
    api_version: str = DEFAULT_API_VERSION
    use_forceignore: bool = True

    def with_api_version(self, api_version: str | None) -> EngineConfig:
        if not api_version:
            return self
        return EngineConfig(
            type_map=self.type_map,
            exempt_types=self.exempt_types,
            api_version=api_version,
            use_forceignore=self.use_forceignore,
        )


def _parse_type_entry(folder: str, raw: object) -> TypeMapping:
    if isinstance(raw, str):
        type_name, layout = raw, LAYOUT_FILE
    elif isinstance(raw, dict):
        type_name = raw.get("type")
        layout = raw.get("layout", LAYOUT_FILE)
    else:
        raise ConfigError(f"type_map.{folder}: expected a string or a table")
    if not isinstance(type_name, str) or not type_name.strip():
        raise ConfigError(f"type_map.{folder}: missing metadata type name")
    if layout not in LAYOUTS:
        raise ConfigError(
            f"type_map.{folder}: unknown layout {layout!r} "
            f"(expected one of {', '.join(sorted(LAYOUTS))})"
        )
    return TypeMapping(folder=folder, type=type_name.strip(), layout=layout)


def parse_engine_config(data: dict[str, object]) -> EngineConfig:
    section = data.get("delta", {})
    if not isinstance(section, dict):
        raise ConfigError("[delta] must be a table")

    api_version = section.get("api_version", DEFAULT_API_VERSION)
    if not isinstance(api_version, (str, int, float)):
        raise ConfigError("delta.api_version must be a string")
    api_version = str(api_version)

    exempt = section.get("exempt_types", sorted(DEFAULT_EXEMPT_TYPES))
    if not isinstance(exempt, list) or not all(isinstance(x, str) for x in exempt):
        raise ConfigError("delta.exempt_types must be a list of type names")

    raw_map = section.get("type_map", {})
    if not isinstance(raw_map, dict):
        raise ConfigError("[delta.type_map] must be a table")
    type_map = {} if section.get("replace_type_map", False) else dict(DEFAULT_TYPE_MAP)
    for folder, raw in raw_map.items():
        type_map[folder] = _parse_type_entry(folder, raw)

    use_forceignore = section.get("use_forceignore", True)
    if not isinstance(use_forceignore, bool):
        raise ConfigError("delta.use_forceignore must be true or false")

    return EngineConfig(
        type_map=type_map,
        exempt_types=frozenset(exempt),
        api_version=api_version,
        use_forceignore=use_forceignore,
    )


def load_engine_config(path: Path | None) -> EngineConfig:
    """Load engine settings from a TOML file, or defaults when it is absent.

    An explicitly given path must exist. Without a path, ``orgdelta.toml`` in
    the working directory is used when present.
    """
    if path is None:
        if not DEFAULT_CONFIG_FILE.is_file():
            return EngineConfig()
        path = DEFAULT_CONFIG_FILE
    resolved = path.expanduser()
    try:
        data = tomllib.loads(resolved.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {resolved}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {resolved}: {exc}") from exc
    return parse_engine_config(data)
