"""Typed release configuration.

Defaults describe the lex-0 repository layout. A ``release.toml`` at the
repository root may override any of them:

    [paths]
    citation = "CITATION.cff"
    odd = "odd/lex-0.odd"

    [branches]
    remote = "origin"
    dev = "dev"
    main = "main"

    [polling]
    pr_interval = 5
    run_interval = 5
    dispatch_interval = 4
    watch_timeout = 3600
    dispatch_timeout_cap = 600
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .result import Err, Ok, Result
from .structured import StrDict, as_str_dict, get_float, get_str, get_table

__all__ = [
    "BranchesConfig",
    "ChecksConfig",
    "ConfigError",
    "MIN_POLL_INTERVAL_SECONDS",
    "PathsConfig",
    "PollingConfig",
    "ReleaseConfig",
    "WorkflowsConfig",
    "CONFIG_FILE_NAME",
    "load_config",
    "load_config_or_default",
]

CONFIG_FILE_NAME = "release.toml"

# Polling faster than this hammers the GitHub API for no latency gain.
MIN_POLL_INTERVAL_SECONDS = 1.0


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when release.toml cannot be loaded or is invalid."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class PathsConfig:
    """Repository-relative paths of the release artifacts."""

    citation: str = "CITATION.cff"
    odd: str = "odd/lex-0.odd"


@dataclass(frozen=True, slots=True)
class BranchesConfig:
    remote: str = "origin"
    dev: str = "dev"
    main: str = "main"


@dataclass(frozen=True, slots=True)
class WorkflowsConfig:
    """Workflow names as shown by ``gh workflow list`` plus their files."""

    build_site: str = "build-site"
    citation_metadata: str = "citation-metadata"
    release_helper: str = "release-helper"
    release_helper_file: str = "release-helper.yml"
    citation_metadata_path: str = ".github/workflows/citation-metadata.yml"
    release_helper_path: str = ".github/workflows/release-helper.yml"
    site_build_path: str = ".github/workflows/site-build.yml"


@dataclass(frozen=True, slots=True)
class ChecksConfig:
    """Expectations the doctor has about rulesets and secrets."""

    dev_required: str = "check_citation"
    dev_recommended: str = "pr"
    citation_token_secret: str = "CITATION_BOT_TOKEN"


@dataclass(frozen=True, slots=True)
class PollingConfig:
    """Poll intervals and wall-clock deadlines, in seconds."""

    pr_interval: float = 5.0
    run_interval: float = 5.0
    dispatch_interval: float = 4.0
    watch_timeout: float = 3600.0
    dispatch_timeout_cap: float = 600.0


@dataclass(frozen=True, slots=True)
class ReleaseConfig:
    paths: PathsConfig = field(default_factory=PathsConfig)
    branches: BranchesConfig = field(default_factory=BranchesConfig)
    workflows: WorkflowsConfig = field(default_factory=WorkflowsConfig)
    checks: ChecksConfig = field(default_factory=ChecksConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ReleaseConfig:
        """Create a config from parsed TOML, falling back to defaults per key."""
        paths: StrDict = get_table(data, "paths") or {}
        branches: StrDict = get_table(data, "branches") or {}
        workflows: StrDict = get_table(data, "workflows") or {}
        checks: StrDict = get_table(data, "checks") or {}
        polling: StrDict = get_table(data, "polling") or {}

        dp = PathsConfig()
        db = BranchesConfig()
        dw = WorkflowsConfig()
        dc = ChecksConfig()
        dpoll = PollingConfig()

        return cls(
            paths=PathsConfig(
                citation=get_str(paths, "citation") or dp.citation,
                odd=get_str(paths, "odd") or dp.odd,
            ),
            branches=BranchesConfig(
                remote=get_str(branches, "remote") or db.remote,
                dev=get_str(branches, "dev") or db.dev,
                main=get_str(branches, "main") or db.main,
            ),
            workflows=WorkflowsConfig(
                build_site=get_str(workflows, "build_site") or dw.build_site,
                citation_metadata=get_str(workflows, "citation_metadata")
                or dw.citation_metadata,
                release_helper=get_str(workflows, "release_helper") or dw.release_helper,
                release_helper_file=get_str(workflows, "release_helper_file")
                or dw.release_helper_file,
                citation_metadata_path=get_str(workflows, "citation_metadata_path")
                or dw.citation_metadata_path,
                release_helper_path=get_str(workflows, "release_helper_path")
                or dw.release_helper_path,
                site_build_path=get_str(workflows, "site_build_path") or dw.site_build_path,
            ),
            checks=ChecksConfig(
                dev_required=get_str(checks, "dev_required") or dc.dev_required,
                dev_recommended=get_str(checks, "dev_recommended") or dc.dev_recommended,
                citation_token_secret=get_str(checks, "citation_token_secret")
                or dc.citation_token_secret,
            ),
            polling=PollingConfig(
                pr_interval=_or_default(get_float(polling, "pr_interval"), dpoll.pr_interval),
                run_interval=_or_default(get_float(polling, "run_interval"), dpoll.run_interval),
                dispatch_interval=_or_default(
                    get_float(polling, "dispatch_interval"), dpoll.dispatch_interval
                ),
                watch_timeout=_or_default(
                    get_float(polling, "watch_timeout"), dpoll.watch_timeout
                ),
                dispatch_timeout_cap=_or_default(
                    get_float(polling, "dispatch_timeout_cap"), dpoll.dispatch_timeout_cap
                ),
            ),
        )


def _or_default(value: float | None, default: float) -> float:
    return default if value is None else value


def _validate(config: ReleaseConfig, path: Path) -> Result[ReleaseConfig, ConfigError]:
    p = config.polling
    for name, interval in (
        ("pr_interval", p.pr_interval),
        ("run_interval", p.run_interval),
        ("dispatch_interval", p.dispatch_interval),
    ):
        if interval < MIN_POLL_INTERVAL_SECONDS:
            return Err(
                ConfigError(
                    f"polling.{name} must be >= {MIN_POLL_INTERVAL_SECONDS:g}s (got {interval:g})",
                    path=path,
                )
            )
    for name, value in (
        ("watch_timeout", p.watch_timeout),
        ("dispatch_timeout_cap", p.dispatch_timeout_cap),
    ):
        if value <= 0:
            return Err(ConfigError(f"polling.{name} must be positive", path=path))
    return Ok(config)


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    import tomllib

    try:
        data_obj: object = tomllib.loads(path.read_bytes().decode("utf-8"))
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))

    data = as_str_dict(data_obj)
    if data is None:
        return Err(ConfigError("Config root must be a TOML table", path=path))
    return Ok(data)


def load_config(path: Path) -> Result[ReleaseConfig, ConfigError]:
    """Load and validate ``release.toml``.

    Args:
        path: Path to the TOML file.

    Returns:
        Ok(ReleaseConfig) on success, Err(ConfigError) otherwise.
    """
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result
    return _validate(ReleaseConfig.from_dict(result.value), path)


def load_config_or_default(repo_root: Path) -> Result[ReleaseConfig, ConfigError]:
    """Load ``<repo_root>/release.toml`` when present, defaults otherwise."""
    path = repo_root / CONFIG_FILE_NAME
    if not path.exists():
        return Ok(ReleaseConfig())
    return load_config(path)
