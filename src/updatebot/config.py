from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import tomllib
from typing import cast


@dataclass(frozen=True)
class RuntimeConfig:
    dry_run: bool = False
    rebase_mode: bool = False
    pull_request_labels: tuple[str, ...] = ()
    mergeable_poll_attempts: int = 3
    mergeable_poll_interval_seconds: float = 2.0
    state_dir: Path | None = None


@dataclass(frozen=True)
class RepoConfig:
    repo_id: str
    owner: str | None
    name: str | None
    default_branch: str
    remote_url: str | None

    @property
    def is_github(self) -> bool:
        return self.owner is not None and self.name is not None

    @property
    def full_name(self) -> str:
        if self.owner is None or self.name is None:
            return self.repo_id
        return f"{self.owner}/{self.name}"

    @property
    def effective_remote_url(self) -> str:
        if self.remote_url:
            return self.remote_url
        return f"git@github.com:{self.owner}/{self.name}.git"


@dataclass(frozen=True)
class AppConfig:
    runtime: RuntimeConfig
    repos: tuple[RepoConfig, ...]

    def repo_by_id(self, repo_id: str) -> RepoConfig:
        candidate = repo_id.strip()
        for repo in self.repos:
            if candidate == repo.repo_id or candidate == repo.full_name:
                return repo
        available = ", ".join(sorted(repo.repo_id for repo in self.repos))
        raise ConfigError(f"Unknown repo {candidate!r}; expected one of: {available}")


class ConfigError(ValueError):
    pass


def load_config(path: Path) -> AppConfig:
    with path.open("rb") as fh:
        data = tomllib.load(fh)

    runtime_data = _optional_table(data, "runtime") or {}
    repo_data = _require_table(data, "repo")

    runtime = RuntimeConfig(
        dry_run=_bool_with_default(runtime_data, "dry_run", False),
        rebase_mode=_bool_with_default(runtime_data, "rebase_mode", False),
        pull_request_labels=_labels_with_default(runtime_data, "pull_request_labels", ()),
        mergeable_poll_attempts=_int_with_default(runtime_data, "mergeable_poll_attempts", 3),
        mergeable_poll_interval_seconds=_number_with_default(
            runtime_data, "mergeable_poll_interval_seconds", 2.0
        ),
        state_dir=_optional_path(runtime_data, "state_dir"),
    )

    if runtime.mergeable_poll_attempts < 1:
        raise ConfigError("runtime.mergeable_poll_attempts must be >= 1")
    if runtime.mergeable_poll_interval_seconds < 0:
        raise ConfigError("runtime.mergeable_poll_interval_seconds must be >= 0")

    return AppConfig(runtime=runtime, repos=_load_repo_configs(repo_data))


def _load_repo_configs(repo_data: dict[str, object]) -> tuple[RepoConfig, ...]:
    if not repo_data:
        raise ConfigError("[repo] must define at least one [repo.<id>] table")

    repos: list[RepoConfig] = []
    for repo_id, raw_value in sorted(repo_data.items()):
        repo_table = _require_repo_table(raw_value, table_name=f"[repo.{repo_id}]")
        repos.append(_parse_repo_config(repo_id=repo_id, repo_data=repo_table))
    _ensure_unique_full_names(repos)
    return tuple(repos)


def _parse_repo_config(*, repo_id: str, repo_data: dict[str, object]) -> RepoConfig:
    owner = _optional_str(repo_data, "owner")
    name = _optional_str(repo_data, "name")
    remote_url = _optional_str(repo_data, "remote_url")
    if owner is not None and name is None:
        name = repo_id
    if owner is None and name is not None:
        raise ConfigError(f"[repo.{repo_id}] sets name without owner")
    if owner is None and remote_url is None:
        raise ConfigError(f"[repo.{repo_id}] needs owner/name or remote_url")
    return RepoConfig(
        repo_id=repo_id,
        owner=owner,
        name=name,
        default_branch=_str_with_default(repo_data, "default_branch", "main"),
        remote_url=remote_url,
    )


def _require_table(data: dict[str, object], key: str) -> dict[str, object]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] is required and must be a TOML table")
    return cast(dict[str, object], value)


def _optional_table(data: dict[str, object], key: str) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a TOML table when provided")
    return cast(dict[str, object], value)


def _require_repo_table(value: object, *, table_name: str) -> dict[str, object]:
    if not isinstance(value, dict):
        raise ConfigError(f"{table_name} must be a TOML table")
    return cast(dict[str, object], value)


def _optional_str(data: dict[str, object], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string if provided")
    return value


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _number_with_default(data: dict[str, object], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ConfigError(f"{key} must be a number")
    return float(value)


def _bool_with_default(data: dict[str, object], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def _str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string")
    return value


def _optional_path(data: dict[str, object], key: str) -> Path | None:
    value = _optional_str(data, key)
    if value is None:
        return None
    return Path(value).expanduser()


def _labels_with_default(
    data: dict[str, object], key: str, default: tuple[str, ...]
) -> tuple[str, ...]:
    value = data.get(key, list(default))
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list of strings")
    labels: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ConfigError(f"{key} must be a list of strings")
        label = item.strip()
        if not label:
            raise ConfigError(f"{key} entries must be non-empty strings")
        if label not in labels:
            labels.append(label)
    return tuple(labels)


def _ensure_unique_full_names(repos: list[RepoConfig]) -> None:
    seen: dict[str, str] = {}
    for repo in repos:
        existing_id = seen.get(repo.full_name)
        if existing_id is not None:
            raise ConfigError(
                f"Duplicate repo full_name {repo.full_name!r} across repo ids "
                f"{existing_id!r} and {repo.repo_id!r}"
            )
        seen[repo.full_name] = repo.repo_id
