from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import tomllib
from typing import cast


@dataclass(frozen=True)
class RuntimeConfig:
    poll_interval_seconds: int = 60
    cache_max_size: int = 1000
    console_refresh_seconds: int = 2
    log_dir: Path | None = None


@dataclass(frozen=True)
class TrainConfig:
    app_name: str = "mergetrain"
    ready_label: str = "ready-to-merge"
    mutate: bool = False
    enforce_code_freeze: bool = False
    code_freeze_branch_name: str = ""
    fetch_workers: int = 8
    merge_workers: int = 8


@dataclass(frozen=True)
class RepoConfig:
    repo_id: str
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class AppConfig:
    runtime: RuntimeConfig
    train: TrainConfig
    repos: tuple[RepoConfig, ...]


class ConfigError(ValueError):
    pass


def load_config(path: Path) -> AppConfig:
    with path.open("rb") as fh:
        data = tomllib.load(fh)
    return parse_config(cast(dict[str, object], data))


def parse_config(data: dict[str, object]) -> AppConfig:
    runtime_data = _optional_table(data, "runtime") or {}
    train_data = _optional_table(data, "train") or {}
    repo_data = _require_table(data, "repo")

    runtime = RuntimeConfig(
        poll_interval_seconds=_int_with_default(runtime_data, "poll_interval_seconds", 60),
        cache_max_size=_int_with_default(runtime_data, "cache_max_size", 1000),
        console_refresh_seconds=_int_with_default(runtime_data, "console_refresh_seconds", 2),
        log_dir=_optional_path(runtime_data, "log_dir"),
    )
    if runtime.poll_interval_seconds < 5:
        raise ConfigError("runtime.poll_interval_seconds must be >= 5")
    if runtime.cache_max_size < 1:
        raise ConfigError("runtime.cache_max_size must be >= 1")
    if runtime.console_refresh_seconds < 1:
        raise ConfigError("runtime.console_refresh_seconds must be >= 1")

    train = TrainConfig(
        app_name=_str_with_default(train_data, "app_name", "mergetrain"),
        ready_label=_str_with_default(train_data, "ready_label", "ready-to-merge"),
        mutate=_bool_with_default(train_data, "mutate", False),
        enforce_code_freeze=_bool_with_default(train_data, "enforce_code_freeze", False),
        code_freeze_branch_name=_possibly_empty_str_with_default(
            train_data, "code_freeze_branch_name", ""
        ),
        fetch_workers=_int_with_default(train_data, "fetch_workers", 8),
        merge_workers=_int_with_default(train_data, "merge_workers", 8),
    )
    if train.fetch_workers < 1:
        raise ConfigError("train.fetch_workers must be >= 1")
    if train.merge_workers < 1:
        raise ConfigError("train.merge_workers must be >= 1")

    return AppConfig(runtime=runtime, train=train, repos=_load_repo_configs(repo_data))


def _load_repo_configs(repo_data: dict[str, object]) -> tuple[RepoConfig, ...]:
    if not repo_data:
        raise ConfigError("[repo] must define at least one [repo.<id>] table")

    repos: list[RepoConfig] = []
    for repo_id, raw_value in sorted(repo_data.items()):
        repo_table = _require_repo_table(raw_value, table_name=f"[repo.{repo_id}]")
        repos.append(
            RepoConfig(
                repo_id=repo_id,
                owner=_require_str(repo_table, "owner"),
                name=_str_with_default(repo_table, "name", repo_id),
            )
        )
    _ensure_unique_names(repos)
    return tuple(repos)


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


def _require_str(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} is required and must be a non-empty string")
    return value


def _str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string")
    return value


def _possibly_empty_str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    return value.strip()


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _bool_with_default(data: dict[str, object], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def _optional_path(data: dict[str, object], key: str) -> Path | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string if provided")
    return Path(value).expanduser()


def _ensure_unique_names(repos: list[RepoConfig]) -> None:
    # Controllers are keyed by repository name alone.
    seen: dict[str, str] = {}
    for repo in repos:
        existing_id = seen.get(repo.name)
        if existing_id is not None:
            raise ConfigError(
                f"Duplicate repo name {repo.name!r} across repo ids "
                f"{existing_id!r} and {repo.repo_id!r}"
            )
        seen[repo.name] = repo.repo_id
