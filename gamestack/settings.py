from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass


def _env(environ: Mapping[str, str], key: str, default: str = "") -> str:
    val = environ.get(key, "").strip()
    return val or default


def _env_float(environ: Mapping[str, str], key: str, default: float) -> float:
    raw = _env(environ, key)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be a number, got {raw!r}") from e


@dataclass(frozen=True, slots=True)
class AwsSettings:
    region: str
    # Override for the scheduler RPC surface (local emulation/tests).
    ecs_endpoint: str | None = None
    s3_endpoint: str | None = None


@dataclass(frozen=True, slots=True)
class MinecraftSettings:
    cluster: str = ""
    service: str = ""
    bucket: str = ""
    backup_prefix: str = "backups"
    data_dir: str = "/srv/minecraft-data"
    git_user_name: str = "GameStack Bot"
    git_user_email: str = "gamestack-bot@example.com"
    git_token: str = ""
    stable_timeout: float = 600.0


@dataclass(frozen=True, slots=True)
class ControllerSettings:
    aws: AwsSettings
    minecraft: MinecraftSettings
    state_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    operation_timeout: float = 1800.0


def aws_settings_from_env(environ: Mapping[str, str] | None = None) -> AwsSettings:
    env = os.environ if environ is None else environ
    return AwsSettings(
        region=_env(env, "AWS_REGION", "us-east-1"),
        ecs_endpoint=_env(env, "ECS_ENDPOINT_URL") or None,
        s3_endpoint=_env(env, "S3_ENDPOINT_URL") or None,
    )


def minecraft_settings_from_env(environ: Mapping[str, str] | None = None) -> MinecraftSettings:
    env = os.environ if environ is None else environ
    return MinecraftSettings(
        cluster=_env(env, "ECS_CLUSTER_NAME"),
        service=_env(env, "ECS_SERVICE_MINECRAFT"),
        bucket=_env(env, "BACKUP_BUCKET"),
        backup_prefix=_env(env, "BACKUP_PREFIX", "backups").strip("/"),
        data_dir=_env(env, "MC_DATA_DIR", "/srv/minecraft-data"),
        git_user_name=_env(env, "GIT_USER_NAME", "GameStack Bot"),
        git_user_email=_env(env, "GIT_USER_EMAIL", "gamestack-bot@example.com"),
        git_token=_env(env, "GIT_AUTH_TOKEN"),
        stable_timeout=_env_float(env, "ECS_STABLE_TIMEOUT_SECONDS", 600.0),
    )


def settings_from_env(environ: Mapping[str, str] | None = None) -> ControllerSettings:
    env = os.environ if environ is None else environ
    backend = _env(env, "GAMESTACK_STATE_BACKEND", "memory").lower()
    if backend not in {"memory", "redis"}:
        raise ValueError(f"GAMESTACK_STATE_BACKEND must be 'memory' or 'redis', got {backend!r}")

    return ControllerSettings(
        aws=aws_settings_from_env(env),
        minecraft=minecraft_settings_from_env(env),
        state_backend=backend,
        redis_url=_env(env, "REDIS_URL", "redis://localhost:6379/0"),
        operation_timeout=_env_float(env, "GAMESTACK_OPERATION_TIMEOUT_SECONDS", 1800.0),
    )
