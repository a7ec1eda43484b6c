"""Configuration for the release cycle.

Settings come from an optional YAML file and are then overridden by the
environment variables GitHub Actions provides to every job:

    GITHUB_TOKEN        -> token
    GITHUB_REPOSITORY   -> repository ("owner/name")
    GITHUB_SHA          -> revision
    GITHUB_RUN_ID       -> run_id
    GITHUB_API_URL      -> api_url
    DUMP_RELEASE_WORKDIR -> workdir

Example ``dump-release.yaml``:

    repository: myorg/crates-dump
    producer:
      command: ["./target/release/rust-dump"]
      timeout_seconds: 3600
    retention:
      threshold: 2
      unparsable: fail
    schedule:
      interval_seconds: 10800
"""

from __future__ import annotations

import os
from enum import StrEnum
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator

from dump_release.timestamps import DEFAULT_PRIOR_TIMESTAMP

ENV_OVERRIDES = {
    "GITHUB_TOKEN": "token",
    "GITHUB_REPOSITORY": "repository",
    "GITHUB_SHA": "revision",
    "GITHUB_RUN_ID": "run_id",
    "GITHUB_API_URL": "api_url",
    "DUMP_RELEASE_WORKDIR": "workdir",
}


class UnparsablePolicy(StrEnum):
    """What retention does with a release whose title is not a timestamp.

    FAIL: abort the retention pass (nothing is deleted)
    EXCLUDE: leave that release out of the oldest-release computation
    """

    FAIL = "fail"
    EXCLUDE = "exclude"


class ProducerConfig(BaseModel):
    """How to run the producer."""

    command: list[str] = Field(default_factory=lambda: ["./target/release/rust-dump"])
    timeout_seconds: float | None = Field(None, gt=0)

    @field_validator("command")
    @classmethod
    def check_command(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("producer.command must name a program")
        return value


class RetentionConfig(BaseModel):
    """Retention rule: once ``threshold`` releases exist, delete the oldest."""

    threshold: int = Field(2, ge=1)
    unparsable: UnparsablePolicy = UnparsablePolicy.FAIL


class ScheduleConfig(BaseModel):
    """Periodic trigger used by the HTTP service. 0 disables it."""

    interval_seconds: float = Field(0, ge=0)


class Settings(BaseModel):
    """Top-level configuration."""

    repository: str = ""
    token: SecretStr = SecretStr("")
    api_url: str = "https://api.github.com"
    upload_url: str = "https://uploads.github.com"
    http_timeout_seconds: float = Field(60.0, gt=0)

    workdir: Path = Path(".")
    producer: ProducerConfig = Field(default_factory=ProducerConfig)
    outputs: list[str] = Field(default_factory=lambda: ["categories", "keywords", "dump"])
    title_file: str = "last_updated"
    archive_name: str = "data.tar.zst"

    default_prior_timestamp: str = DEFAULT_PRIOR_TIMESTAMP
    tag_prefix: str = "release"
    revision: str | None = None
    run_id: str | None = None

    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)

    @field_validator("outputs")
    @classmethod
    def check_outputs(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("outputs must list at least one path")
        if len(set(value)) != len(value):
            raise ValueError("outputs must not contain duplicates")
        return value


def load_settings(
    path: str | Path | None = None,
    environ: dict[str, str] | None = None,
) -> Settings:
    """Load settings from a YAML file and apply environment overrides.

    Args:
        path: Optional YAML file. A missing file yields defaults.
        environ: Environment mapping (defaults to os.environ).

    Returns:
        Validated Settings.

    Raises:
        ValueError: If the YAML is malformed or fails validation.
    """
    raw: dict = {}
    if path is not None:
        config_path = Path(path)
        if config_path.exists():
            try:
                raw = yaml.safe_load(config_path.read_text()) or {}
            except yaml.YAMLError as exc:
                raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
            if not isinstance(raw, dict):
                raise ValueError(f"Invalid config in {path}: expected a mapping")

    env = os.environ if environ is None else environ
    for var, key in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            raw[key] = value

    try:
        return Settings.model_validate(raw)
    except Exception as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc
