"""全局配置加载模块：从环境变量构建 worker 运行参数并提供缓存访问。"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """worker 运行配置对象，从环境变量读取并提供类型化访问。"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # 兼容旧部署的环境变量名，不可改动。
    subscription: str = Field(default="", validation_alias="OSSMALWARE_WORKER_SUBSCRIPTION")
    packages_bucket: str = Field(default="", validation_alias="OSSF_MALWARE_ANALYSIS_PACKAGES")
    results_bucket: str = Field(default="", validation_alias="OSSF_MALWARE_ANALYSIS_RESULTS")
    image_tag: str = Field(default="", validation_alias="OSSF_SANDBOX_IMAGE_TAG")

    logger_env: str = "prod"
    log_level: str = "INFO"
    log_dir: Path = Field(default=Path("./logs"))
    log_to_file: bool = False
    log_max_bytes: int = 20 * 1024 * 1024
    log_backup_count: int = 5
    log_redaction_mode: str = "standard"
    log_payload_preview_chars: int = 2000

    max_retries: int = Field(default=10, validation_alias="WORKER_MAX_RETRIES")
    retry_interval: float = Field(default=1, validation_alias="WORKER_RETRY_INTERVAL_SECONDS")
    retry_exp_rate: float = Field(default=1.5, validation_alias="WORKER_RETRY_EXP_RATE")

    sandbox_podman_bin: str = "podman"
    sandbox_runtime: str = ""
    sandbox_phase_timeout_seconds: int = 15 * 60
    sandbox_output_max_chars: int = 64 * 1024

    registry_request_timeout_seconds: int = 30

    redis_block_ms: int = 5000
    redis_claim_idle_ms: int = 2 * 60 * 60 * 1000
    sqs_wait_time_seconds: int = 20
    sqs_visibility_timeout_seconds: int = 60 * 60

    aws_region: str = "us-east-1"
    aws_endpoint_url: str | None = None

    @field_validator("retry_exp_rate")
    @classmethod
    def _check_exp_rate(cls, value: float) -> float:
        if value <= 1:
            raise ValueError("retry_exp_rate must be greater than 1")
        return value

    @field_validator("retry_interval")
    @classmethod
    def _check_interval(cls, value: float) -> float:
        if value < 1:
            raise ValueError("retry_interval must be at least 1 second")
        return value

    @field_validator("max_retries")
    @classmethod
    def _check_max_retries(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_retries must be at least 1")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """构建并缓存 Settings，相对日志目录按当前工作目录解析。"""
    settings = Settings()
    if not settings.log_dir.is_absolute():
        settings.log_dir = (Path.cwd() / settings.log_dir).resolve()
    return settings
