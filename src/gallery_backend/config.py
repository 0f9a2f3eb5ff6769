from __future__ import annotations

from typing import ClassVar, final

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [x.strip() for x in value.split(",") if x.strip()]


_STORAGE_PROVIDERS = {"local", "s3", "openlist"}


@final
class Settings(BaseSettings):
    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )
    app_name: str = "Gallery Backend"
    api_prefix: str = "/api/v1"

    # Environment (ENVIRONMENT): development | production
    environment: str = "development"

    database_url: str = "sqlite:///./dev.db"
    log_level: str = "INFO"

    # Primary env: CORS_ALLOW_ORIGINS; also accept CORS_ORIGINS as alias.
    cors_allow_origins: str = Field(
        default="*",
        validation_alias=AliasChoices("CORS_ALLOW_ORIGINS", "CORS_ORIGINS"),
    )

    # Operator token; requests bearing it are treated as authenticated admins.
    admin_api_token: str = "admin_api_token_change_me"

    # Active backend: local | s3 | openlist
    storage_provider: str = "local"

    # Local storage
    storage_local_dir: str = ".data/storage"
    # Empty means the local backend has no public URL scheme.
    storage_local_public_base_url: str = ""

    # S3 / S3-compatible
    s3_endpoint_url: str = ""
    s3_region: str = ""
    s3_bucket: str = ""
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    s3_force_path_style: bool = False
    s3_public_base_url: str = ""

    # OpenList remote file service
    openlist_base_url: str = ""
    openlist_token: str = ""
    openlist_root_path: str = ""
    openlist_upload_endpoint: str = "/api/fs/put"
    openlist_download_endpoint: str = ""
    openlist_meta_endpoint: str = "/api/fs/get"
    openlist_list_endpoint: str = "/api/fs/list"
    openlist_delete_endpoint: str = "/api/fs/remove"
    openlist_path_field: str = "path"
    openlist_cdn_url: str = ""
    openlist_request_timeout_seconds: float = 30.0

    # Validate production settings early to fail fast on unsafe defaults.
    @model_validator(mode="after")
    def _validate_settings(self) -> "Settings":  # pyright: ignore[reportUnusedFunction]
        provider = self.storage_provider.strip().lower()
        if provider not in _STORAGE_PROVIDERS:
            raise ValueError(
                f"STORAGE_PROVIDER must be one of {sorted(_STORAGE_PROVIDERS)}, got {provider!r}"
            )

        if self.environment.strip().lower() != "production":
            return self

        errors: list[str] = []

        token = self.admin_api_token.strip()
        if not token or token == "admin_api_token_change_me":
            errors.append("ADMIN_API_TOKEN must be set in production")

        cors_v = self.cors_allow_origins.strip()
        if not cors_v or cors_v == "*":
            errors.append("CORS_ALLOW_ORIGINS must be explicit (not '*') in production")

        if provider == "s3":
            s3_fields = {
                "S3_BUCKET": self.s3_bucket.strip(),
                "S3_ENDPOINT_URL": self.s3_endpoint_url.strip(),
                "S3_ACCESS_KEY_ID": self.s3_access_key_id.strip(),
                "S3_SECRET_ACCESS_KEY": self.s3_secret_access_key.strip(),
            }
            if any(not v for v in s3_fields.values()):
                missing = ",".join([k for k, v in s3_fields.items() if not v])
                errors.append(f"S3 config incomplete in production; missing: {missing}")

        # The OpenList token is checked lazily on first request, but the base URL
        # has no sensible default.
        if provider == "openlist" and not self.openlist_base_url.strip():
            errors.append("OPENLIST_BASE_URL must be set when STORAGE_PROVIDER=openlist")

        if errors:
            raise ValueError("Invalid production settings: " + "; ".join(errors))
        return self

    def cors_origins_list(self) -> list[str]:
        v = self.cors_allow_origins.strip()
        if not v:
            return []
        if v == "*":
            return ["*"]
        return _split_csv(v)

    def security_warnings(self) -> list[str]:
        warnings: list[str] = []
        if self.admin_api_token == "admin_api_token_change_me":
            warnings.append("ADMIN_API_TOKEN is using placeholder value")
        if self.cors_allow_origins.strip() == "*":
            warnings.append("CORS_ALLOW_ORIGINS='*' is permissive")
        return warnings


settings = Settings()
