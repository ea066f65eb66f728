"""
Service configuration.

Every setting can be overridden with an environment variable of the same
name (upper-cased) or from a local .env file.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # MongoDB
    database_url: Optional[str] = Field(None, description="MongoDB connection string")
    database_name: str = Field("barterx", description="MongoDB database name")

    # Hosted identity provider
    auth_api_key: Optional[str] = Field(None, description="Identity provider web API key")
    auth_base_url: str = Field(
        "https://identitytoolkit.googleapis.com/v1",
        description="Identity provider REST base URL",
    )

    # Image CDN
    cloudinary_cloud_name: str = Field("demo", description="Cloudinary cloud name")
    cloudinary_upload_preset: Optional[str] = Field(None, description="Unsigned upload preset")
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None

    max_item_image_bytes: int = Field(10 * 1024 * 1024, ge=1)
    max_profile_image_bytes: int = Field(5 * 1024 * 1024, ge=1)
    max_item_images: int = Field(2, ge=1)

    http_timeout: int = Field(60, ge=1, description="Timeout for outbound HTTP calls (seconds)")
    cors_origins: str = Field("*", description="Comma-separated list of allowed CORS origins")
    log_level: str = "INFO"
    port: int = 8000

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
