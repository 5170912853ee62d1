import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    # Upstream API origins
    api_url: str = Field(default="https://ssl.winsnip.xyz", alias="API_URL")
    api_url_fallback: str = Field(
        default="https://ssl2.winsnip.xyz", alias="API_URL_FALLBACK"
    )
    api_timeout: float = Field(default=15.0, alias="API_TIMEOUT")
    api_retries: int = Field(default=2, alias="API_RETRIES")
    api_load_balancing: bool = Field(default=True, alias="API_LOAD_BALANCING")

    # Cache Configuration
    cache_max_size: int = Field(default=1000, alias="CACHE_MAX_SIZE")

    # Runtime
    environment: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    @property
    def base_urls(self) -> list[str]:
        """Configured origins, primary first, without blanks or duplicates."""
        urls: list[str] = []
        for url in (self.api_url, self.api_url_fallback):
            if url and url not in urls:
                urls.append(url)
        return urls

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


global_settings = Settings.model_validate(dict(os.environ))
