"""配置管理 — Pydantic Settings 从 TOML 加载。"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from drawbuddy.errors import ConfigError

_DEFAULT_TOML = Path(__file__).resolve().parent.parent / "config" / "default.toml"


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3001
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    allowed_origin: str = "http://localhost:5173"


class LLMConfig(BaseModel):
    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4-turbo"
    timeout: float = 30.0
    critique_max_tokens: int = 50
    keyword_max_tokens: int = 10
    critique_language: str = "Russian"
    keyword_language: str = "English"


class TTSConfig(BaseModel):
    default_backend: Literal["openai", "edge"] = "openai"
    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""  # 为空时沿用 llm.api_key
    model: str = "tts-1"
    voice: str = "alloy"
    edge_voice: str = "ru-RU-SvetlanaNeural"
    timeout: float = 30.0


class SearchConfig(BaseModel):
    endpoint: str = "https://www.googleapis.com/customsearch/v1"
    api_key: str = ""
    cse_id: str = ""
    count: int = 3
    timeout: float = 10.0


class PipelineConfig(BaseModel):
    history_size: int = 3
    speech_required: bool = True
    heartbeat_timeout: int = 90


class Settings(BaseSettings):
    server: ServerConfig = ServerConfig()
    llm: LLMConfig = LLMConfig()
    tts: TTSConfig = TTSConfig()
    search: SearchConfig = SearchConfig()
    pipeline: PipelineConfig = PipelineConfig()

    model_config = {
        "env_prefix": "DRAWBUDDY_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "extra": "ignore",
    }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # TOML 以 init 参数传入，环境变量和 .env 优先于它
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @property
    def search_configured(self) -> bool:
        return bool(self.search.api_key and self.search.cse_id)

    def missing_credentials(self) -> list[str]:
        """列出缺失的必需凭据（搜索凭据可选）。"""
        missing: list[str] = []
        if not self.llm.api_key:
            missing.append("llm.api_key")
        if self.tts.default_backend == "openai" and not (self.tts.api_key or self.llm.api_key):
            missing.append("tts.api_key")
        return missing

    def require_credentials(self) -> None:
        missing = self.missing_credentials()
        if missing:
            raise ConfigError(f"Missing required credentials: {', '.join(missing)}")


def load_settings(toml_path: Path = _DEFAULT_TOML) -> Settings:
    """从 TOML 文件加载配置，环境变量可覆盖。"""
    import sys

    if sys.version_info >= (3, 11):
        import tomllib
    else:
        import tomli as tomllib

    if toml_path.exists():
        with open(toml_path, "rb") as f:
            data = tomllib.load(f)
        return Settings(**data)
    return Settings()
