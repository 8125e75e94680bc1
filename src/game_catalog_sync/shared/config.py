"""アプリケーション全体で共有する設定ローダー。"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AnyHttpUrl, BaseModel, Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

EnvName = Literal["local", "test", "staging", "production"]


class ServiceAuthSettings(BaseModel):
    """外部から起動されるジョブの認証設定。"""

    token: SecretStr | None = Field(None, description="Bearer で照合するサービス資格情報")


class CatalogSourceSettings(BaseModel):
    """外部カタログ API 共通の接続・レート設定。"""

    base_url: AnyHttpUrl
    api_key: SecretStr | None = None
    rate_per_second: float = Field(1.0, gt=0, description="持続レート (requests/second)")
    burst: int = Field(5, ge=1, description="バースト上限")
    timeout_seconds: float = Field(10.0, gt=0, description="1 リクエストあたりのタイムアウト")


class SteamSettings(CatalogSourceSettings):
    """Steam ストア API。Steam は 5 分あたり約 200 リクエストまで。"""

    base_url: AnyHttpUrl = Field("https://store.steampowered.com/api/appdetails")
    rate_per_second: float = Field(0.5, gt=0)
    burst: int = Field(5, ge=1)
    country_code: str = Field("us", description="価格通貨を揃えるための国コード")


class SteamSpySettings(CatalogSourceSettings):
    """SteamSpy 統計 API。"""

    base_url: AnyHttpUrl = Field("https://steamspy.com/api.php")
    rate_per_second: float = Field(1.0, gt=0)
    burst: int = Field(4, ge=1)


class OpenCriticSettings(CatalogSourceSettings):
    """OpenCritic API。1 分あたり約 60 リクエスト。"""

    base_url: AnyHttpUrl = Field("https://api.opencritic.com/api")
    rate_per_second: float = Field(1.0, gt=0)
    burst: int = Field(5, ge=1)


class RawgSettings(CatalogSourceSettings):
    """RAWG API。1 秒あたり 5 リクエスト。"""

    base_url: AnyHttpUrl = Field("https://api.rawg.io/api")
    rate_per_second: float = Field(5.0, gt=0)
    burst: int = Field(10, ge=1)
    page_size: int = Field(40, ge=1, le=40)


class GeminiSettings(BaseModel):
    """Gemini(API) による埋め込み生成の設定。"""

    api_key: SecretStr | None = Field(None, description="Google API key for Gemini")
    model: str = Field("text-embedding-004", description="利用するモデル名")
    rate_limit_per_minute: int = Field(60, ge=1)


class VectorServiceSettings(BaseModel):
    """外部ベクトルサービス (Pinecone 互換) の設定。未設定なら利用しない。"""

    index_host: AnyHttpUrl | None = Field(None, description="https://<index>-<env>.svc.pinecone.io")
    api_key: SecretStr | None = None
    timeout_seconds: float = Field(10.0, gt=0)

    @property
    def enabled(self) -> bool:
        return self.index_host is not None and self.api_key is not None


class StorageSettings(BaseModel):
    """データ保存関連の設定。"""

    sqlite_path: Path = Field(Path("./var/game_catalog.db"), description="SQLite DB のパス")


class RetrySettings(BaseModel):
    """外部呼び出しの再試行ポリシー。"""

    max_attempts: int = Field(3, ge=1)
    base_delay_seconds: float = Field(1.0, ge=0)
    max_delay_seconds: float = Field(10.0, ge=0)


class IngestionSettings(BaseModel):
    """インジェスト実行時の既定値。CLI 引数で上書きできる。"""

    batch_size: int | None = Field(None, ge=1, description="未指定ならジョブ既定の件数")
    max_workers: int = Field(1, ge=1, description="レコードを並列処理するワーカー数")
    max_pages: int = Field(3, ge=1, description="ページング取得の最大ページ数")
    progress_interval: int = Field(50, ge=1)
    opencritic_min_confidence: float = Field(0.8, ge=0, le=1)
    opencritic_refresh_days: int = Field(30, ge=1)
    retry: RetrySettings = Field(default_factory=RetrySettings)


class AppSettings(BaseSettings):
    """共有設定。`.env` 読み込みと環境変数バリデーションを担う。"""

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    environment: EnvName = Field("local", description="実行環境識別子")
    log_level: str = Field("INFO", description="ルートロガーのログレベル")
    log_json: bool = Field(False, description="JSON 形式でログを出力する")
    service: ServiceAuthSettings = Field(default_factory=ServiceAuthSettings)
    steam: SteamSettings = Field(default_factory=SteamSettings)
    steamspy: SteamSpySettings = Field(default_factory=SteamSpySettings)
    opencritic: OpenCriticSettings = Field(default_factory=OpenCriticSettings)
    rawg: RawgSettings = Field(default_factory=RawgSettings)
    gemini: GeminiSettings = Field(default_factory=GeminiSettings)
    vector_service: VectorServiceSettings = Field(default_factory=VectorServiceSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """設定をロードし、再利用する。

    LRU キャッシュによりプロセス内での重複読み込みを防ぎ、
    `pytest` などから `get_settings.cache_clear()` を呼び出すことで再読込できる。
    """

    try:
        return AppSettings()
    except ValidationError as exc:  # pragma: no cover - ValidationError carries context
        raise ConfigurationError(str(exc)) from exc


__all__ = [
    "AppSettings",
    "CatalogSourceSettings",
    "EnvName",
    "GeminiSettings",
    "IngestionSettings",
    "OpenCriticSettings",
    "RawgSettings",
    "RetrySettings",
    "ServiceAuthSettings",
    "SteamSettings",
    "SteamSpySettings",
    "StorageSettings",
    "VectorServiceSettings",
    "get_settings",
]
