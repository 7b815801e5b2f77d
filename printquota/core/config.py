import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_cors_origins(v: Any) -> List[str]:
    if v is None or v == "":
        return _DEFAULT_CORS.copy()
    if isinstance(v, list):
        return [x for x in v if isinstance(x, str) and x.strip()]
    s = str(v).strip()
    if not s:
        return _DEFAULT_CORS.copy()
    if s.startswith("["):
        import json
        try:
            out = json.loads(s)
        except ValueError:
            return _DEFAULT_CORS.copy()
        return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
    return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()


class BillingConfig(BaseModel):
    """Billing values frozen at process start and passed into services."""
    model_config = ConfigDict(frozen=True)

    a3_to_a4_ratio: float = 2.0
    default_page_balance: int = 100
    estimate_on_conversion_failure: bool = False


class PaymentConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_amount: int = 2_000
    max_amount: int = 500_000
    min_pages: int = 10
    max_pages: int = 500
    memo_tag: str = "SSPS"
    payment_method: str = "SePay"
    bank_id: str = "BIDV"
    account_no: str = "96247SSPS"
    qr_template: str = "compact2"
    qr_base_url: str = "https://img.vietqr.io/image"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017/?replicaSet=rs0", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="printquota", alias="MONGODB_DB_NAME")

    # Storage
    storage_local_path: str = Field(default="./uploads", alias="STORAGE_LOCAL_PATH")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    # Billing
    a3_to_a4_ratio: float = Field(default=2.0, gt=0, alias="A3_TO_A4_RATIO")
    default_page_balance: int = Field(default=100, ge=0, alias="DEFAULT_PAGE_BALANCE")
    estimate_on_conversion_failure: bool = Field(default=False, alias="ESTIMATE_ON_CONVERSION_FAILURE")

    # Document conversion
    libreoffice_path: str | None = Field(default=None, alias="LIBREOFFICE_PATH")
    converter_timeout_seconds: float = Field(default=30.0, gt=0, alias="CONVERTER_TIMEOUT_SECONDS")
    conversion_work_dir: str = Field(
        default=str(Path(tempfile.gettempdir()) / "printquota-convert"),
        alias="CONVERSION_WORK_DIR",
    )
    convertapi_secret: str = Field(default="", alias="CONVERTAPI_SECRET")
    convertapi_base_url: str = Field(default="https://v2.convertapi.com", alias="CONVERTAPI_BASE_URL")

    # SePay / VietQR
    sepay_api_key: str = Field(default="", alias="SEPAY_API_KEY")
    payment_memo_tag: str = Field(default="SSPS", alias="PAYMENT_MEMO_TAG")
    bank_id: str = Field(default="BIDV", alias="BANK_ID")
    bank_account_no: str = Field(default="96247SSPS", alias="BANK_ACCOUNT_NO")
    payment_qr_template: str = Field(default="compact2", alias="PAYMENT_QR_TEMPLATE")
    payment_qr_base_url: str = Field(default="https://img.vietqr.io/image", alias="PAYMENT_QR_BASE_URL")

    # Top-up bounds
    topup_min_amount: int = Field(default=2_000, alias="TOPUP_MIN_AMOUNT")
    topup_max_amount: int = Field(default=500_000, alias="TOPUP_MAX_AMOUNT")
    topup_min_pages: int = Field(default=10, alias="TOPUP_MIN_PAGES")
    topup_max_pages: int = Field(default=500, alias="TOPUP_MAX_PAGES")

    def billing_config(self) -> BillingConfig:
        return BillingConfig(
            a3_to_a4_ratio=self.a3_to_a4_ratio,
            default_page_balance=self.default_page_balance,
            estimate_on_conversion_failure=self.estimate_on_conversion_failure,
        )

    def payment_config(self) -> PaymentConfig:
        return PaymentConfig(
            min_amount=self.topup_min_amount,
            max_amount=self.topup_max_amount,
            min_pages=self.topup_min_pages,
            max_pages=self.topup_max_pages,
            memo_tag=self.payment_memo_tag,
            bank_id=self.bank_id,
            account_no=self.bank_account_no,
            qr_template=self.payment_qr_template,
            qr_base_url=self.payment_qr_base_url,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


@lru_cache
def get_billing_config() -> BillingConfig:
    return get_settings().billing_config()


@lru_cache
def get_payment_config() -> PaymentConfig:
    return get_settings().payment_config()
