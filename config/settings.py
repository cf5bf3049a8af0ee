from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    # "memory" keeps everything in-process (demo / tests), "neo4j" persists to the graph
    store_backend: str = Field(default="neo4j", alias="STORE_BACKEND")

    neo4j_uri: str = Field(default="bolt://localhost:7687", alias="NEO4J_URI")
    neo4j_user: str = Field(default="neo4j", alias="NEO4J_USER")
    neo4j_password: str = Field(default="compliancepassword123", alias="NEO4J_PASSWORD")
    neo4j_database: str = Field(default="neo4j", alias="NEO4J_DATABASE")

    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    debug: bool = Field(default=True, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # ── Geolocation / VPN detection ───────────────────────────────────────────
    geo_cache_ttl_seconds: int = Field(default=3600, alias="GEO_CACHE_TTL_SECONDS")
    geo_lookup_timeout: float = Field(default=0.5, alias="GEO_LOOKUP_TIMEOUT")
    geo_lookup_retries: int = Field(default=1, alias="GEO_LOOKUP_RETRIES")
    ip_geolocation_url: str = Field(default="https://ipapi.co", alias="IP_GEOLOCATION_URL")
    ip_geolocation_api_key: str = Field(default="", alias="IP_GEOLOCATION_API_KEY")
    vpn_detection_url: str = Field(default="https://vpnapi.io/api", alias="VPN_DETECTION_URL")
    vpn_detection_api_key: str = Field(default="", alias="VPN_DETECTION_API_KEY")

    # ── KYC / AML providers ───────────────────────────────────────────────────
    kyc_provider_url: str = Field(default="https://api.verifymy.com", alias="KYC_PROVIDER_URL")
    kyc_provider_api_key: str = Field(default="", alias="KYC_PROVIDER_API_KEY")
    aml_screening_url: str = Field(default="https://api.complyadvantage.com", alias="AML_SCREENING_URL")
    aml_screening_api_key: str = Field(default="", alias="AML_SCREENING_API_KEY")
    kyc_check_timeout: float = Field(default=5.0, alias="KYC_CHECK_TIMEOUT")
    kyc_expiry_days: int = Field(default=30, alias="KYC_EXPIRY_DAYS")
    kyc_auto_approve_score: int = Field(default=85, alias="KYC_AUTO_APPROVE_SCORE")
    kyc_auto_reject_score: int = Field(default=60, alias="KYC_AUTO_REJECT_SCORE")

    # empty → notifications are only logged
    notification_webhook_url: str = Field(default="", alias="NOTIFICATION_WEBHOOK_URL")

    # ── Payment thresholds (integer cents) ────────────────────────────────────
    basic_verification_threshold: int = Field(default=50_000, alias="BASIC_VERIFICATION_THRESHOLD")
    enhanced_verification_threshold: int = Field(default=300_000, alias="ENHANCED_VERIFICATION_THRESHOLD")
    business_verification_threshold: int = Field(default=1_000_000, alias="BUSINESS_VERIFICATION_THRESHOLD")
    aml_reporting_threshold: int = Field(default=1_000_000, alias="AML_REPORTING_THRESHOLD")

    # ── Payment processors ────────────────────────────────────────────────────
    card_processor_url: str = Field(default="https://payments.example.com/api", alias="CARD_PROCESSOR_URL")
    card_processor_api_key: str = Field(default="", alias="CARD_PROCESSOR_API_KEY")
    payout_processor_url: str = Field(default="https://payouts.example.com/api", alias="PAYOUT_PROCESSOR_URL")
    payout_processor_api_key: str = Field(default="", alias="PAYOUT_PROCESSOR_API_KEY")
    payout_countries: str = Field(default="US,CA,MX,BR,GB,DE,FR,ES", alias="PAYOUT_COUNTRIES")

    # ── Background jobs ───────────────────────────────────────────────────────
    job_max_attempts: int = Field(default=5, alias="JOB_MAX_ATTEMPTS")
    job_backoff_base_seconds: float = Field(default=1.0, alias="JOB_BACKOFF_BASE_SECONDS")
    job_backoff_max_seconds: float = Field(default=300.0, alias="JOB_BACKOFF_MAX_SECONDS")
    job_workers: int = Field(default=2, alias="JOB_WORKERS")

    model_config = {"env_file": ".env", "populate_by_name": True}

    @property
    def payment_thresholds(self) -> dict:
        return {
            "basic": self.basic_verification_threshold,
            "enhanced": self.enhanced_verification_threshold,
            "business": self.business_verification_threshold,
            "aml_reporting": self.aml_reporting_threshold,
        }


settings = Settings()
