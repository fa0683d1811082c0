import os


def _getenv(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y", "on"}


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_float(name: str, default: float) -> float:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _getenv_csv_list(name: str) -> list[str]:
    raw = _getenv(name)
    if raw is None:
        return []
    parts = [p.strip() for p in raw.split(",")]
    return [p for p in parts if p]


class Settings:
    def __init__(self) -> None:
        self.environment = (_getenv("ENVIRONMENT", "development") or "development").lower()
        self.database_url = _getenv("DATABASE_URL", "sqlite:///./geo_app.db") or "sqlite:///./geo_app.db"
        self.db_auto_create = _getenv_bool("DB_AUTO_CREATE", default=True)
        self.cors_allow_origins = _getenv("CORS_ALLOW_ORIGINS")

        self.supabase_url = _getenv("SUPABASE_URL") or _getenv("VITE_SUPABASE_URL")
        self.supabase_anon_key = _getenv("SUPABASE_ANON_KEY") or _getenv("VITE_SUPABASE_ANON_KEY")
        self.supabase_jwt_secret = _getenv("SUPABASE_JWT_SECRET")
        self.supabase_jwt_audience = _getenv("SUPABASE_JWT_AUD", "authenticated")
        self.supabase_jwt_issuer = _getenv("SUPABASE_JWT_ISSUER")

        self.n8n_webhook_base = (
            _getenv("N8N_WEBHOOK_BASE", "https://n8n.zhi-nao.com/webhook") or "https://n8n.zhi-nao.com/webhook"
        ).rstrip("/")
        self.n8n_webhook_secret = _getenv("N8N_WEBHOOK_SECRET")
        self.webhook_timeout_s = _getenv_float("WEBHOOK_TIMEOUT_S", 30.0)
        self.webhook_proxy_url = _getenv("WEBHOOK_PROXY_URL")

        self.resend_api_key = _getenv("RESEND_API_KEY")
        self.resend_endpoint = _getenv("RESEND_ENDPOINT", "https://api.resend.com/emails") or "https://api.resend.com/emails"
        self.inquiry_from = _getenv("INQUIRY_FROM", "Zhinao GEO <onboarding@resend.dev>") or "Zhinao GEO <onboarding@resend.dev>"
        self.inquiry_to = _getenv_csv_list("INQUIRY_TO")
        self.inquiry_timezone = _getenv("INQUIRY_TIMEZONE", "Asia/Shanghai") or "Asia/Shanghai"

        self.credit_cost_monitoring = _getenv_int("CREDIT_COST_MONITORING", 2)
        self.credit_cost_diagnosis = _getenv_int("CREDIT_COST_DIAGNOSIS", 5)
        self.credit_cost_simulation = _getenv_int("CREDIT_COST_SIMULATION", 3)
        self.monthly_free_quota = _getenv_int("MONTHLY_FREE_QUOTA", 10)
        self.usage_timezone = _getenv("USAGE_TIMEZONE", "UTC") or "UTC"

        self.tracker_poll_interval_s = _getenv_float("TRACKER_POLL_INTERVAL_S", 3.0)
        self.tracker_timeout_s = _getenv_float("TRACKER_TIMEOUT_S", 60.0)
        self.notify_dedup_window_s = _getenv_float("NOTIFY_DEDUP_WINDOW_S", 60.0)
        self.realtime_pg_listen = _getenv_bool("REALTIME_PG_LISTEN", default=False)

    def credit_prices(self) -> dict[str, int]:
        return {
            "monitoring": self.credit_cost_monitoring,
            "diagnosis": self.credit_cost_diagnosis,
            "simulation": self.credit_cost_simulation,
        }

    def resolved_cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        if raw is None:
            return ["http://localhost:5173", "http://localhost:8080"]
        if raw.strip() == "*":
            return ["*"]
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins
