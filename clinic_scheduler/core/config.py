import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic_scheduler.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)
STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", "5"))

# Two daily shifts split into fixed-width slots.
CLINIC_SHIFTS = os.getenv("CLINIC_SHIFTS", "10:00-15:00,17:00-20:00")
SLOT_GRANULARITY_MINUTES = int(os.getenv("SLOT_GRANULARITY_MINUTES", "15"))
CLOSED_WEEKDAYS = _get_list(os.getenv("CLOSED_WEEKDAYS"))
# Per-weekday windows replacing CLINIC_SHIFTS, e.g. "5=10:00-13:00;6=09:00-12:00".
CLINIC_WEEKDAY_SHIFTS = os.getenv("CLINIC_WEEKDAY_SHIFTS", "")

TENANT_HEADER = os.getenv("TENANT_HEADER", "X-Tenant-Code")

NOTIFICATION_WEBHOOK_URL = os.getenv("NOTIFICATION_WEBHOOK_URL", "")
NOTIFICATION_TIMEOUT_SECONDS = float(os.getenv("NOTIFICATION_TIMEOUT_SECONDS", "5"))

CORS_ALLOWED_ORIGINS = _get_list(os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:5173"))


def validate_runtime_config() -> None:
    # Imported here so a bad CLINIC_SHIFTS value fails at startup, not at import.
    from clinic_scheduler.scheduling.slots import load_slot_catalog

    load_slot_catalog()

    if STORE_TIMEOUT_SECONDS <= 0:
        raise RuntimeError("STORE_TIMEOUT_SECONDS must be positive.")

    if APP_ENV.lower() == "production" and DATABASE_URL.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must point at a server database in production.")
