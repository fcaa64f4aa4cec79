# config parameters for the Dropservices admin backend

import os
from typing import Any, Dict, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel

from backend.dropservices_dashboard import DashboardFilters

# ========== 1. Dashboard metrics ==========

class MetricsConfig(BaseModel):
    growth_window_days: int = 30
    """Length of the recent/previous windows used for revenue and user growth"""

    expiring_window_days: int = 10
    """Orders ending within this many days are flagged as expiring soon"""

    revenue_months: int = 6
    """Number of monthly buckets kept on the revenue chart"""

    top_services: int = 5
    """Slices shown in the service distribution chart"""

    worklist_size: int = 5
    """Rows shown in the expiring orders worklist"""

    day_buckets: int = 30
    """Buckets kept on the orders chart at day granularity"""

    period_buckets: int = 12
    """Buckets kept on the orders chart at week/month granularity"""

    def to_filters(self, **overrides: Any) -> DashboardFilters:
        return DashboardFilters(**{**self.model_dump(), **overrides})


# ========== 2. Display ==========

class DisplayConfig(BaseModel):
    currency: str = "TND"
    """ISO currency code used when formatting amounts"""

    page_size: int = 10
    """Rows per page on the admin tables"""

    max_page_size: int = 100


# ========== 3. Logging ==========

class LoggingConfig(BaseModel):
    level: str = "INFO"
    logfile: Optional[str] = None


# ========== 4. Aggregate ==========

class AdminConfig(BaseModel):
    """Configuration for the Dropservices admin backend."""

    metrics: MetricsConfig = MetricsConfig()
    display: DisplayConfig = DisplayConfig()
    logging: LoggingConfig = LoggingConfig()
    cors_origins: Tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls, overrides: Optional[Dict[str, Any]] = None) -> "AdminConfig":
        """
        Build the configuration from ``overrides`` with environment variables
        taking precedence. Nested fields use ``SECTION__FIELD`` names, e.g.
        ``METRICS__EXPIRING_WINDOW_DAYS=14`` or ``LOGGING__LEVEL=DEBUG``.
        """
        load_dotenv()
        values: Dict[str, Any] = {key: dict(value) if isinstance(value, dict) else value
                                  for key, value in (overrides or {}).items()}
        for section_name, section_field in cls.model_fields.items():
            model = section_field.annotation
            if not (isinstance(model, type) and issubclass(model, BaseModel)):
                continue
            section = values.setdefault(section_name, {})
            for field_name in model.model_fields:
                env_value = os.environ.get(f"{section_name}__{field_name}".upper())
                if env_value is not None:
                    section[field_name] = env_value

        origins = os.environ.get("CORS_ORIGINS")
        if origins:
            values["cors_origins"] = tuple(origin.strip() for origin in origins.split(",") if origin.strip())

        return cls(**values)
