"""
Gateway configuration.

Loaded once at process start; missing or malformed required values fail
startup with a pydantic ``ValidationError`` instead of failing per request.
"""

import os
from typing import Dict, Optional

from pydantic import Field, field_validator

from shared.config import BaseConfig, validate_http_url
from .domain.tiers import TIER_ORDER


class GatewayConfig(BaseConfig):
    """Gateway settings: secrets, downstream base URLs and edge policy."""

    # Security
    jwt_secret: str = Field(validation_alias="JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
    internal_secret: str = Field(validation_alias="NEXUS_INTERNAL_SECRET")

    # Downstream services
    auth_service_url: str = Field(default="http://localhost:4000", validation_alias="AUTH_SERVICE_URL")
    resume_service_url: str = Field(default="http://localhost:5000", validation_alias="RESUME_GENERATOR_URL")
    ats_service_url: str = Field(default="http://localhost:7000", validation_alias="ATS_SERVICE_URL")
    compiler_service_url: str = Field(default="http://localhost:6000", validation_alias="LATEX_COMPILER_URL")
    payment_service_url: str = Field(default="http://localhost:9000", validation_alias="PAYMENT_SERVICE_URL")
    interview_service_url: str = Field(default="http://localhost:8001", validation_alias="INTERVIEW_SERVICE_URL")
    upstream_timeout_seconds: float = Field(default=30.0, gt=0, validation_alias="UPSTREAM_TIMEOUT_SECONDS")

    # Edge
    frontend_url: str = Field(default="http://localhost:5173", validation_alias="FRONTEND_URL")
    trust_proxy_headers: bool = Field(default=False, validation_alias="TRUST_PROXY_HEADERS")

    # Policy
    tier_gates: Dict[str, str] = Field(default_factory=dict, validation_alias="TIER_GATES")
    rate_limits_file: Optional[str] = Field(default=None, validation_alias="RATE_LIMITS_FILE")

    @field_validator("jwt_secret", "internal_secret")
    @classmethod
    def _non_blank_secret(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("jwt_algorithm")
    @classmethod
    def _hmac_algorithm(cls, value: str) -> str:
        if value not in {"HS256", "HS384", "HS512"}:
            raise ValueError(f"Unsupported JWT algorithm '{value}'")
        return value

    @field_validator(
        "auth_service_url",
        "resume_service_url",
        "ats_service_url",
        "compiler_service_url",
        "payment_service_url",
        "interview_service_url",
        "frontend_url",
    )
    @classmethod
    def _http_url(cls, value: str) -> str:
        return validate_http_url(value)

    @field_validator("tier_gates")
    @classmethod
    def _known_tiers(cls, value: Dict[str, str]) -> Dict[str, str]:
        normalized = {}
        for route_name, tier in value.items():
            tier = tier.strip().lower()
            if tier not in TIER_ORDER:
                raise ValueError(f"Unknown tier '{tier}' for route '{route_name}'")
            normalized[route_name] = tier
        return normalized

    @field_validator("rate_limits_file")
    @classmethod
    def _readable_file(cls, value: Optional[str]) -> Optional[str]:
        if value and not os.path.isfile(value):
            raise ValueError(f"Rate limit policy file not found: {value}")
        return value or None

    def service_urls(self) -> Dict[str, str]:
        """Downstream base URL keyed by service id."""
        return {
            "auth": self.auth_service_url,
            "resume": self.resume_service_url,
            "ats": self.ats_service_url,
            "compiler": self.compiler_service_url,
            "payment": self.payment_service_url,
            "interview": self.interview_service_url,
        }


def get_config(**overrides) -> GatewayConfig:
    """Load gateway configuration from the environment."""
    return GatewayConfig(**overrides)
