"""
Configuration settings for the FastAPI application
"""
from dataclasses import dataclass
from typing import List

from pydantic_settings import BaseSettings


class ConfigurationError(RuntimeError):
    """Raised at startup when required configuration is missing."""


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Layout Lock API"
    version: str = "1.0.0"
    environment: str = "development"
    debug: bool = False

    # Database (quota and rate-limit counters)
    database_url: str = ""
    database_pool_size: int = 10
    database_max_overflow: int = 20
    database_auto_create: bool = False

    # CORS
    cors_origins: List[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:8080",
        "http://127.0.0.1:8080",
    ]

    # Google AI Studio (image editing model)
    google_ai_api_key: str = ""
    google_ai_image_model: str = "gemini-3-pro-image-preview"
    google_ai_temperature: float = 0.4
    model_timeout_seconds: float = 70.0
    gateway_max_retries: int = 2
    image_fetch_timeout_seconds: float = 20.0

    # Quotas
    design_daily_limit: int = 8
    design_burst_limit: int = 4
    design_burst_window_seconds: int = 900
    design_suspicious_limit: int = 2
    design_suspicious_window_seconds: int = 3600
    rate_limit_salt: str = "layoutlock-rate-limit-salt"

    # Generation loop
    design_max_attempts: int = 2

    # Layout verification
    sample_resolution: int = 64
    max_shift_radius: int = 4
    anchor_strength_floor: float = 18.0
    anchor_max_count: int = 24
    anchor_min_separation_ratio: float = 0.07
    anchor_search_radius: int = 2
    boundary_std_factor: float = 0.8
    boundary_penalty: float = 1.8
    min_aligned_edge_similarity: float = 0.84
    max_shift_magnitude: float = 2.2
    min_anchor_consistency: float = 0.56
    min_boundary_consistency: float = 0.68
    min_change_intensity: float = 10.0

    # Request limits
    max_image_base64_chars: int = 16_000_000
    max_prompt_chars: int = 2000
    max_image_dimension: int = 12_000

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields from .env
        frozen = True

    def require_generation_config(self) -> None:
        """Fail fast when the model or quota store credentials are absent."""
        missing = []
        if not self.google_ai_api_key:
            missing.append("GOOGLE_AI_API_KEY")
        if not self.database_url:
            missing.append("DATABASE_URL")
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")


@dataclass(frozen=True)
class GenerationPolicy:
    """Immutable knobs for the generate/verify/retry loop."""

    max_attempts: int = 2
    sample_resolution: int = 64
    max_shift_radius: int = 4
    anchor_strength_floor: float = 18.0
    anchor_max_count: int = 24
    anchor_min_separation_ratio: float = 0.07
    anchor_search_radius: int = 2
    boundary_std_factor: float = 0.8
    boundary_penalty: float = 1.8
    min_aligned_edge_similarity: float = 0.84
    max_shift_magnitude: float = 2.2
    min_anchor_consistency: float = 0.56
    min_boundary_consistency: float = 0.68
    min_change_intensity: float = 10.0
    image_fetch_timeout_seconds: float = 20.0

    @property
    def anchor_min_separation(self) -> int:
        return max(1, round(self.anchor_min_separation_ratio * self.sample_resolution))

    @classmethod
    def from_settings(cls, settings: "Settings") -> "GenerationPolicy":
        return cls(
            max_attempts=max(1, settings.design_max_attempts),
            sample_resolution=settings.sample_resolution,
            max_shift_radius=settings.max_shift_radius,
            anchor_strength_floor=settings.anchor_strength_floor,
            anchor_max_count=settings.anchor_max_count,
            anchor_min_separation_ratio=settings.anchor_min_separation_ratio,
            anchor_search_radius=settings.anchor_search_radius,
            boundary_std_factor=settings.boundary_std_factor,
            boundary_penalty=settings.boundary_penalty,
            min_aligned_edge_similarity=settings.min_aligned_edge_similarity,
            max_shift_magnitude=settings.max_shift_magnitude,
            min_anchor_consistency=settings.min_anchor_consistency,
            min_boundary_consistency=settings.min_boundary_consistency,
            min_change_intensity=settings.min_change_intensity,
            image_fetch_timeout_seconds=settings.image_fetch_timeout_seconds,
        )


# Global settings instance
settings = Settings()
