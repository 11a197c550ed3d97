"""
config.py — Application settings.

Values load from environment variables prefixed with ``MATHDOCS_`` or from a
``.env`` file in the working directory.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mathdocs.formatting import FormatOptions, NOTATIONS


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix='MATHDOCS_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )

    # Storage
    data_dir: Path = Field(
        default=Path('data'),
        description='Directory holding one JSON file per document.',
    )

    # HTTP server
    host: str = Field(default='0.0.0.0')
    port: int = Field(default=5000)

    # Logging
    log_level: str = Field(default='INFO')
    log_file: str | None = Field(default=None)

    # Result formatting
    fractional_digits: int = Field(default=5, ge=0, le=30)
    notation: str = Field(default='engineering')
    avoid_exponents_low: int = Field(default=-3)
    avoid_exponents_high: int = Field(default=4)

    # Evaluation
    max_dependency_depth: int = Field(
        default=500,
        gt=0,
        description='Longest dependency chain a single pass will follow.',
    )

    @field_validator('notation')
    @classmethod
    def validate_notation(cls, v: str) -> str:
        v = v.lower()
        if v not in NOTATIONS:
            raise ValueError(f'notation must be one of {sorted(NOTATIONS)}')
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}:
            raise ValueError(f'unknown log level: {v}')
        return v

    def format_options(self) -> FormatOptions:
        return FormatOptions(
            fractional_digits=self.fractional_digits,
            notation=self.notation,
            avoid_exponents_in_range=(self.avoid_exponents_low, self.avoid_exponents_high),
        )


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings, loaded once."""
    return Settings()
