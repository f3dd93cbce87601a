"""
Centralized configuration for the Assembler service.

Pydantic v2 settings management: values are read from the environment
(prefix ``ASSEMBLER_``) or a local ``.env`` file, validated once, and
frozen for the lifetime of the process.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import Field, StringConstraints, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# -------------------------------------------------------------------------
# Reusable Type Aliases
# -------------------------------------------------------------------------

PixelSize = Annotated[
    int,
    Field(ge=1, le=10_000),
]

TemplateName = Annotated[
    str,
    StringConstraints(min_length=1, strip_whitespace=True),
]


# -------------------------------------------------------------------------
# Settings Model
# -------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Application settings parsed from the environment.

    Fails fast at startup if template names or limits are malformed.
    """

    # ---------------------------------------------------------------------
    # Template sources
    # ---------------------------------------------------------------------

    template_root: Annotated[
        str,
        Field(
            default="templates",
            description=(
                "Directory or http(s) base URL from which named template "
                "packages are loaded"
            ),
        ),
    ]

    default_template_name: TemplateName = "SOW-Template.docx"

    fallback_template_name: Annotated[
        str,
        Field(
            default="Assessment-Template.docx",
            min_length=1,
            description=(
                "Last-resort template. Belongs to a sibling document type "
                "and is kept only as an emergency template source."
            ),
        ),
    ]

    template_fetch_timeout_seconds: Annotated[
        float,
        Field(default=10.0, gt=0, description="Upper bound on a remote template fetch"),
    ]

    # ---------------------------------------------------------------------
    # Image embedding
    # ---------------------------------------------------------------------

    max_image_width: PixelSize = 600
    max_image_height: PixelSize = 800
    fallback_image_width: PixelSize = 400
    fallback_image_height: PixelSize = 300

    image_decode_timeout_seconds: Annotated[
        float,
        Field(default=5.0, gt=0, description="Upper bound on one image decode"),
    ]

    # ---------------------------------------------------------------------
    # Output naming & delivery
    # ---------------------------------------------------------------------

    document_type: TemplateName = "SOW"
    output_extension: TemplateName = "docx"

    workspace_dir: Annotated[
        Path,
        Field(
            default=Path("output"),
            description="Directory receiving documents saved by WorkspaceSink",
        ),
    ]

    # ---------------------------------------------------------------------
    # Operational
    # ---------------------------------------------------------------------

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="ASSEMBLER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    # ---------------------------------------------------------------------
    # Validators
    # ---------------------------------------------------------------------

    @field_validator("default_template_name", "fallback_template_name")
    @classmethod
    def bare_file_name(cls, v: str) -> str:
        if "/" in v or "\\" in v or v in {".", ".."}:
            raise ValueError(
                f"Template name '{v}' must be a bare file name"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def known_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(
                f"Unsupported log level '{v}'. Allowed values: {sorted(allowed)}"
            )
        return v.upper()

    @property
    def max_image_box(self) -> tuple[int, int]:
        return self.max_image_width, self.max_image_height

    @property
    def fallback_image_size(self) -> tuple[int, int]:
        return self.fallback_image_width, self.fallback_image_height


# -------------------------------------------------------------------------
# Settings Dependency Provider
# -------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Dependency injection provider for application settings.

    One instance per process.
    """
    return Settings()
