"""Configuration management for the scan-to-report system.

Loads and validates YAML configuration with sensible defaults for the
OCR backends, text enhancement, storage, and logging. Backend
credentials are read from the environment once, at load time.
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator

logger = logging.getLogger(__name__)

_CREDENTIAL_ENV_VARS: dict[str, tuple[str, ...]] = {
    "together_api_key": ("TOGETHER_API_KEY", "TOGETHER_AI_API_KEY"),
    "mistral_api_key": ("MISTRAL_API_KEY", "MISTRAL_AI_API_KEY"),
}


class PreprocessingConfig(BaseModel):
    """Image cleanup applied before the local Tesseract engine."""

    deskew_enabled: bool = False
    denoise_enabled: bool = True
    contrast_enabled: bool = True
    binarize_enabled: bool = True
    clahe_clip_limit: float = 2.0
    clahe_tile_size: int = 8


class OCRConfig(BaseModel):
    """Configuration for backend selection and the local engine."""

    tesseract_cmd: str | None = None
    default_lang: str = "eng"
    psm: int = 3
    preprocess: bool = True
    default_backend: str | None = None
    handwriting_languages: list[str] = Field(default_factory=lambda: ["fra", "eng+fra"])
    assume_handwritten: bool = True
    mock_when_unconfigured: bool = True
    batch_concurrency: int = Field(default=1, ge=1, le=4)
    call_timeout_seconds: float = 60.0


class VisionBackendConfig(BaseModel):
    """Connection settings for a hosted vision-capable chat model."""

    base_url: str
    model: str
    instruction: str
    max_tokens: int = 1000
    confidence: float = 95.0
    timeout_seconds: float = 60.0
    retry_attempts: int = 1
    retry_delay: float = 1.0


def _default_vision_a() -> VisionBackendConfig:
    return VisionBackendConfig(
        base_url="https://api.together.xyz/v1",
        model="meta-llama/Llama-3.2-11B-Vision-Instruct-Turbo",
        instruction=(
            "Extract all the text from this handwritten document. "
            "Do not include any explanations or additional text."
        ),
    )


def _default_vision_b() -> VisionBackendConfig:
    return VisionBackendConfig(
        base_url="https://api.mistral.ai/v1",
        model="pixtral-large-latest",
        instruction="Extract all text from this image and preserve the formatting",
    )


class EnhancementConfig(BaseModel):
    """Configuration for the chat-completion text enhancement service."""

    base_url: str = "https://api.together.xyz/v1"
    models: list[str] = Field(
        default_factory=lambda: [
            "meta-llama/Llama-3.1-8B-Instruct",
            "mistralai/Mistral-7B-Instruct-v0.2",
            "gpt-3.5-turbo",
        ]
    )
    streaming_model: str = "meta-llama/Meta-Llama-3.1-8B-Instruct-Turbo"
    streaming_enabled: bool = False
    max_tokens: int = 2000
    temperature: float = 0.7
    system_prompt: str = (
        "You are an expert report writer who can transform raw text into "
        "well-structured, professional reports."
    )
    structured_locales: list[str] = Field(default_factory=lambda: ["french", "français"])
    timeout_seconds: float = 60.0
    retry_attempts: int = 1
    retry_delay: float = 1.0

    @field_validator("models")
    @classmethod
    def _models_not_empty(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("at least one enhancement model is required")
        return value


class CredentialsConfig(BaseModel):
    """API credentials; values never leave this object except as headers."""

    together_api_key: SecretStr | None = None
    mistral_api_key: SecretStr | None = None

    @property
    def has_together(self) -> bool:
        return self.together_api_key is not None and bool(
            self.together_api_key.get_secret_value()
        )

    @property
    def has_mistral(self) -> bool:
        return self.mistral_api_key is not None and bool(
            self.mistral_api_key.get_secret_value()
        )


class StorageConfig(BaseModel):
    """Where extraction results are persisted (``None`` keeps them in memory)."""

    results_dir: str | None = None


class ServerConfig(BaseModel):
    """Bind address for the HTTP API."""

    host: str = "0.0.0.0"
    port: int = 8000


class AppConfig(BaseModel):
    """Top-level application configuration."""

    ocr: OCRConfig = Field(default_factory=OCRConfig)
    preprocessing: PreprocessingConfig = Field(default_factory=PreprocessingConfig)
    vision_a: VisionBackendConfig = Field(default_factory=_default_vision_a)
    vision_b: VisionBackendConfig = Field(default_factory=_default_vision_b)
    enhancement: EnhancementConfig = Field(default_factory=EnhancementConfig)
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    log_level: str = "INFO"


def _credentials_from_env(environ: Mapping[str, str]) -> dict[str, str]:
    """Collect the first non-empty value for each credential env variable."""
    found: dict[str, str] = {}
    for field_name, names in _CREDENTIAL_ENV_VARS.items():
        for name in names:
            value = environ.get(name)
            if value:
                found[field_name] = value
                break
    return found


def load_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """Load configuration from a YAML file and the process environment.

    Args:
        path: Path to the YAML configuration file.
            Defaults to configs/config.yaml.
        environ: Mapping to read credentials from. Defaults to ``os.environ``.

    Returns:
        Validated application configuration.
    """
    if path is None:
        path = Path("configs/config.yaml")

    raw: dict = {}
    if path.exists():
        logger.info("Loading configuration from %s", path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    else:
        logger.info("No config file found at %s, using defaults", path)

    env_credentials = _credentials_from_env(os.environ if environ is None else environ)
    if env_credentials:
        credentials = dict(raw.get("credentials") or {})
        credentials.update(env_credentials)
        raw["credentials"] = credentials

    config = AppConfig(**raw)
    logger.info(
        "Credentials configured: together=%s mistral=%s",
        config.credentials.has_together,
        config.credentials.has_mistral,
    )
    return config
