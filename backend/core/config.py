"""Application configuration loaded from environment variables."""

from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Backend
    backend_host: str = "0.0.0.0"
    backend_port: int = 9200

    # Template storage
    template_backend: str = "local"  # "local" | "redis"
    templates_dir: str = "templates"
    template_catalog: str = "catalog.yaml"

    # Redis (remote template storage)
    redis_host: str = "127.0.0.1"
    redis_port: int = 9379
    redis_db: int = 0
    redis_password: str = ""
    redis_socket_timeout: float = 5.0
    redis_template_prefix: str = "template:"

    # Limits
    max_upload_bytes: int = 20 * 1024 * 1024
    max_source_rows: int = 200_000

    # Mapping behaviour
    match_policy: str = "unique"  # "unique" | "shared"
    reset_mapping_on_active_change: bool = True

    # Output naming
    output_suffix: str = "_mapped"
    fallback_output_name: str = "Output"
    merged_sheet_name: str = "Output"

    @property
    def project_root(self) -> Path:
        return Path(__file__).parent.parent.parent

    model_config = {"env_file": ".env", "env_prefix": "", "extra": "ignore"}


settings = Settings()
