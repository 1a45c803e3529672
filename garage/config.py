import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Carrega variáveis de ambiente do arquivo .env
load_dotenv()


@dataclass(frozen=True)
class Settings:
    """Configuração da aplicação lida do ambiente (.env)."""
    database_url: str = "sqlite:///oficina.db"
    api_url: str = "http://localhost:8000"
    http_timeout: float = 30.0
    log_level: str = "INFO"


def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv("GARAGE_DATABASE_URL", Settings.database_url),
        api_url=os.getenv("GARAGE_API_URL", Settings.api_url).rstrip("/"),
        http_timeout=float(os.getenv("GARAGE_HTTP_TIMEOUT", Settings.http_timeout)),
        log_level=os.getenv("GARAGE_LOG_LEVEL", Settings.log_level).upper(),
    )


def configure_logging(level: Optional[str] = None) -> None:
    """Configura o logging da aplicação uma única vez na inicialização."""
    logging.basicConfig(
        level=level or get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
