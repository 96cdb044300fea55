from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # --- DB ---
    DATABASE_URL: str = "sqlite:///./rotativos.sqlite"

    # --- JWT ---
    JWT_SECRET: str = "cambiar_en_produccion_rotativos_orquesta"
    JWT_ALG: str = "HS256"
    JWT_EXPIRE_MIN: int = 10080  # 7 días

    # --- Calendario ---
    # Las fechas de eventos se interpretan en la hora local de la orquesta
    TIMEZONE: str = "America/Argentina/Buenos_Aires"

    # --- Concurrencia ---
    SLOT_RETRY_ATTEMPTS: int = 3

    LOG_LEVEL: str = "INFO"

    # Le dice a Pydantic que lea del archivo .env
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# Instancia global para importar en el resto del proyecto
settings = Settings()
