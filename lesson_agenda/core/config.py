from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./lesson_agenda.db"
    # Logging
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR
    log_to_file: bool = True
    log_file_path: str = "logs/lesson_agenda.log"
    log_max_bytes: int = 10 * 1024 * 1024  # 10 MB
    log_backup_count: int = 5
    # Lesson length used when a lesson type has no duration set
    default_lesson_minutes: int = 30
    # Agenda window used when the caller passes no explicit range
    agenda_months_back: int = 1
    agenda_months_forward: int = 2

    class Config:
        env_file = ".env"


settings = Settings()
