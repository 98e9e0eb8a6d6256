from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./royale.db"
    LOG_LEVEL: str = "INFO"

    # Standings / materialized views
    STALE_THRESHOLD_MINUTES: int = 5
    TOP_TEAMS_LIMIT: int = 20
    LEADERBOARD_DEFAULT_LIMIT: int = 20

    # Scoring
    KILL_POINT_WEIGHT: int = 1

    INVITATION_TTL_DAYS: int = 7

    class Config:
        env_file = ".env"
        env_prefix = "ROYALE_"

settings = Settings()
