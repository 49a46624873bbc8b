from typing import Dict, List, Optional, Tuple
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(raw: str) -> List[str]:
    return [p.strip() for p in raw.split(",") if p.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Core
    log_level: str = "INFO"
    service_env: str = "dev"  # dev|prod
    server_public_url: str = "http://localhost:8000"

    # DB
    db_url: str = "sqlite:///./recipes.db"
    db_echo: bool = False

    # Auth / multiusuario
    api_keys: str = "default:PARENT:default-family:demo123"
    auth_fallback_user: Optional[str] = "default"
    auth_fallback_role: str = "PARENT"
    auth_fallback_family: str = "default-family"
    jwt_secret: str = "change-me-dev"
    jwt_expire_minutes: int = 120
    auth_dev_pin: Optional[str] = None

    # Roles (listas separadas por comas)
    roles_can_create: str = "PARENT,CHILD"
    roles_can_rate: str = "PARENT,CHILD"
    roles_can_delete: str = "PARENT"
    roles_can_edit_all: str = ""

    # Features
    feature_ratings: bool = True
    feature_sharing: bool = True

    # Limits
    max_recipes_per_user: int = 50
    max_ingredients_per_recipe: int = 30
    min_ingredients_per_recipe: int = 1
    max_ratings_per_recipe: int = 100

    # Metrics snapshot
    metrics_interval_s: float = 60.0

    clone_suffix: str = " (Copy)"

    def parsed_roles_can_create(self) -> List[str]:
        return _split_csv(self.roles_can_create)

    def parsed_roles_can_rate(self) -> List[str]:
        return _split_csv(self.roles_can_rate)

    def parsed_roles_can_delete(self) -> List[str]:
        return _split_csv(self.roles_can_delete)

    def parsed_roles_can_edit_all(self) -> List[str]:
        return _split_csv(self.roles_can_edit_all)

    def parsed_api_keys(self) -> Dict[str, Tuple[str, str, str]]:
        """token -> (user_id, role, family_id)"""
        mapping: Dict[str, Tuple[str, str, str]] = {}
        for entry in _split_csv(self.api_keys):
            parts = entry.split(":", 3)
            if len(parts) != 4:
                continue
            user, role, family, token = (p.strip() for p in parts)
            mapping[token] = (user, role, family)
        return mapping

    @model_validator(mode="after")
    def _validate(self) -> "Settings":
        if self.service_env != "dev":
            if self.jwt_secret == "change-me-dev":
                raise ValueError("jwt_secret must be set via environment variable in non-dev environments")
            if self.auth_dev_pin is not None:
                raise ValueError("auth_dev_pin is only allowed in development")
            if self.service_env == "prod":
                self.auth_fallback_user = None
        if not self.parsed_roles_can_create():
            raise ValueError("roles_can_create must list at least one role")
        if self.min_ingredients_per_recipe < 0:
            raise ValueError("min_ingredients_per_recipe must be >= 0")
        if self.min_ingredients_per_recipe > self.max_ingredients_per_recipe:
            raise ValueError("min_ingredients_per_recipe cannot exceed max_ingredients_per_recipe")
        if self.metrics_interval_s <= 0:
            raise ValueError("metrics_interval_s must be positive")
        return self


settings = Settings()
