"""Domain layer: pure assessment rules and the services built on them."""

from src.domain.levels import CompetencyLevel
from src.domain.models import User

__all__ = ["CompetencyLevel", "User"]
