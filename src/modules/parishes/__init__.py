from src.modules.parishes.models import Parish
from src.modules.parishes.service import ParishService

__all__ = ["Parish", "ParishService"]
