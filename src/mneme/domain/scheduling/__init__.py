# Domain Scheduling Package
from .models import BUTTON_TO_QUALITY, CardScheduleState, Rating, RatingScale

__all__ = ["BUTTON_TO_QUALITY", "CardScheduleState", "Rating", "RatingScale"]
