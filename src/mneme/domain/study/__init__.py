# Domain Study Package
from .models import Deck, Flashcard, ReviewEvent, StudySession
from .ports import StudyRepository

__all__ = ["Deck", "Flashcard", "ReviewEvent", "StudySession", "StudyRepository"]
