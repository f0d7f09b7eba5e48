from .yaml_import import ImportSummary, import_decks, load_deck_document

__all__ = ["ImportSummary", "import_decks", "load_deck_document"]
