"""Meeting-Lebenszyklus und Mitgliedschafts-Konsistenz für die Gemeindeverwaltung."""

__version__ = "0.1.0"
