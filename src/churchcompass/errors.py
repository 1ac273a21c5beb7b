class ChurchCompassError(Exception):
    """Basisklasse aller Fehler des Kerns."""


class NotFound(ChurchCompassError):
    def __init__(self, kind: str, ident: str):
        super().__init__(f"{kind} with ID {ident} not found.")
        self.kind = kind
        self.ident = ident


class InvariantViolation(ChurchCompassError):
    """Operation würde eine Mitgliedschafts-Invariante verletzen."""


class ImmutableHistory(ChurchCompassError):
    """Destruktive Änderung an einem Meeting mit Anwesenheitsdaten."""

    def __init__(self, meeting_id: str, message: str = ""):
        super().__init__(message or f"Meeting {meeting_id} has attendance records and cannot be changed destructively.")
        self.meeting_id = meeting_id


class InvalidSeries(ChurchCompassError, ValueError):
    """Ungültige Serien-Definition oder Wiederholungsregel."""


class StoreError(ChurchCompassError):
    """Lesen oder Schreiben einer Collection ist fehlgeschlagen."""
