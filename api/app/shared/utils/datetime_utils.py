"""
Utilidades para manejo de fechas y horas.

Todas las fechas del motor se guardan y comparan en UTC (aware). Algunos
motores (SQLite) devuelven datetimes naive aunque la columna sea
`DateTime(timezone=True)`; `ensure_utc` normaliza ese caso.
"""
import calendar
from datetime import date, datetime, timedelta, timezone
from typing import Optional


class DateTimeUtils:
    """Clase de utilidades para operaciones con fechas y horas."""

    @staticmethod
    def now_utc() -> datetime:
        """
        Obtiene la fecha y hora actual en UTC.

        Returns:
            datetime: Fecha y hora actual en UTC
        """
        return datetime.now(timezone.utc)

    @staticmethod
    def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
        """
        Normaliza un datetime a UTC aware.

        Args:
            dt: Datetime naive (se asume UTC) o aware

        Returns:
            Optional[datetime]: Datetime en UTC, o None si no hay valor
        """
        if dt is None:
            return None
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)

    @staticmethod
    def hours_ago(hours: float) -> datetime:
        """Momento UTC de hace `hours` horas."""
        return DateTimeUtils.now_utc() - timedelta(hours=hours)

    @staticmethod
    def months_ago(months: int, today: Optional[date] = None) -> date:
        """
        Misma fecha de calendario `months` meses atras.

        Si el mes destino es mas corto se usa su ultimo dia (31-may menos
        3 meses = 28/29-feb).
        """
        today = today or DateTimeUtils.now_utc().date()
        month_index = today.year * 12 + today.month - 1 - months
        year, month = divmod(month_index, 12)
        month += 1
        last_day = calendar.monthrange(year, month)[1]
        return date(year, month, min(today.day, last_day))

    @staticmethod
    def elapsed_ms(start: datetime, end: Optional[datetime] = None) -> int:
        """
        Milisegundos transcurridos entre dos instantes.

        Args:
            start: Instante inicial
            end: Instante final (por defecto ahora)

        Returns:
            int: Duracion en milisegundos, nunca negativa
        """
        end = end or DateTimeUtils.now_utc()
        delta = DateTimeUtils.ensure_utc(end) - DateTimeUtils.ensure_utc(start)
        return max(0, int(delta.total_seconds() * 1000))

    @staticmethod
    def to_iso_string(dt: Optional[datetime]) -> Optional[str]:
        """
        Convierte un datetime a string ISO 8601 en UTC.

        Args:
            dt: Objeto datetime

        Returns:
            Optional[str]: Fecha en formato ISO 8601
        """
        if dt is None:
            return None
        return DateTimeUtils.ensure_utc(dt).isoformat()

    @staticmethod
    def from_iso_string(iso_string: str) -> Optional[datetime]:
        """
        Convierte un string ISO 8601 a datetime UTC.

        Args:
            iso_string: String en formato ISO 8601 (acepta sufijo 'Z')

        Returns:
            Optional[datetime]: Objeto datetime o None si hay error
        """
        try:
            return DateTimeUtils.ensure_utc(
                datetime.fromisoformat(str(iso_string).replace("Z", "+00:00"))
            )
        except (ValueError, TypeError):
            return None
