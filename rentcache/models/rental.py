from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Union

from .car import Car

DISPLAY_DATE_FORMAT = "%d/%m/%Y"


def parse_iso_date(value: Union[str, date]) -> date:
    """Parse an ISO-8601 date or datetime string into a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    if 'T' in text or ' ' in text:
        return datetime.fromisoformat(text).date()
    return date.fromisoformat(text)


@dataclass
class Rental:
    """A booking made server-side. Read-only on the client."""
    id: str
    car: Car
    start_date: date
    end_date: date

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Rental':
        return cls(
            id=str(data['id']),
            car=Car.from_dict(data['car']),
            start_date=parse_iso_date(data['start_date']),
            end_date=parse_iso_date(data['end_date']),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'car': self.car.to_dict(),
            'start_date': self.start_date.isoformat(),
            'end_date': self.end_date.isoformat(),
        }

    def period_label(self) -> str:
        return (
            f"{self.start_date.strftime(DISPLAY_DATE_FORMAT)} -> "
            f"{self.end_date.strftime(DISPLAY_DATE_FORMAT)}"
        )
