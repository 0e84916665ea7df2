from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List


@dataclass
class Accessory:
    type: str
    name: str


@dataclass
class Photo:
    id: str
    photo: str


@dataclass
class Car:
    id: str
    brand: str = ""
    name: str = ""
    period: str = ""
    price: float = 0.0
    thumbnail: str = ""
    about: str = ""
    accessories: List[Accessory] = field(default_factory=list)
    photos: List[Photo] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Car':
        """Build a Car from its JSON representation. Raises KeyError without an id."""
        return cls(
            id=str(data['id']),
            brand=data.get('brand') or "",
            name=data.get('name') or "",
            period=data.get('period') or "",
            price=float(data.get('price') or 0),
            thumbnail=data.get('thumbnail') or "",
            about=data.get('about') or "",
            accessories=[Accessory(type=a['type'], name=a['name']) for a in data.get('accessories') or []],
            photos=[Photo(id=str(p['id']), photo=p['photo']) for p in data.get('photos') or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def gallery(self) -> List[Photo]:
        """Photos to show, falling back to the thumbnail when none were synced."""
        if self.photos:
            return self.photos
        return [Photo(id=self.thumbnail, photo=self.thumbnail)]
