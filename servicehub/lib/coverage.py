"""
ZIP code directory for the served region.

Maps each served ZIP code to its city and county. The matching engine uses
the city/county names to compare against a worker's declared city, and the
booking flow uses membership to decide whether a ZIP is serviceable.
"""
from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class ZipArea:
    zip: str
    city: str
    county: str


# Served Maryland ZIP codes
MARYLAND_ZIP_AREAS: tuple[ZipArea, ...] = (
    ZipArea("20601", "Waldorf", "Charles County"),
    ZipArea("20602", "Waldorf", "Charles County"),
    ZipArea("20706", "Lanham", "Prince George's County"),
    ZipArea("20707", "Laurel", "Prince George's County"),
    ZipArea("20715", "Bowie", "Prince George's County"),
    ZipArea("20740", "College Park", "Prince George's County"),
    ZipArea("20774", "Upper Marlboro", "Prince George's County"),
    ZipArea("20814", "Bethesda", "Montgomery County"),
    ZipArea("20850", "Rockville", "Montgomery County"),
    ZipArea("20852", "Rockville", "Montgomery County"),
    ZipArea("20874", "Germantown", "Montgomery County"),
    ZipArea("20877", "Gaithersburg", "Montgomery County"),
    ZipArea("20901", "Silver Spring", "Montgomery County"),
    ZipArea("20910", "Silver Spring", "Montgomery County"),
    ZipArea("21014", "Bel Air", "Harford County"),
    ZipArea("21040", "Edgewood", "Harford County"),
    ZipArea("21042", "Ellicott City", "Howard County"),
    ZipArea("21043", "Ellicott City", "Howard County"),
    ZipArea("21044", "Columbia", "Howard County"),
    ZipArea("21045", "Columbia", "Howard County"),
    ZipArea("21061", "Glen Burnie", "Anne Arundel County"),
    ZipArea("21093", "Lutherville Timonium", "Baltimore County"),
    ZipArea("21117", "Owings Mills", "Baltimore County"),
    ZipArea("21122", "Pasadena", "Anne Arundel County"),
    ZipArea("21136", "Reisterstown", "Baltimore County"),
    ZipArea("21157", "Westminster", "Carroll County"),
    ZipArea("21201", "Baltimore", "Baltimore City"),
    ZipArea("21202", "Baltimore", "Baltimore City"),
    ZipArea("21204", "Towson", "Baltimore County"),
    ZipArea("21205", "Baltimore", "Baltimore City"),
    ZipArea("21206", "Baltimore", "Baltimore City"),
    ZipArea("21208", "Pikesville", "Baltimore County"),
    ZipArea("21210", "Baltimore", "Baltimore City"),
    ZipArea("21211", "Baltimore", "Baltimore City"),
    ZipArea("21212", "Baltimore", "Baltimore City"),
    ZipArea("21218", "Baltimore", "Baltimore City"),
    ZipArea("21224", "Baltimore", "Baltimore City"),
    ZipArea("21228", "Catonsville", "Baltimore County"),
    ZipArea("21230", "Baltimore", "Baltimore City"),
    ZipArea("21234", "Parkville", "Baltimore County"),
    ZipArea("21236", "Nottingham", "Baltimore County"),
    ZipArea("21401", "Annapolis", "Anne Arundel County"),
    ZipArea("21403", "Annapolis", "Anne Arundel County"),
    ZipArea("21502", "Cumberland", "Allegany County"),
    ZipArea("21601", "Easton", "Talbot County"),
    ZipArea("21701", "Frederick", "Frederick County"),
    ZipArea("21702", "Frederick", "Frederick County"),
    ZipArea("21740", "Hagerstown", "Washington County"),
    ZipArea("21801", "Salisbury", "Wicomico County"),
    ZipArea("21842", "Ocean City", "Worcester County"),
)


class ZipDirectory:
    """Lookup table of served ZIP codes."""

    def __init__(self, areas: Iterable[ZipArea] = MARYLAND_ZIP_AREAS):
        self._areas = {area.zip: area for area in areas}

    def resolve(self, zip_code: Optional[str]) -> Optional[ZipArea]:
        if not zip_code:
            return None
        return self._areas.get(zip_code.strip())

    def __contains__(self, zip_code: str) -> bool:
        return self.resolve(zip_code) is not None


default_zip_directory = ZipDirectory()
