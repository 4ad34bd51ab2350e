"""
Database models for OccurMap.
"""

from sqlalchemy import Column, Integer, Float, String, Index

from .database import Base


class Occurrence(Base):
    """
    A single biodiversity occurrence record (Darwin Core subset).

    Coordinates are nullable: source datasets contain records without a
    usable position, and those are kept but never land in a grid cell.
    """
    __tablename__ = "occurrences"

    id = Column(Integer, primary_key=True, index=True)
    occurrence_id = Column(String(128), index=True)

    # Taxonomy
    scientific_name = Column(String(255), index=True)
    kingdom = Column(String(64), index=True)
    phylum = Column(String(64))
    class_ = Column("class", String(64))
    order_ = Column("order", String(64))
    family = Column(String(128))
    genus = Column(String(128))
    species = Column(String(255))

    year = Column(Integer, index=True)

    decimal_latitude = Column(Float, nullable=True)
    decimal_longitude = Column(Float, nullable=True)

    locality = Column(String(255))
    country_code = Column(String(8))

    __table_args__ = (
        Index("ix_occurrences_lat_lng", "decimal_latitude", "decimal_longitude"),
    )

    def __repr__(self):
        return (
            f"<Occurrence(id={self.id}, name={self.scientific_name!r}, "
            f"lat={self.decimal_latitude}, lng={self.decimal_longitude})>"
        )


# Public (Darwin Core) filter names -> columns, ordered top-down
TAXONOMY_COLUMNS = {
    "kingdom": Occurrence.kingdom,
    "phylum": Occurrence.phylum,
    "class": Occurrence.class_,
    "order": Occurrence.order_,
    "family": Occurrence.family,
    "genus": Occurrence.genus,
    "species": Occurrence.species,
    "scientificName": Occurrence.scientific_name,
}

TAXONOMY_LEVELS = list(TAXONOMY_COLUMNS)

RANGE_COLUMNS = {
    "year": Occurrence.year,
}
