from enum import IntEnum
from typing import List, Optional


class TaxonomicRanks(IntEnum):
    """Enumeration of the lineage columns of a taxonomy table."""
    KINGDOM = 0
    PHYLUM = 1
    CLASS = 2
    ORDER = 3
    FAMILY = 4
    GENUS = 5
    SPECIES = 6

    @property
    def name(self) -> str:
        return super().name.lower()

    @property
    def column(self) -> str:
        """Column name of this rank in a taxonomy table."""
        return self.name

    @property
    def prefix(self) -> str:
        """SILVA-style label prefix, e.g. ``o_`` for order."""
        return f"{self.name[0]}_"

    @property
    def child(self) -> Optional["TaxonomicRanks"]:
        """Get the child (more specific) taxonomic rank."""
        try:
            return TaxonomicRanks(self.value + 1)
        except ValueError:
            return None  # Already at lowest rank

    @property
    def parent(self) -> Optional["TaxonomicRanks"]:
        """Get the parent (broader) taxonomic rank."""
        try:
            return TaxonomicRanks(self.value - 1)
        except ValueError:
            return None  # Already at highest rank

    @classmethod
    def from_name(cls, rank: str) -> "TaxonomicRanks":
        """Get enum member from rank name."""
        rank = rank.upper()
        try:
            return cls[rank]
        except KeyError:
            raise ValueError(f"Invalid taxonomic rank: {rank}")

    @classmethod
    def coerce(cls, rank) -> "TaxonomicRanks":
        """Accept either a rank member or its name."""
        if isinstance(rank, cls):
            return rank
        return cls.from_name(rank)

    @classmethod
    def columns(cls) -> List[str]:
        """All rank column names, kingdom first."""
        return [rank.column for rank in cls.iter_from_kingdom()]

    @classmethod
    def iter_from_kingdom(cls):
        """Yield ranks from KINGDOM (broadest) to SPECIES (most specific)."""
        rank = cls.KINGDOM
        while rank is not None:
            yield rank
            rank = rank.child

    def iter_up(self):
        """Yield ranks from the current rank up to KINGDOM (inclusive)."""
        rank = self
        while rank is not None:
            yield rank
            rank = rank.parent

    def lineage_columns(self) -> List[str]:
        """Rank columns from KINGDOM down to this rank (inclusive)."""
        return [rank.column for rank in reversed(list(self.iter_up()))]
