from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class SamplePair:
    """A tumor/normal sample combination isolated into its own table.

    The same tumor may be matched to several normals (and vice versa); pairs
    are distinguished by the full ``(tumor, normal)`` identity.
    """

    tumor: str
    normal: str

    @property
    def label(self) -> str:
        return f"{self.tumor}_vs_{self.normal}"


@dataclass(frozen=True)
class VariantKey:
    """Correlates a row of a reannotated MAF with its row in the input MAF.

    Attributes
    ----------
    chrom:
        Chromosome column value.
    start:
        Start_Position, kept as text exactly as written in the MAF.
    tumor_sample:
        Tumor_Sample_Barcode.
    ref:
        Reference_Allele.
    variant_allele:
        The non-reference tumor allele, see :func:`resolve_variant_allele`.
    """

    chrom: str
    start: str
    tumor_sample: str
    ref: str
    variant_allele: str

    def __str__(self) -> str:
        return ":".join((self.chrom, self.start, self.tumor_sample, self.ref, self.variant_allele))


def resolve_variant_allele(ref: str, allele1: str, allele2: str) -> str:
    """Pick the variant tumor allele.

    A heterozygous call has ``allele1 == ref``; a homozygous-variant call may
    carry the variant in both alleles.
    """
    if allele1 and allele1 != ref:
        return allele1
    return allele2


class DuplicateKeyPolicy(str, Enum):
    """What to do when two input rows share a :class:`VariantKey`."""

    LAST = "last"
    FIRST = "first"
    ERROR = "error"
