"""Split a multi-sample annotated VCF into one VCF per tumor/normal pair.

A record is written to pair ``(T, N)`` iff both ``T`` and ``N`` have a
genotype call in it. Only the unphased ``./.`` genotype counts as no call;
a haploid ``.``, a phased ``.|.`` or a sample value cut short before its GT
entry is treated as called. Each per-pair VCF keeps the header records of the
annotated VCF and exactly two sample columns, tumor then normal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Sequence, Tuple

import pysam

from .constants import GT_KEY, NULL_GENOTYPE
from .models import SamplePair
from .utils import ensure_outdir, open_textmaybe_gzip, split_fields

logger = logging.getLogger(__name__)


class SamplePairError(ValueError):
    """Raised when the declared tumor/normal pairs cannot be resolved."""


class VcfFormatError(ValueError):
    """Raised when a VCF cannot be read or a record lacks a genotype."""


def load_sample_pairs(path: str | Path) -> List[SamplePair]:
    """Read ``tumor<TAB>normal`` rows; ``#`` lines and blank lines are skipped."""
    pairs: Dict[SamplePair, None] = {}
    with open_textmaybe_gzip(path, "rt") as fh:
        for lineno, line in enumerate(fh, start=1):
            if line.startswith("#") or not line.strip():
                continue
            ids = split_fields(line)
            if len(ids) < 2 or not ids[0] or not ids[1]:
                raise SamplePairError(f"{path}:{lineno}: expected 'tumor<TAB>normal', got {line.rstrip()!r}")
            pairs.setdefault(SamplePair(tumor=ids[0], normal=ids[1]), None)
    return list(pairs)


def open_vcf(path: str | Path) -> pysam.VariantFile:
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"VCF not found: {p}")
    try:
        return pysam.VariantFile(str(p))
    except (ValueError, OSError) as e:
        raise VcfFormatError(f"Cannot read {p} as VCF: {e}") from e


@dataclass(frozen=True)
class SampleColumns:
    """Sample indexes of the tumor-role and normal-role ids of a VCF.

    An id may appear in both roles when it is a tumor in one pair and a normal
    in another. Built once from the header samples and never mutated.
    """

    tumor_idx: Mapping[str, int]
    normal_idx: Mapping[str, int]
    pairs: Tuple[SamplePair, ...]

    @classmethod
    def from_header(
        cls,
        samples: Sequence[str],
        pairs: Sequence[SamplePair],
        *,
        allow_missing: bool = False,
    ) -> "SampleColumns":
        sample_idx = {s: i for i, s in enumerate(samples)}

        tumor_ids = list(dict.fromkeys(p.tumor for p in pairs))
        normal_ids = list(dict.fromkeys(p.normal for p in pairs))

        missing = [s for s in dict.fromkeys(tumor_ids + normal_ids) if s not in sample_idx]
        if missing:
            msg = f"Sample(s) declared in tumor/normal pairs but absent from the VCF header: {', '.join(missing)}"
            if not allow_missing:
                raise SamplePairError(msg)
            logger.warning("%s. Pairs involving them will be empty.", msg)

        return cls(
            tumor_idx=MappingProxyType({s: sample_idx[s] for s in tumor_ids if s in sample_idx}),
            normal_idx=MappingProxyType({s: sample_idx[s] for s in normal_ids if s in sample_idx}),
            pairs=tuple(dict.fromkeys(pairs)),
        )


def is_called(rec: pysam.VariantRecord, sample: str) -> bool:
    """False only for an unphased ``./.`` genotype."""
    call = rec.samples[sample]
    return not (call[GT_KEY] == NULL_GENOTYPE and not call.phased)


def pairs_for_record(rec: pysam.VariantRecord, columns: SampleColumns) -> List[SamplePair]:
    """Return the declared pairs whose tumor and normal both have a genotype call."""
    if GT_KEY not in rec.format:
        raise VcfFormatError(f"VCF record {rec.chrom}:{rec.pos} has no {GT_KEY} in FORMAT")
    active_normals = {s for s in columns.normal_idx if is_called(rec, s)}
    if not active_normals:
        return []
    active_tumors = {s for s in columns.tumor_idx if is_called(rec, s)}
    return [p for p in columns.pairs if p.tumor in active_tumors and p.normal in active_normals]


def pair_header(src: pysam.VariantHeader, pair: SamplePair) -> pysam.VariantHeader:
    """Copy the header records of ``src`` with only the pair's two samples."""
    header = pysam.VariantHeader()
    for hrec in src.records:
        # the new header already carries its own fileformat line
        if hrec.key == "fileformat":
            continue
        header.add_record(hrec)
    header.add_sample(pair.tumor)
    header.add_sample(pair.normal)
    return header


def restrict_record(rec: pysam.VariantRecord, pair: SamplePair, out: pysam.VariantFile) -> pysam.VariantRecord:
    """Rebuild ``rec`` for ``out``, keeping the site and the tumor and normal calls."""
    new = out.new_record(
        contig=rec.chrom,
        start=rec.start,
        stop=rec.stop,
        alleles=rec.alleles,
        id=rec.id,
        qual=rec.qual,
        filter=list(rec.filter.keys()),
        info=dict(rec.info),
    )
    for sample in (pair.tumor, pair.normal):
        src, dst = rec.samples[sample], new.samples[sample]
        for key, value in src.items():
            if key != GT_KEY and (value is None or (isinstance(value, tuple) and all(v is None for v in value))):
                continue
            dst[key] = value
        dst.phased = src.phased
    return new


@dataclass
class PairDecomposition:
    """Records of the annotated VCF grouped by the pairs they activate."""

    header: pysam.VariantHeader
    records: Dict[SamplePair, List[pysam.VariantRecord]] = field(default_factory=dict)
    records_total: int = 0

    def header_for(self, pair: SamplePair) -> pysam.VariantHeader:
        return pair_header(self.header, pair)

    def counts(self) -> Dict[str, int]:
        return {p.label: len(recs) for p, recs in self.records.items()}


def decompose_vcf(
    vcf: pysam.VariantFile,
    pairs: Sequence[SamplePair],
    *,
    allow_missing: bool = False,
) -> PairDecomposition:
    """Distribute the records of a multi-sample VCF over the declared pairs.

    Every declared pair gets a buffer, even if no record activates it.
    """
    columns = SampleColumns.from_header(list(vcf.header.samples), pairs, allow_missing=allow_missing)
    result = PairDecomposition(header=vcf.header, records={p: [] for p in pairs})

    for rec in vcf:
        result.records_total += 1
        for pair in pairs_for_record(rec, columns):
            result.records[pair].append(rec)
    return result


def write_pair_vcfs(
    decomposition: PairDecomposition,
    outdir: str | Path,
    *,
    suffix: str = ".vep.vcf",
) -> Dict[SamplePair, Path]:
    """Write ``{outdir}/{tumor}_vs_{normal}{suffix}`` for every declared pair."""
    outdir_p = ensure_outdir(outdir)
    written: Dict[SamplePair, Path] = {}
    for pair, records in decomposition.records.items():
        path = outdir_p / f"{pair.label}{suffix}"
        with pysam.VariantFile(str(path), "w", header=decomposition.header_for(pair)) as out:
            for rec in records:
                out.write(restrict_record(rec, pair, out))
        logger.debug("Wrote %d records to %s", len(records), path)
        written[pair] = path
    return written


def split_annotated_vcf(
    vep_vcf: str | Path,
    pairs_tsv: str | Path,
    outdir: str | Path,
    *,
    allow_missing: bool = False,
) -> Tuple[PairDecomposition, Dict[SamplePair, Path]]:
    """Load the pair table, split ``vep_vcf`` and write the per-pair VCFs."""
    pairs = load_sample_pairs(pairs_tsv)
    if not pairs:
        raise SamplePairError(f"No tumor/normal pairs listed in {pairs_tsv}")
    logger.info("Splitting %s into %d tumor/normal pair(s)", vep_vcf, len(pairs))

    # records hold on to the reader, so the per-pair files are written before it closes
    with open_vcf(vep_vcf) as vcf:
        decomposition = decompose_vcf(vcf, pairs, allow_missing=allow_missing)
        written = write_pair_vcfs(decomposition, outdir)

    for label, n in decomposition.counts().items():
        logger.info("  %s: %d records", label, n)
    return decomposition, written
