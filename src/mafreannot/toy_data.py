from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import pysam

from .constants import MAF_VERSION_LINE
from .utils import ensure_outdir, write_json

SAMPLES = ("T1", "N1", "N2", "T2")
PAIRS = (("T1", "N1"), ("T1", "N2"), ("T2", "N1"))

# contig, 1-based pos, ref, alt, genotype per sample (None = no call), CSQ
_RECORDS: List[Tuple[str, int, str, str, Dict[str, Tuple], str]] = [
    ("chr1", 101, "A", "G", {"T1": (0, 1), "N1": (None, None), "N2": (0, 0), "T2": (None, None)}, "G|missense_variant|GENE1"),
    ("chr1", 151, "C", "T", {"T1": (0, 1), "N1": (0, 0), "N2": (0, 0), "T2": (None, None)}, "T|synonymous_variant|GENE1"),
    ("chr2", 201, "G", "A", {"T1": (None, None), "N1": (0, 0), "N2": (None, None), "T2": (1, 1)}, "A|stop_gained|GENE2"),
]

_INPUT_MAF_COLUMNS = (
    "Hugo_Symbol",
    "Center",
    "Chromosome",
    "Start_Position",
    "End_Position",
    "Reference_Allele",
    "Tumor_Seq_Allele1",
    "Tumor_Seq_Allele2",
    "Tumor_Sample_Barcode",
    "Matched_Norm_Sample_Barcode",
    "HGVSp",
    "Sequencer",
)

_INPUT_MAF_ROWS = (
    ("OLD1", "BI", "chr1", "101", "101", "A", "A", "G", "T1", "N2", "p.K1E", "Illumina HiSeq"),
    ("OLD1", "WUGSC", "chr1", "151", "151", "C", "C", "T", "T1", "N1", "p.=", "Illumina HiSeq"),
    ("OLD2", "BCM", "chr2", "201", "201", "G", "A", "A", "T2", "N1", "p.W5*", "Illumina GA"),
)

_PAIR_MAF_COLUMNS = (
    "Hugo_Symbol",
    "Entrez_Gene_Id",
    "Center",
    "NCBI_Build",
    "Chromosome",
    "Start_Position",
    "End_Position",
    "Reference_Allele",
    "Tumor_Seq_Allele1",
    "Tumor_Seq_Allele2",
    "Tumor_Sample_Barcode",
    "Matched_Norm_Sample_Barcode",
    "HGVSp",
)

_PAIR_MAF_ROWS = (
    ("GENE1", "0", ".", "GRCh37", "chr1", "101", "101", "A", "A", "G", "T1", "N2", "p.Lys1Glu"),
    ("GENE1", "0", ".", "GRCh37", "chr1", "151", "151", "C", "C", "T", "T1", "N2", "p.="),
)


def _write_table(path: Path, columns: Sequence[str], rows: Sequence[Sequence[str]], *, comment: str = "") -> None:
    lines = [comment] if comment else []
    lines.append("\t".join(columns))
    lines.extend("\t".join(r) for r in rows)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _write_vep_vcf(path: Path) -> None:
    header = pysam.VariantHeader()
    header.add_meta("fileformat", "VCFv4.2")
    for s in SAMPLES:
        header.add_sample(s)
    header.contigs.add("chr1", length=1000)
    header.contigs.add("chr2", length=1000)
    header.info.add(
        "CSQ",
        number=".",
        type="String",
        description="Consequence annotations from Ensembl VEP. Format: Allele|Consequence|SYMBOL",
    )
    header.formats.add("GT", number=1, type="String", description="Genotype")

    with pysam.VariantFile(str(path), "w", header=header) as vcf:
        for contig, pos, ref, alt, gts, csq in _RECORDS:
            rec = vcf.new_record(
                contig=contig,
                start=pos - 1,
                stop=pos,
                alleles=(ref, alt),
                qual=60,
                filter="PASS",
            )
            rec.info["CSQ"] = (csq,)
            for s in SAMPLES:
                rec.samples[s]["GT"] = gts[s]
            vcf.write(rec)


def make_toy_data(*, outdir: str | Path) -> Dict[str, str]:
    """Create a tiny multi-sample annotated VCF and matching MAFs for demos/tests.

    The outputs include:
    - toy.vep.vcf (4 samples, 3 records)
    - toy.pairs.tsv (T1/N1, T1/N2, T2/N1)
    - toy.maf (original, pre-annotation MAF)
    - mafs/T1_vs_N2.vep.maf (a reannotated per-pair MAF, as vcf2maf would write it)

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)

    vep_vcf = outdir_p / "toy.vep.vcf"
    _write_vep_vcf(vep_vcf)

    pairs_tsv = outdir_p / "toy.pairs.tsv"
    _write_table(pairs_tsv, ("#tumor", "normal"), PAIRS)

    input_maf = outdir_p / "toy.maf"
    _write_table(input_maf, _INPUT_MAF_COLUMNS, _INPUT_MAF_ROWS, comment=MAF_VERSION_LINE)

    maf_dir = ensure_outdir(outdir_p / "mafs")
    pair_maf = maf_dir / "T1_vs_N2.vep.maf"
    _write_table(pair_maf, _PAIR_MAF_COLUMNS, _PAIR_MAF_ROWS, comment=MAF_VERSION_LINE)

    summary = {
        "vep_vcf": str(vep_vcf),
        "pairs_tsv": str(pairs_tsv),
        "input_maf": str(input_maf),
        "pair_maf": str(pair_maf),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
