"""End-to-end MAF reannotation: maf2vcf -> VEP -> split per pair -> vcf2maf -> merge.

The external Perl tools do the format conversion and effect prediction; this
module assembles their command lines, runs them in a working directory and
stitches the per-pair results back into one MAF.
"""

from __future__ import annotations

import logging
import re
import shutil
import sys
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, TextIO, Tuple

import pysam
from tqdm import tqdm

from .constants import DEFAULT_RETAIN_COLUMNS, MAF_COMMENT_PREFIX, MAF_HEADER_PREFIX, MAF_VERSION_LINE
from .external import cmd_to_str, ensure_executable_in_path, run_command
from .merge import RetainedValueTable, merge_maf_files, parse_retain_columns, read_maf_header
from .models import DuplicateKeyPolicy, SamplePair
from .pairs import split_annotated_vcf
from .utils import ensure_outdir, is_nonempty_file

logger = logging.getLogger(__name__)

Runner = Callable[[Sequence[str]], Any]

MAF2VCF_SCRIPT = "maf2vcf.pl"
VCF2MAF_SCRIPT = "vcf2maf.pl"
VEP_SCRIPTS = ("vep", "variant_effect_predictor.pl")

_HOME = Path.home()


@dataclass(frozen=True)
class ReannotationConfig:
    """All settings of one reannotation run."""

    input_maf: str
    output_maf: Optional[str] = None  # None -> stdout
    tmp_dir: Optional[str] = None  # None -> self-cleaning temporary directory
    tum_depth_col: str = "t_depth"
    tum_rad_col: str = "t_ref_count"
    tum_vad_col: str = "t_alt_count"
    nrm_depth_col: str = "n_depth"
    nrm_rad_col: str = "n_ref_count"
    nrm_vad_col: str = "n_alt_count"
    retain_columns: Tuple[str, ...] = DEFAULT_RETAIN_COLUMNS
    custom_enst: Optional[str] = None
    vep_path: str = str(_HOME / "vep")
    vep_data: str = str(_HOME / ".vep")
    vep_forks: int = 4
    species: str = "homo_sapiens"
    ncbi_build: str = "GRCh37"
    ref_fasta: str = str(
        _HOME / ".vep" / "homo_sapiens" / "81_GRCh37" / "Homo_sapiens.GRCh37.75.dna.primary_assembly.fa"
    )
    script_dir: Optional[str] = None
    perl: str = field(default_factory=lambda: shutil.which("perl") or "perl")
    duplicate_policy: DuplicateKeyPolicy = DuplicateKeyPolicy.LAST
    allow_missing_samples: bool = False


@dataclass(frozen=True)
class IntermediatePaths:
    vcf: Path
    vep_vcf: Path
    pairs_tsv: Path


def intermediate_paths(input_maf: str | Path, tmp_dir: str | Path) -> IntermediatePaths:
    """Names maf2vcf gives the combined VCF and pair table for ``input_maf``."""
    vcf_name = re.sub(r"(\.)?(maf|tsv|txt)?$", ".vcf", Path(input_maf).name, count=1)
    tmp = Path(tmp_dir)
    return IntermediatePaths(
        vcf=tmp / vcf_name,
        vep_vcf=tmp / re.sub(r"\.vcf$", ".vep.vcf", vcf_name),
        pairs_tsv=tmp / re.sub(r"(\.vcf)?$", ".pairs.tsv", vcf_name, count=1),
    )


def locate_helper_scripts(script_dir: Optional[str | Path] = None) -> Tuple[Path, Path]:
    """Find maf2vcf.pl and vcf2maf.pl; they must sit in the same directory."""
    if script_dir is None:
        found = shutil.which(MAF2VCF_SCRIPT)
        script_dir = Path(found).parent if found else Path(".")
    d = Path(script_dir).expanduser()
    maf2vcf = d / MAF2VCF_SCRIPT
    vcf2maf = d / VCF2MAF_SCRIPT
    for p in (maf2vcf, vcf2maf):
        if not is_nonempty_file(p):
            raise FileNotFoundError(f"Couldn't locate {p.name} in {d.resolve()}. Use --script-dir to point at it.")
    return maf2vcf, vcf2maf


def find_vep_script(vep_path: str | Path) -> Path:
    for name in VEP_SCRIPTS:
        p = Path(vep_path).expanduser() / name
        if is_nonempty_file(p):
            return p
    raise FileNotFoundError(f"Cannot find VEP script ({' or '.join(VEP_SCRIPTS)}) in path: {vep_path}")


def ensure_fasta_index(ref_fasta: str | Path) -> None:
    ref = Path(ref_fasta).expanduser()
    if not is_nonempty_file(ref):
        raise FileNotFoundError(f"Reference FASTA not found: {ref}")
    fai = ref.with_suffix(ref.suffix + ".fai")
    if fai.exists():
        return
    logger.info("Creating FASTA index: %s", fai)
    pysam.faidx(str(ref))


def build_maf2vcf_cmd(config: ReannotationConfig, maf2vcf: Path, tmp_dir: str | Path) -> List[str]:
    return [
        config.perl,
        str(maf2vcf),
        "--input-maf",
        str(config.input_maf),
        "--output-dir",
        str(tmp_dir),
        "--ref-fasta",
        str(config.ref_fasta),
        "--tum-depth-col",
        config.tum_depth_col,
        "--tum-rad-col",
        config.tum_rad_col,
        "--tum-vad-col",
        config.tum_vad_col,
        "--nrm-depth-col",
        config.nrm_depth_col,
        "--nrm-rad-col",
        config.nrm_rad_col,
        "--nrm-vad-col",
        config.nrm_vad_col,
    ]


def build_vep_cmd(config: ReannotationConfig, vep_script: Path, vcf: Path, vep_vcf: Path) -> List[str]:
    cmd = [
        config.perl,
        str(vep_script),
        "--species", config.species,
        "--assembly", config.ncbi_build,
        "--offline", "--no_progress", "--no_stats",
        "--sift", "b",
        "--ccds", "--uniprot", "--hgvs", "--symbol", "--numbers", "--domains", "--regulatory",
        "--canonical", "--protein", "--biotype", "--tsl", "--pubmed", "--variant_class",
        "--shift_hgvs", "1",
        "--check_existing", "--check_alleles", "--check_ref", "--total_length", "--allele_number",
        "--no_escape", "--xref_refseq",
        "--failed", "1",
        "--vcf", "--flag_pick_allele",
        "--pick_order", "canonical,tsl,biotype,rank,ccds,length",
        "--dir", str(config.vep_data),
        "--fasta", str(config.ref_fasta),
        "--input_file", str(vcf),
        "--output_file", str(vep_vcf),
    ]
    # VEP rejects --fork 1
    if config.vep_forks > 1:
        cmd += ["--fork", str(int(config.vep_forks))]
    # human-only annotation sources
    if config.species == "homo_sapiens":
        cmd += ["--polyphen", "b", "--gmaf", "--maf_1kg", "--maf_esp"]
    return cmd


def build_vcf2maf_cmd(
    config: ReannotationConfig,
    vcf2maf: Path,
    tn_vcf: Path,
    tn_maf: Path,
    pair: SamplePair,
) -> List[str]:
    cmd = [
        config.perl,
        str(vcf2maf),
        "--input-vcf",
        str(tn_vcf),
        "--output-maf",
        str(tn_maf),
        "--tumor-id",
        pair.tumor,
        "--normal-id",
        pair.normal,
        "--vep-path",
        str(config.vep_path),
        "--vep-data",
        str(config.vep_data),
        "--vep-forks",
        str(int(config.vep_forks)),
        "--ref-fasta",
        str(config.ref_fasta),
    ]
    if config.custom_enst:
        cmd += ["--custom-enst", str(config.custom_enst)]
    return cmd


def run_vep(
    config: ReannotationConfig,
    paths: IntermediatePaths,
    *,
    runner: Runner = run_command,
) -> bool:
    """Annotate the combined VCF; returns False when an existing annotation was reused."""
    if is_nonempty_file(paths.vep_vcf):
        logger.warning("Annotated VCF already exists (%s). Skipping re-annotation.", paths.vep_vcf)
        return False

    logger.info("Running VEP and writing to: %s", paths.vep_vcf)
    vep_script = find_vep_script(config.vep_path)
    if not is_nonempty_file(Path(config.ref_fasta).expanduser()):
        raise FileNotFoundError(f"Reference FASTA not found: {config.ref_fasta}")
    runner(build_vep_cmd(config, vep_script, paths.vcf, paths.vep_vcf))

    if not is_nonempty_file(paths.vep_vcf):
        logger.warning("VEP-annotated VCF file is missing or empty: %s", paths.vep_vcf)
    return True


def list_pair_vcfs(tmp_dir: str | Path, combined_vcf: Path) -> List[Tuple[SamplePair, Path]]:
    """Per-pair VCFs written by maf2vcf, excluding annotated and combined VCFs."""
    out: List[Tuple[SamplePair, Path]] = []
    for p in sorted(Path(tmp_dir).glob("*.vcf")):
        if p.name.endswith(".vep.vcf") or p.name == combined_vcf.name:
            continue
        m = re.match(r"^(.*)_vs_(.*)\.vcf$", p.name)
        if m is None:
            logger.warning("Skipping VCF without a <tumor>_vs_<normal> name: %s", p)
            continue
        out.append((SamplePair(tumor=m.group(1), normal=m.group(2)), p))
    return out


def concat_mafs(mafs: Sequence[str | Path], header: Sequence[str], out: TextIO) -> int:
    """Write one MAF: version line, a single header, then the data rows of every input."""
    out.write(MAF_VERSION_LINE + "\n")
    out.write("\t".join(header) + "\n")
    n = 0
    for maf in mafs:
        with open(maf, "rt", encoding="utf-8") as fh:
            for line in fh:
                if line.startswith(MAF_COMMENT_PREFIX) or line.startswith(MAF_HEADER_PREFIX):
                    continue
                if not line.strip():
                    continue
                out.write(line if line.endswith("\n") else line + "\n")
                n += 1
    return n


@contextmanager
def _workdir(tmp_dir: Optional[str | Path]) -> Iterator[Path]:
    if tmp_dir:
        yield ensure_outdir(Path(tmp_dir).expanduser().resolve())
        return
    with tempfile.TemporaryDirectory(prefix="mafreannot_") as d:
        yield Path(d)


def plan_commands(config: ReannotationConfig) -> List[List[str]]:
    """Commands for the steps that do not depend on maf2vcf output (used by --dry-run)."""
    maf2vcf, _ = locate_helper_scripts(config.script_dir)
    tmp_dir = Path(config.tmp_dir) if config.tmp_dir else Path(tempfile.gettempdir()) / "mafreannot_XXXX"
    paths = intermediate_paths(config.input_maf, tmp_dir)
    try:
        vep_script = find_vep_script(config.vep_path)
    except FileNotFoundError:
        logger.warning("VEP script not found in %s; showing the default name", config.vep_path)
        vep_script = Path(config.vep_path) / VEP_SCRIPTS[0]
    return [
        build_maf2vcf_cmd(config, maf2vcf, tmp_dir),
        build_vep_cmd(config, vep_script, paths.vcf, paths.vep_vcf),
    ]


def reannotate_maf(
    config: ReannotationConfig,
    *,
    runner: Runner = run_command,
    progress: bool = False,
) -> Dict[str, Any]:
    """Run the whole reannotation and write the combined MAF.

    Returns
    -------
    dict
        JSON-serializable run summary.
    """
    t0 = time.time()

    input_maf = Path(config.input_maf).expanduser().resolve()
    if not input_maf.exists():
        raise FileNotFoundError(f"Input MAF not found: {input_maf}")
    maf2vcf, vcf2maf = locate_helper_scripts(config.script_dir)
    ensure_executable_in_path(config.perl, hint="maf2vcf.pl, VEP and vcf2maf.pl are Perl scripts.")
    retain = parse_retain_columns(config.retain_columns)

    with _workdir(config.tmp_dir) as tmp_dir:
        paths = intermediate_paths(input_maf, tmp_dir)

        ensure_fasta_index(config.ref_fasta)
        logger.info("Running maf2vcf: %s", input_maf)
        runner(build_maf2vcf_cmd(config, maf2vcf, tmp_dir))

        run_vep(config, paths, runner=runner)

        decomposition, _ = split_annotated_vcf(
            paths.vep_vcf,
            paths.pairs_tsv,
            tmp_dir,
            allow_missing=config.allow_missing_samples,
        )

        pair_vcfs = list_pair_vcfs(tmp_dir, paths.vcf)
        for pair, tn_vcf in tqdm(pair_vcfs, unit="pair", desc="vcf2maf", disable=not progress):
            tn_maf = tn_vcf.with_suffix(".vep.maf")
            cmd = build_vcf2maf_cmd(config, vcf2maf, tn_vcf, tn_maf, pair)
            logger.debug("vcf2maf for %s: %s", pair.label, cmd_to_str(cmd))
            runner(cmd)

        mafs = sorted(tmp_dir.glob("*.vep.maf"))
        if not mafs:
            raise RuntimeError(f"vcf2maf produced no per-pair MAFs in {tmp_dir}")

        header = read_maf_header(mafs[0])
        table: Optional[RetainedValueTable] = None
        if retain:
            table = RetainedValueTable.from_path(input_maf, retain, policy=config.duplicate_policy)
            header = merge_maf_files(mafs, table)

        if config.output_maf:
            out_path = Path(config.output_maf).expanduser()
            out_path.parent.mkdir(parents=True, exist_ok=True)
            with open(out_path, "wt", encoding="utf-8") as out:
                n_rows = concat_mafs(mafs, header, out)
            logger.info("Wrote %d rows to %s", n_rows, out_path)
        else:
            n_rows = concat_mafs(mafs, header, sys.stdout)
            sys.stdout.flush()

        return {
            "input_maf": str(input_maf),
            "output_maf": config.output_maf,
            "tmp_dir": config.tmp_dir,
            "records_total": decomposition.records_total,
            "pairs": decomposition.counts(),
            "per_pair_mafs": [m.name for m in mafs],
            "rows_written": n_rows,
            "retain_columns": retain,
            "active_columns": list(table.active_columns) if table else [],
            "warnings": list(table.warnings) if table else [],
            "duplicate_keys": table.duplicate_keys if table else 0,
            "runtime_seconds": float(time.time() - t0),
        }
