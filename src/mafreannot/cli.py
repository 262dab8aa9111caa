from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from . import __version__
from .constants import DEFAULT_RETAIN_COLUMNS
from .doctor import CHECK_ORDER, collect_checks
from .external import ExternalCommandError, cmd_to_str
from .merge import RetainedValueTable, merge_maf_files, parse_retain_columns
from .models import DuplicateKeyPolicy
from .pairs import split_annotated_vcf
from .pipeline import ReannotationConfig, concat_mafs, plan_commands, reannotate_maf
from .report import render_report
from .toy_data import make_toy_data
from .utils import write_json

_DEFAULTS = ReannotationConfig(input_maf="")


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    if isinstance(err, ExternalCommandError):
        msg = str(err)
    else:
        msg = f"{err.__class__.__name__}: {err}"

    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _add_verbose(p: argparse.ArgumentParser) -> None:
    p.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")


def _add_retain_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--retain-cols",
        default=",".join(DEFAULT_RETAIN_COLUMNS),
        help="Comma-delimited list of columns to retain from the input MAF [%(default)s].",
    )
    p.add_argument(
        "--duplicate-keys",
        choices=[x.value for x in DuplicateKeyPolicy],
        default=DuplicateKeyPolicy.LAST.value,
        help="Which input row wins when rows share Chromosome:Start:Tumor:Ref:Variant allele.",
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="mafreannot",
        description=(
            "mafreannot: reannotate the effects of variants in a MAF by running maf2vcf, VEP and "
            "vcf2maf per tumor/normal pair, keeping selected columns of the input MAF."
        ),
    )
    p.add_argument("--version", action="version", version=f"mafreannot {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # run
    # -----------------
    r = sub.add_parser("run", help="Reannotate a MAF (maf2vcf -> VEP -> vcf2maf -> merge).")
    r.add_argument("--input-maf", required=True, type=_path_exists, help="Path to input file in MAF format.")
    r.add_argument("--output-maf", default=None, help="Path to output MAF file [Default: STDOUT].")
    r.add_argument(
        "--tmp-dir",
        default=None,
        help="Folder to retain intermediate VCFs/MAFs after runtime [Default: temporary, removed].",
    )
    r.add_argument("--tum-depth-col", default=_DEFAULTS.tum_depth_col, help="Tumor read depth column [%(default)s].")
    r.add_argument("--tum-rad-col", default=_DEFAULTS.tum_rad_col, help="Tumor ref allele depth column [%(default)s].")
    r.add_argument("--tum-vad-col", default=_DEFAULTS.tum_vad_col, help="Tumor variant allele depth column [%(default)s].")
    r.add_argument("--nrm-depth-col", default=_DEFAULTS.nrm_depth_col, help="Normal read depth column [%(default)s].")
    r.add_argument("--nrm-rad-col", default=_DEFAULTS.nrm_rad_col, help="Normal ref allele depth column [%(default)s].")
    r.add_argument("--nrm-vad-col", default=_DEFAULTS.nrm_vad_col, help="Normal variant allele depth column [%(default)s].")
    _add_retain_args(r)
    r.add_argument("--custom-enst", default=None, type=_path_exists, help="List of custom ENST IDs that override canonical selection.")
    r.add_argument("--vep-path", default=_DEFAULTS.vep_path, help="Folder containing the VEP script [%(default)s].")
    r.add_argument("--vep-data", default=_DEFAULTS.vep_data, help="VEP's base cache/plugin directory [%(default)s].")
    r.add_argument("--vep-forks", type=int, default=_DEFAULTS.vep_forks, help="Forked VEP processes [%(default)s].")
    r.add_argument("--species", default=_DEFAULTS.species, help="Ensembl-friendly species name [%(default)s].")
    r.add_argument("--ncbi-build", default=_DEFAULTS.ncbi_build, help="NCBI reference assembly [%(default)s].")
    r.add_argument("--ref-fasta", default=_DEFAULTS.ref_fasta, help="Reference FASTA [%(default)s].")
    r.add_argument(
        "--script-dir",
        default=None,
        help="Folder containing maf2vcf.pl and vcf2maf.pl [Default: folder of maf2vcf.pl in PATH].",
    )
    r.add_argument(
        "--allow-missing-samples",
        action="store_true",
        help="Warn instead of failing when a paired sample is absent from the annotated VCF.",
    )
    r.add_argument("--summary-json", default=None, help="Write a machine-readable run summary here.")
    r.add_argument("--report-html", default=None, help="Write an HTML run report here.")
    r.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned commands.")
    _add_verbose(r)

    # -----------------
    # split
    # -----------------
    s = sub.add_parser("split", help="Split a multi-sample annotated VCF into per tumor/normal pair VCFs.")
    s.add_argument("--vep-vcf", required=True, type=_path_exists, help="Multi-sample VEP-annotated VCF.")
    s.add_argument("--pairs", required=True, type=_path_exists, help="TSV of tumor<TAB>normal sample ids.")
    s.add_argument("--outdir", required=True, help="Output directory for <tumor>_vs_<normal>.vep.vcf files.")
    s.add_argument(
        "--allow-missing-samples",
        action="store_true",
        help="Warn instead of failing when a paired sample is absent from the VCF.",
    )
    _add_verbose(s)

    # -----------------
    # merge
    # -----------------
    m = sub.add_parser("merge", help="Copy retained columns of the input MAF into reannotated per-pair MAFs.")
    m.add_argument("--input-maf", required=True, type=_path_exists, help="Original, pre-annotation MAF.")
    m.add_argument(
        "--maf",
        required=True,
        nargs="+",
        type=_path_exists,
        help="Reannotated per-pair MAF(s); rewritten in place.",
    )
    _add_retain_args(m)
    m.add_argument("--output-maf", default=None, help="Also concatenate the merged MAFs into this file.")
    _add_verbose(m)

    # -----------------
    # doctor
    # -----------------
    d = sub.add_parser("doctor", help="Check your environment for perl, VEP, vcf2maf and htslib tools.")
    d.add_argument("--script-dir", default=None, help="Folder containing maf2vcf.pl and vcf2maf.pl.")
    d.add_argument("--vep-path", default=_DEFAULTS.vep_path, help="Folder containing the VEP script.")
    d.add_argument("--ref-fasta", default=_DEFAULTS.ref_fasta, help="Reference FASTA.")
    d.add_argument("--dry-run", action="store_true", help="Print checks without exiting nonzero.")
    _add_verbose(d)

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser("make-toy-data", help="Generate a tiny annotated VCF, pair table and MAFs for demos/tests.")
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    return p


# -----------------
# Command handlers
# -----------------

def _config_from_args(args: argparse.Namespace) -> ReannotationConfig:
    return ReannotationConfig(
        input_maf=args.input_maf,
        output_maf=args.output_maf,
        tmp_dir=args.tmp_dir,
        tum_depth_col=args.tum_depth_col,
        tum_rad_col=args.tum_rad_col,
        tum_vad_col=args.tum_vad_col,
        nrm_depth_col=args.nrm_depth_col,
        nrm_rad_col=args.nrm_rad_col,
        nrm_vad_col=args.nrm_vad_col,
        retain_columns=tuple(parse_retain_columns(args.retain_cols)),
        custom_enst=args.custom_enst,
        vep_path=args.vep_path,
        vep_data=args.vep_data,
        vep_forks=int(args.vep_forks),
        species=args.species,
        ncbi_build=args.ncbi_build,
        ref_fasta=args.ref_fasta,
        script_dir=args.script_dir,
        duplicate_policy=DuplicateKeyPolicy(args.duplicate_keys),
        allow_missing_samples=bool(args.allow_missing_samples),
    )


def cmd_run(args: argparse.Namespace) -> int:
    # without a working or output directory, log to stderr only
    log_path: Optional[Path] = None
    if not args.dry_run and (args.tmp_dir or args.output_maf):
        log_dir = Path(args.tmp_dir or Path(args.output_maf).parent).expanduser().resolve()
        log_path = _log_path(log_dir, "run.log")
    _setup_logging(args.verbose, logfile=log_path)

    logger = logging.getLogger("mafreannot")
    logger.info("mafreannot %s", __version__)

    try:
        config = _config_from_args(args)

        if args.dry_run:
            print("Dry-run: planned commands (vcf2maf runs once per tumor/normal pair afterwards):")
            for cmd in plan_commands(config):
                print("  " + cmd_to_str(cmd))
            print(f"Planned output: {config.output_maf or 'STDOUT'}")
            return 0

        summary = reannotate_maf(config, progress=args.verbose > 0)

        if args.summary_json:
            write_json(Path(args.summary_json), summary)
        if args.report_html:
            render_report(out_path=args.report_html, version=__version__, summary=summary)
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_split(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "split.log")
    _setup_logging(args.verbose, logfile=log_path)

    try:
        decomposition, written = split_annotated_vcf(
            args.vep_vcf,
            args.pairs,
            outdir,
            allow_missing=bool(args.allow_missing_samples),
        )
        counts = decomposition.counts()
        for pair, path in written.items():
            print(f"{path}\t{counts[pair.label]}")
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_merge(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)

    try:
        table = RetainedValueTable.from_path(
            args.input_maf,
            args.retain_cols,
            policy=DuplicateKeyPolicy(args.duplicate_keys),
        )
        header = merge_maf_files(args.maf, table)

        if args.output_maf:
            with open(args.output_maf, "wt", encoding="utf-8") as out:
                concat_mafs(args.maf, header, out)
            print(args.output_maf)
        else:
            for maf in args.maf:
                print(maf)
        return 0
    except Exception as e:
        return _handle_error(e, log_path=None)


def cmd_doctor(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)

    checks = collect_checks(script_dir=args.script_dir, vep_path=args.vep_path, ref_fasta=args.ref_fasta)

    # Human-readable output
    lines = []
    ok_all = True
    for name in CHECK_ORDER:
        r = checks[name]
        status = "OK" if r.ok else "MISSING"
        lines.append(f"{name:14s} : {status:7s}  {r.detail}")
        if not r.ok:
            ok_all = False

    print("\n".join(lines))

    # Guidance
    for name in CHECK_ORDER:
        r = checks[name]
        if not r.ok and r.howto:
            print("\n---")
            print(f"How to install/fix '{name}':")
            print(r.howto)

    if args.dry_run:
        return 0
    return 0 if ok_all else 1


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "run":
        return cmd_run(args)
    if args.cmd == "split":
        return cmd_split(args)
    if args.cmd == "merge":
        return cmd_merge(args)
    if args.cmd == "doctor":
        return cmd_doctor(args)
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
