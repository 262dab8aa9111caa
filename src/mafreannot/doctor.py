"""Environment self-checks.

This module powers the ``mafreannot doctor`` CLI command.

Rationale
---------
The merge and split steps are pure Python, but a full ``mafreannot run``
shells out to Perl (maf2vcf.pl, VEP, vcf2maf.pl) and vcf2maf in turn needs
samtools, bgzip and tabix. A single command that pinpoints what is missing
saves a failed multi-hour run.
"""

from __future__ import annotations

import logging
import platform
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from .external import run_command
from .pipeline import find_vep_script, locate_helper_scripts
from .utils import is_nonempty_file

logger = logging.getLogger(__name__)

CHECK_ORDER = ("python", "perl", "samtools", "bgzip", "tabix", "helper_scripts", "vep", "ref_fasta")


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    detail: str
    howto: Optional[str] = None


def check_python() -> CheckResult:
    v = platform.python_version()
    return CheckResult(name="python", ok=True, detail=f"Python {v}")


def check_executable(name: str, *, howto: Optional[str] = None) -> CheckResult:
    p = shutil.which(name)
    if p is None:
        return CheckResult(name=name, ok=False, detail="not found in PATH", howto=howto)
    return CheckResult(name=name, ok=True, detail=p)


def check_perl() -> CheckResult:
    p = shutil.which("perl")
    if p is None:
        return CheckResult(
            name="perl",
            ok=False,
            detail="not found in PATH",
            howto="Ubuntu: sudo apt-get install -y perl\nConda/mamba: mamba install -c conda-forge perl",
        )
    try:
        cp = run_command([p, "-e", "print $]"])
        return CheckResult(name="perl", ok=True, detail=f"{p} (perl {cp.stdout.strip()})")
    except Exception as e:
        return CheckResult(name="perl", ok=False, detail=f"perl present but not usable: {e}")


def check_helper_scripts(script_dir: Optional[str | Path]) -> CheckResult:
    try:
        maf2vcf, _ = locate_helper_scripts(script_dir)
    except FileNotFoundError as e:
        return CheckResult(
            name="helper_scripts",
            ok=False,
            detail=str(e),
            howto="Download maf2vcf.pl and vcf2maf.pl from https://github.com/mskcc/vcf2maf into one folder.",
        )
    return CheckResult(name="helper_scripts", ok=True, detail=str(maf2vcf.parent))


def check_vep(vep_path: str | Path) -> CheckResult:
    try:
        script = find_vep_script(vep_path)
    except FileNotFoundError as e:
        return CheckResult(
            name="vep",
            ok=False,
            detail=str(e),
            howto="Install Ensembl VEP and pass its folder with --vep-path.",
        )
    return CheckResult(name="vep", ok=True, detail=str(script))


def check_ref_fasta(ref_fasta: str | Path) -> CheckResult:
    ref = Path(ref_fasta).expanduser()
    if not is_nonempty_file(ref):
        return CheckResult(name="ref_fasta", ok=False, detail=f"not found: {ref}", howto="Pass --ref-fasta.")
    fai = ref.with_suffix(ref.suffix + ".fai")
    detail = str(ref) if fai.exists() else f"{ref} (no .fai yet; created on first run)"
    return CheckResult(name="ref_fasta", ok=True, detail=detail)


def collect_checks(
    *,
    script_dir: Optional[str | Path] = None,
    vep_path: str | Path,
    ref_fasta: str | Path,
) -> Dict[str, CheckResult]:
    """Run all checks and return a mapping name->result."""
    checks: Dict[str, CheckResult] = {}

    checks["python"] = check_python()
    checks["perl"] = check_perl()
    checks["samtools"] = check_executable(
        "samtools",
        howto=(
            "Ubuntu: sudo apt-get install -y samtools\n"
            "Conda/mamba: mamba install -c bioconda samtools"
        ),
    )
    checks["bgzip"] = check_executable(
        "bgzip",
        howto=(
            "Ubuntu: sudo apt-get install -y tabix\n"
            "Conda/mamba: mamba install -c bioconda htslib"
        ),
    )
    checks["tabix"] = check_executable(
        "tabix",
        howto=(
            "Ubuntu: sudo apt-get install -y tabix\n"
            "Conda/mamba: mamba install -c bioconda htslib"
        ),
    )
    checks["helper_scripts"] = check_helper_scripts(script_dir)
    checks["vep"] = check_vep(vep_path)
    checks["ref_fasta"] = check_ref_fasta(ref_fasta)

    return checks
