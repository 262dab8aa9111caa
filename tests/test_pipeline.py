import io
import sys
from pathlib import Path

import pytest

from mafreannot.models import SamplePair
from mafreannot.pipeline import (
    ReannotationConfig,
    build_vcf2maf_cmd,
    build_vep_cmd,
    concat_mafs,
    intermediate_paths,
    list_pair_vcfs,
    locate_helper_scripts,
    reannotate_maf,
    run_vep,
)


@pytest.mark.parametrize(
    "name, vcf, pairs_tsv",
    [
        ("test.maf", "test.vcf", "test.pairs.tsv"),
        ("calls.tsv", "calls.vcf", "calls.pairs.tsv"),
        ("calls", "calls.vcf", "calls.pairs.tsv"),
        ("calls.v2.txt", "calls.v2.vcf", "calls.v2.pairs.tsv"),
    ],
)
def test_intermediate_paths(tmp_path: Path, name, vcf, pairs_tsv):
    paths = intermediate_paths(f"/data/{name}", tmp_path)
    assert paths.vcf == tmp_path / vcf
    assert paths.vep_vcf == tmp_path / vcf.replace(".vcf", ".vep.vcf")
    assert paths.pairs_tsv == tmp_path / pairs_tsv


def test_vep_cmd_fork_and_species_options(tmp_path: Path):
    cfg = ReannotationConfig(input_maf="x.maf", perl="perl", vep_forks=1, species="mus_musculus")
    cmd = build_vep_cmd(cfg, tmp_path / "vep", tmp_path / "x.vcf", tmp_path / "x.vep.vcf")
    assert "--fork" not in cmd
    assert "--polyphen" not in cmd
    assert cmd[cmd.index("--species") + 1] == "mus_musculus"

    cfg = ReannotationConfig(input_maf="x.maf", perl="perl", vep_forks=4)
    cmd = build_vep_cmd(cfg, tmp_path / "vep", tmp_path / "x.vcf", tmp_path / "x.vep.vcf")
    assert cmd[cmd.index("--fork") + 1] == "4"
    assert "--polyphen" in cmd
    assert cmd[cmd.index("--output_file") + 1] == str(tmp_path / "x.vep.vcf")


def test_vcf2maf_cmd_custom_enst(tmp_path: Path):
    pair = SamplePair("T1", "N1")
    cfg = ReannotationConfig(input_maf="x.maf", perl="perl")
    cmd = build_vcf2maf_cmd(cfg, Path("vcf2maf.pl"), tmp_path / "T1_vs_N1.vcf", tmp_path / "T1_vs_N1.vep.maf", pair)
    assert cmd[cmd.index("--tumor-id") + 1] == "T1"
    assert cmd[cmd.index("--normal-id") + 1] == "N1"
    assert "--custom-enst" not in cmd

    cfg = ReannotationConfig(input_maf="x.maf", perl="perl", custom_enst="enst.txt")
    cmd = build_vcf2maf_cmd(cfg, Path("vcf2maf.pl"), tmp_path / "T1_vs_N1.vcf", tmp_path / "T1_vs_N1.vep.maf", pair)
    assert cmd[-2:] == ["--custom-enst", "enst.txt"]


def test_locate_helper_scripts(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        locate_helper_scripts(tmp_path)
    (tmp_path / "maf2vcf.pl").write_text("#!/usr/bin/env perl\n", encoding="utf-8")
    (tmp_path / "vcf2maf.pl").write_text("#!/usr/bin/env perl\n", encoding="utf-8")
    assert locate_helper_scripts(tmp_path) == (tmp_path / "maf2vcf.pl", tmp_path / "vcf2maf.pl")


def test_run_vep_skips_existing_annotation(tmp_path: Path, caplog):
    paths = intermediate_paths("in.maf", tmp_path)
    paths.vep_vcf.write_text("##fileformat=VCFv4.2\n", encoding="utf-8")
    calls = []
    with caplog.at_level("WARNING"):
        ran = run_vep(ReannotationConfig(input_maf="in.maf"), paths, runner=calls.append)
    assert ran is False
    assert calls == []
    assert "Skipping re-annotation" in caplog.text


def test_list_pair_vcfs(tmp_path: Path):
    for name in ["in.vcf", "in.vep.vcf", "T1_vs_N1.vcf", "T1_vs_N1.vep.vcf", "A_vs_B_vs_C.vcf", "odd.vcf"]:
        (tmp_path / name).write_text("", encoding="utf-8")
    found = list_pair_vcfs(tmp_path, tmp_path / "in.vcf")
    assert [(p.label, f.name) for p, f in found] == [
        ("A_vs_B_vs_C", "A_vs_B_vs_C.vcf"),
        ("T1_vs_N1", "T1_vs_N1.vcf"),
    ]
    assert found[0][0] == SamplePair("A_vs_B", "C")


def test_concat_mafs(tmp_path: Path):
    a = tmp_path / "a.vep.maf"
    b = tmp_path / "b.vep.maf"
    a.write_text("#version 2.4\nHugo_Symbol\tChromosome\nG1\t1\n", encoding="utf-8")
    b.write_text("#version 2.4\nHugo_Symbol\tChromosome\nG2\t2\nG3\t3", encoding="utf-8")
    out = io.StringIO()
    n = concat_mafs([a, b], ["Hugo_Symbol", "Chromosome"], out)
    assert n == 3
    assert out.getvalue() == "#version 2.4\nHugo_Symbol\tChromosome\nG1\t1\nG2\t2\nG3\t3\n"


def _fake_tools(tmp_path: Path, toy: dict):
    """A runner that stands in for maf2vcf, VEP and vcf2maf by writing their outputs."""
    vep_vcf = Path(toy["vep_vcf"]).read_text(encoding="utf-8")
    pair_maf = Path(toy["pair_maf"]).read_text(encoding="utf-8")
    calls = []

    def runner(cmd):
        calls.append(list(cmd))
        script = Path(cmd[1]).name
        if script == "maf2vcf.pl":
            out = Path(cmd[cmd.index("--output-dir") + 1])
            (out / "toy.vcf").write_text(vep_vcf, encoding="utf-8")
            (out / "toy.pairs.tsv").write_text("T1\tN2\n", encoding="utf-8")
            (out / "T1_vs_N2.vcf").write_text(vep_vcf, encoding="utf-8")
        elif script == "vep":
            Path(cmd[cmd.index("--output_file") + 1]).write_text(vep_vcf, encoding="utf-8")
        elif script == "vcf2maf.pl":
            Path(cmd[cmd.index("--output-maf") + 1]).write_text(pair_maf, encoding="utf-8")

    return runner, calls


def test_reannotate_maf_end_to_end_with_stub_tools(tmp_path: Path):
    from mafreannot.toy_data import make_toy_data

    toy = make_toy_data(outdir=tmp_path / "toy")
    scripts = tmp_path / "scripts"
    scripts.mkdir()
    for name in ["maf2vcf.pl", "vcf2maf.pl"]:
        (scripts / name).write_text("#!/usr/bin/env perl\n", encoding="utf-8")
    vep_dir = tmp_path / "vep"
    vep_dir.mkdir()
    (vep_dir / "vep").write_text("#!/usr/bin/env perl\n", encoding="utf-8")
    ref = tmp_path / "ref.fa"
    ref.write_text(">chr1\nACGT\n", encoding="utf-8")
    (tmp_path / "ref.fa.fai").write_text("chr1\t4\t6\t4\t5\n", encoding="utf-8")

    runner, calls = _fake_tools(tmp_path, toy)
    out_maf = tmp_path / "out.maf"
    cfg = ReannotationConfig(
        input_maf=toy["input_maf"],
        output_maf=str(out_maf),
        tmp_dir=str(tmp_path / "work"),
        vep_path=str(vep_dir),
        ref_fasta=str(ref),
        script_dir=str(scripts),
        perl=sys.executable,
        retain_columns=("Center", "Sequencer", "HGVSp"),
    )

    summary = reannotate_maf(cfg, runner=runner)

    assert [Path(c[1]).name for c in calls] == ["maf2vcf.pl", "vep", "vcf2maf.pl"]
    assert summary["pairs"] == {"T1_vs_N2": 2}
    assert summary["active_columns"] == ["center", "sequencer"]

    lines = out_maf.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "#version 2.4"
    header = lines[1].split("\t")
    assert header[-1] == "Sequencer"
    rows = [dict(zip(header, ln.split("\t"))) for ln in lines[2:]]
    assert [r["Center"] for r in rows] == ["BI", "WUGSC"]
    assert [r["HGVSp"] for r in rows] == ["p.Lys1Glu", "p.="]
    assert rows[0]["Sequencer"] == "Illumina HiSeq"
    assert (tmp_path / "work" / "T1_vs_N2.vep.vcf").exists()


def test_missing_perl_is_reported(tmp_path: Path):
    from mafreannot.toy_data import make_toy_data

    toy = make_toy_data(outdir=tmp_path / "toy")
    scripts = tmp_path / "scripts"
    scripts.mkdir()
    for name in ["maf2vcf.pl", "vcf2maf.pl"]:
        (scripts / name).write_text("#!/usr/bin/env perl\n", encoding="utf-8")
    cfg = ReannotationConfig(
        input_maf=toy["input_maf"],
        script_dir=str(scripts),
        perl=str(tmp_path / "no-such-perl"),
    )
    with pytest.raises(FileNotFoundError, match="no-such-perl"):
        reannotate_maf(cfg, runner=lambda cmd: None)


def test_render_report(tmp_path: Path):
    from mafreannot.report import render_report

    summary = {
        "input_maf": "in.maf",
        "output_maf": None,
        "tmp_dir": None,
        "records_total": 3,
        "pairs": {"T1_vs_N1": 1, "T1_vs_N2": 2},
        "rows_written": 3,
        "retain_columns": ["Center", "HGVSp"],
        "active_columns": ["center"],
        "warnings": ["Column 'HGVSp' cannot be overridden in the reannotated MAF"],
        "duplicate_keys": 0,
        "runtime_seconds": 1.5,
    }
    out = render_report(out_path=tmp_path / "r" / "report.html", version="0.1.0", summary=summary)
    html = out.read_text(encoding="utf-8")
    assert "T1_vs_N2" in html
    assert "stdout" in html
    assert "cannot be overridden" in html


def test_run_command_failure_quotes_stderr():
    from mafreannot.external import ExternalCommandError, run_command

    cmd = [sys.executable, "-c", "import sys; sys.stderr.write('vep died'); sys.exit(3)"]
    with pytest.raises(ExternalCommandError, match="vep died") as err:
        run_command(cmd)
    assert err.value.returncode == 3
    assert run_command(cmd, check=False).returncode == 3
