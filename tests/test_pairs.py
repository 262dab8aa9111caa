from pathlib import Path

import pysam
import pytest

from mafreannot.models import SamplePair
from mafreannot.pairs import (
    SampleColumns,
    SamplePairError,
    VcfFormatError,
    decompose_vcf,
    load_sample_pairs,
    open_vcf,
    pairs_for_record,
    split_annotated_vcf,
    write_pair_vcfs,
)

FIXED = "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\tFORMAT"

HEADER = [
    "##fileformat=VCFv4.2",
    "##contig=<ID=1,length=1000>",
    '##INFO=<ID=CSQ,Number=.,Type=String,Description="VEP">',
    '##FORMAT=<ID=GT,Number=1,Type=String,Description="Genotype">',
    '##FORMAT=<ID=AD,Number=R,Type=Integer,Description="Allelic depths">',
]


def _write_vcf(path: Path, samples, records, fmt="GT:AD", extra=()):
    lines = list(HEADER)
    lines.append(FIXED + "\t" + "\t".join(samples))
    for i, gts in enumerate(records):
        fixed = ["1", str(100 + i), ".", "A", "G", "50", "PASS", "CSQ=G|x", fmt]
        lines.append("\t".join(fixed + list(gts)))
    lines.extend(extra)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def _decompose(tmp_path: Path, samples, records, pairs, fmt="GT:AD", **kwargs):
    path = _write_vcf(tmp_path / "in.vcf", samples, records, fmt=fmt)
    with open_vcf(path) as vcf:
        return decompose_vcf(vcf, pairs, **kwargs)


def _positions(result, pair):
    return [rec.pos for rec in result.records[pair]]


def test_tumor_paired_with_two_normals_only_active_normal_gets_record(tmp_path: Path):
    pairs = [SamplePair("T1", "N1"), SamplePair("T1", "N2")]
    result = _decompose(tmp_path, ["T1", "N1", "N2"], [["0/1:5,5", "./.:.", "0/0:10,0"]], pairs)

    assert result.records[SamplePair("T1", "N1")] == []
    assert _positions(result, SamplePair("T1", "N2")) == [100]


def test_record_in_pair_iff_both_samples_called(tmp_path: Path):
    samples = ["T1", "N1", "T2", "N2"]
    pairs = [SamplePair("T1", "N1"), SamplePair("T2", "N2"), SamplePair("T1", "N2"), SamplePair("T2", "N1")]
    records = [
        ["0/1", "0/0", "./.", "0/0"],
        ["./.", "0/0", "0/1", "./."],
        ["0/1", "./.", "1/1", "0/0"],
        ["./.", "./.", "./.", "./."],
    ]
    result = _decompose(tmp_path, samples, records, pairs, fmt="GT")

    idx = {s: i for i, s in enumerate(samples)}
    for pair in pairs:
        expected = [
            100 + i
            for i, gts in enumerate(records)
            if gts[idx[pair.tumor]] != "./." and gts[idx[pair.normal]] != "./."
        ]
        assert _positions(result, pair) == expected, pair
    assert result.records_total == 4


def test_null_tumor_contributes_nothing(tmp_path: Path):
    pairs = [SamplePair("T1", "N1")]
    result = _decompose(tmp_path, ["T1", "N1"], [["./.:0,0", "0/1:3,3"]], pairs)
    assert result.records[pairs[0]] == []
    assert result.records_total == 1


def test_only_double_dot_is_no_call(tmp_path: Path):
    pairs = [SamplePair("T1", "N1")]
    result = _decompose(tmp_path, ["T1", "N1"], [["0/1", "."], ["0/1", "./."]], pairs, fmt="GT")
    assert _positions(result, pairs[0]) == [100]


def test_gt_offset_can_vary_per_record(tmp_path: Path):
    extra = [
        "1\t200\t.\tC\tT\t.\tPASS\t.\tAD:GT\t4,4:0/1\t9,0:0/0",
        "1\t201\t.\tC\tT\t.\tPASS\t.\tAD:GT\t4,4:0/1\t0,0:./.",
    ]
    path = _write_vcf(tmp_path / "in.vcf", ["T1", "N1"], [], extra=extra)
    with open_vcf(path) as vcf:
        result = decompose_vcf(vcf, [SamplePair("T1", "N1")])
    assert _positions(result, SamplePair("T1", "N1")) == [200]


def test_missing_gt_in_record_is_fatal(tmp_path: Path):
    with pytest.raises(VcfFormatError):
        _decompose(tmp_path, ["T1", "N1"], [["5,5", "9,0"]], [SamplePair("T1", "N1")], fmt="AD")


def test_unknown_sample_fails_loudly_by_default(tmp_path: Path):
    with pytest.raises(SamplePairError, match="N9"):
        _decompose(tmp_path, ["T1", "N1"], [["0/1", "0/0"]], [SamplePair("T1", "N9")], fmt="GT")


def test_unknown_sample_allowed_gives_empty_pair(tmp_path: Path, caplog):
    pairs = [SamplePair("T1", "N1"), SamplePair("T1", "N9")]
    with caplog.at_level("WARNING"):
        result = _decompose(tmp_path, ["T1", "N1"], [["0/1", "0/0"]], pairs, fmt="GT", allow_missing=True)
    assert result.records[SamplePair("T1", "N9")] == []
    assert len(result.records[SamplePair("T1", "N1")]) == 1
    assert "N9" in caplog.text


def test_sample_can_be_tumor_and_normal(tmp_path: Path):
    pairs = [SamplePair("A", "B"), SamplePair("C", "A")]
    cols = SampleColumns.from_header(["A", "B", "C"], pairs)
    assert dict(cols.tumor_idx) == {"A": 0, "C": 2}
    assert dict(cols.normal_idx) == {"B": 1, "A": 0}

    path = _write_vcf(tmp_path / "in.vcf", ["A", "B", "C"], [["0/1", "0/0", "0/1"]], fmt="GT")
    with open_vcf(path) as vcf:
        rec = next(iter(vcf))
        assert pairs_for_record(rec, cols) == pairs


def test_file_without_header_is_rejected(tmp_path: Path):
    path = tmp_path / "bad.vcf"
    path.write_text("1\t1\t.\tA\tG\t.\t.\t.\tGT\t0/1\n", encoding="utf-8")
    with pytest.raises(VcfFormatError):
        open_vcf(path)


def test_load_sample_pairs_skips_comments_and_dedupes(tmp_path: Path):
    tsv = tmp_path / "x.pairs.tsv"
    tsv.write_text("#tumor\tnormal\nT1\tN1\n\nT1\tN2\nT1\tN1\n", encoding="utf-8")
    assert load_sample_pairs(tsv) == [SamplePair("T1", "N1"), SamplePair("T1", "N2")]


def test_load_sample_pairs_rejects_short_rows(tmp_path: Path):
    tsv = tmp_path / "bad.tsv"
    tsv.write_text("T1\n", encoding="utf-8")
    with pytest.raises(SamplePairError):
        load_sample_pairs(tsv)


def test_write_pair_vcfs_writes_every_declared_pair(tmp_path: Path):
    pairs = [SamplePair("T1", "N1"), SamplePair("T1", "N2")]
    path = _write_vcf(tmp_path / "in.vcf", ["T1", "N1", "N2"], [["0/1:5,5", "./.:.", "0/0:10,0"]])

    with open_vcf(path) as vcf:
        written = write_pair_vcfs(decompose_vcf(vcf, pairs), tmp_path / "out")

    assert set(p.name for p in written.values()) == {"T1_vs_N1.vep.vcf", "T1_vs_N2.vep.vcf"}
    empty = (tmp_path / "out" / "T1_vs_N1.vep.vcf").read_text(encoding="utf-8").splitlines()
    assert empty[0] == "##fileformat=VCFv4.2"
    assert empty[-1] == FIXED + "\tT1\tN1"


def test_pair_vcf_reads_back_with_two_samples(tmp_path: Path):
    path = _write_vcf(
        tmp_path / "in.vcf",
        ["N2", "T1", "N1"],
        [["0/0:10,0", "0/1:5,5", "./.:."], ["0/0:8,0", "1/1:0,7", "0/0:9,0"]],
    )
    pairs_tsv = tmp_path / "in.pairs.tsv"
    pairs_tsv.write_text("T1\tN2\n", encoding="utf-8")

    _, written = split_annotated_vcf(path, pairs_tsv, tmp_path / "out")

    with pysam.VariantFile(str(written[SamplePair("T1", "N2")])) as vcf:
        assert list(vcf.header.samples) == ["T1", "N2"]
        assert "CSQ" in vcf.header.info
        recs = list(vcf)
    assert [r.pos for r in recs] == [100, 101]
    assert recs[0].samples["T1"]["GT"] == (0, 1)
    assert recs[0].samples["T1"]["AD"] == (5, 5)
    assert recs[1].samples["N2"]["GT"] == (0, 0)
    assert recs[1].info["CSQ"] == ("G|x",)
    assert list(recs[1].filter.keys()) == ["PASS"]
