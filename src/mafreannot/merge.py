"""Carry selected columns of the input MAF over into reannotated MAFs.

The input MAF is read once into a :class:`RetainedValueTable` keyed by
:class:`~mafreannot.models.VariantKey`. Each reannotated per-pair MAF is then
rewritten: its header gains any retained columns it lacks, and every data row
takes the retained values stored for its key. Columns in
:data:`~mafreannot.constants.PROTECTED_COLUMNS` are never overwritten.
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Union

from .constants import (
    KEY_ALLELE1,
    KEY_ALLELE2,
    KEY_CHROM,
    KEY_REF,
    KEY_START,
    KEY_TUMOR,
    MAF_COMMENT_PREFIX,
    MAF_HEADER_PREFIX,
    MAF_INPUT_HEADER_PREFIXES,
    PROTECTED_COLUMNS,
)
from .models import DuplicateKeyPolicy, VariantKey, resolve_variant_allele
from .utils import atomic_write, norm_col, open_textmaybe_gzip, split_fields

logger = logging.getLogger(__name__)

_KEY_COLUMNS = (KEY_CHROM, KEY_START, KEY_TUMOR, KEY_REF, KEY_ALLELE2)


class DuplicateVariantKeyError(ValueError):
    """Raised when two input rows share a variant key and duplicates are rejected."""


def parse_retain_columns(columns: Union[str, Sequence[str], None]) -> List[str]:
    """Parse ``"Center,Score"`` (or a sequence of names) into a de-duplicated list."""
    if columns is None:
        return []
    if isinstance(columns, str):
        columns = columns.split(",")
    out: List[str] = []
    seen = set()
    for c in columns:
        c = c.strip()
        if c and norm_col(c) not in seen:
            seen.add(norm_col(c))
            out.append(c)
    return out


def _column_index(header_fields: Sequence[str]) -> Dict[str, int]:
    return {norm_col(name): i for i, name in enumerate(header_fields)}


def _require_columns(col_idx: Mapping[str, int], names: Sequence[str], source: str) -> List[int]:
    missing = [n for n in names if n not in col_idx]
    if missing:
        raise ValueError(f"{source} header is missing required column(s): {', '.join(missing)}")
    return [col_idx[n] for n in names]


def _cell(fields: Sequence[str], idx: Optional[int]) -> str:
    if idx is None or idx >= len(fields):
        return ""
    return fields[idx]


class RetainedValueTable:
    """Retained input-MAF values per variant key; read-only once built."""

    def __init__(
        self,
        retain_columns: Sequence[str],
        values: Mapping[VariantKey, Mapping[str, str]],
        *,
        active_columns: Sequence[str] = (),
        warnings: Sequence[str] = (),
        duplicate_keys: int = 0,
    ) -> None:
        self.retain_columns = tuple(retain_columns)
        self.active_columns = tuple(active_columns)
        self.warnings = tuple(warnings)
        self.duplicate_keys = int(duplicate_keys)
        self._values = MappingProxyType({k: MappingProxyType(dict(v)) for k, v in values.items()})

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def row(self, key: VariantKey) -> Mapping[str, str]:
        return self._values.get(key, MappingProxyType({}))

    def get(self, key: VariantKey, column: str) -> Optional[str]:
        return self.row(key).get(norm_col(column))

    @classmethod
    def from_maf(
        cls,
        lines: Iterable[str],
        retain_columns: Union[str, Sequence[str], None],
        *,
        policy: DuplicateKeyPolicy = DuplicateKeyPolicy.LAST,
        source: str = "input MAF",
    ) -> "RetainedValueTable":
        """Build the table from the lines of the original, pre-annotation MAF.

        Parameters
        ----------
        lines:
            MAF lines; ``#`` comment lines are skipped. The header is the first
            line starting with ``Hugo_Symbol`` or ``Chromosome``.
        retain_columns:
            Column names (case-insensitive) whose values should survive
            reannotation. Names absent from the input, or protected, are
            skipped with a warning.
        policy:
            How to resolve rows that collapse onto the same variant key.
        """
        retain = parse_retain_columns(retain_columns)
        policy = DuplicateKeyPolicy(policy)

        col_idx: Optional[Dict[str, int]] = None
        key_idx: List[int] = []
        allele1_idx: Optional[int] = None
        active: Dict[str, int] = {}
        warnings: List[str] = []
        values: Dict[VariantKey, Dict[str, str]] = {}
        duplicates = 0

        for line in lines:
            if line.startswith(MAF_COMMENT_PREFIX) or not line.strip():
                continue
            fields = split_fields(line)

            if col_idx is None:
                if not line.startswith(MAF_INPUT_HEADER_PREFIXES):
                    raise ValueError(f"{source}: data line found before the column header line")
                col_idx = _column_index(fields)
                key_idx = _require_columns(col_idx, _KEY_COLUMNS, source)
                allele1_idx = col_idx.get(KEY_ALLELE1)
                for name in retain:
                    c = norm_col(name)
                    if c in PROTECTED_COLUMNS:
                        warnings.append(f"Column '{name}' cannot be overridden in the reannotated MAF")
                    elif c not in col_idx:
                        warnings.append(f"Column '{name}' not found in {source}")
                    else:
                        active[c] = col_idx[c]
                for w in warnings:
                    logger.warning(w)
                continue

            chrom, start, tumor, ref, allele2 = (_cell(fields, i) for i in key_idx)
            allele = resolve_variant_allele(ref, _cell(fields, allele1_idx), allele2)
            key = VariantKey(chrom=chrom, start=start, tumor_sample=tumor, ref=ref, variant_allele=allele)

            if key in values:
                duplicates += 1
                if policy is DuplicateKeyPolicy.ERROR:
                    raise DuplicateVariantKeyError(f"{source}: duplicate variant key {key}")
                if policy is DuplicateKeyPolicy.FIRST:
                    continue
            values[key] = {c: _cell(fields, i) for c, i in active.items()}

        if col_idx is None:
            raise ValueError(f"{source}: no column header line found")

        if duplicates:
            msg = (
                f"{duplicates} row(s) in {source} share a variant key with an earlier row; "
                f"kept the {policy.value} occurrence"
            )
            logger.warning(msg)
            warnings.append(msg)

        logger.info("Retained %d column(s) for %d variant(s) from %s", len(active), len(values), source)
        return cls(
            retain,
            values,
            active_columns=list(active),
            warnings=warnings,
            duplicate_keys=duplicates,
        )

    @classmethod
    def from_path(
        cls,
        path: str | Path,
        retain_columns: Union[str, Sequence[str], None],
        *,
        policy: DuplicateKeyPolicy = DuplicateKeyPolicy.LAST,
    ) -> "RetainedValueTable":
        with open_textmaybe_gzip(path, "rt") as fh:
            return cls.from_maf(fh, retain_columns, policy=policy, source=str(path))


def extend_header(header_fields: Sequence[str], retain_columns: Union[str, Sequence[str], None]) -> List[str]:
    """Append retained column names missing from ``header_fields``, in declared order."""
    out = list(header_fields)
    present = {norm_col(c) for c in out}
    for name in parse_retain_columns(retain_columns):
        if norm_col(name) not in present:
            present.add(norm_col(name))
            out.append(name)
    return out


def merge_maf_lines(
    lines: Iterable[str],
    table: RetainedValueTable,
    output_header: Sequence[str],
    *,
    stats: Optional[Dict[str, int]] = None,
) -> Iterator[str]:
    """Yield the lines of a reannotated MAF with retained values merged in."""
    if stats is None:
        stats = {}
    stats.setdefault("rows", 0)
    stats.setdefault("rows_matched", 0)

    expected = [norm_col(c) for c in output_header]
    col_idx: Optional[Dict[str, int]] = None
    key_idx: List[int] = []
    width = len(output_header)

    for line in lines:
        if line.startswith(MAF_COMMENT_PREFIX):
            yield line if line.endswith("\n") else line + "\n"
            continue
        if not line.strip():
            continue

        fields = split_fields(line)
        if line.startswith(MAF_HEADER_PREFIX):
            own = [norm_col(c) for c in extend_header(fields, table.retain_columns)]
            if own != expected:
                raise ValueError("Reannotated MAF header differs from the common header of this run")
            col_idx = _column_index(output_header)
            key_idx = _require_columns(col_idx, _KEY_COLUMNS, "Reannotated MAF")
            yield "\t".join(output_header) + "\n"
            continue
        if col_idx is None:
            raise ValueError("Reannotated MAF: data line found before the Hugo_Symbol header line")

        if len(fields) < width:
            fields.extend([""] * (width - len(fields)))
        chrom, start, tumor, ref, allele2 = (fields[i] for i in key_idx)
        key = VariantKey(chrom=chrom, start=start, tumor_sample=tumor, ref=ref, variant_allele=allele2)

        stats["rows"] += 1
        retained = table.row(key)
        if retained:
            stats["rows_matched"] += 1
            for c, value in retained.items():
                i = col_idx.get(c)
                if i is not None and c not in PROTECTED_COLUMNS:
                    fields[i] = value
        yield "\t".join(fields) + "\n"


def read_maf_header(path: str | Path) -> List[str]:
    """Return the ``Hugo_Symbol`` header fields of a MAF."""
    with open_textmaybe_gzip(path, "rt") as fh:
        for line in fh:
            if line.startswith(MAF_HEADER_PREFIX):
                return split_fields(line)
    raise ValueError(f"No {MAF_HEADER_PREFIX} header line found in {path}")


def merge_maf_file(path: str | Path, table: RetainedValueTable, output_header: Sequence[str]) -> Dict[str, int]:
    """Rewrite ``path`` in place; the new content replaces it atomically."""
    stats: Dict[str, int] = {}
    with atomic_write(path) as dst:
        with open(path, "rt", encoding="utf-8") as src:
            for line in merge_maf_lines(src, table, output_header, stats=stats):
                dst.write(line)
    logger.info("Merged %s: %d/%d rows matched the input MAF", path, stats["rows_matched"], stats["rows"])
    return stats


def merge_maf_files(paths: Sequence[str | Path], table: RetainedValueTable) -> List[str]:
    """Merge retained values into every per-pair MAF and return the output header."""
    if not paths:
        raise ValueError("No reannotated MAFs to merge")
    output_header = extend_header(read_maf_header(paths[0]), table.retain_columns)
    for p in paths:
        merge_maf_file(p, table, output_header)
    return output_header
