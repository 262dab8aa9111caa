"""mafreannot: reannotate variant effects in a MAF via per tumor/normal pair VCFs.

Public API is intentionally small; most users should use the CLI:

    mafreannot run --input-maf in.maf --output-maf out.vep.maf

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
