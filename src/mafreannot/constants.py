from __future__ import annotations

from typing import FrozenSet, Tuple

# VCF genotypes
GT_KEY = "GT"
NULL_GENOTYPE = (None, None)  # ./. once decoded by pysam

# MAF layout
MAF_COMMENT_PREFIX = "#"
MAF_HEADER_PREFIX = "Hugo_Symbol"
MAF_INPUT_HEADER_PREFIXES: Tuple[str, ...] = ("Hugo_Symbol", "Chromosome")
MAF_VERSION_LINE = "#version 2.4"

# Columns of the composite variant key, in key order.
KEY_CHROM = "chromosome"
KEY_START = "start_position"
KEY_TUMOR = "tumor_sample_barcode"
KEY_REF = "reference_allele"
KEY_ALLELE1 = "tumor_seq_allele1"
KEY_ALLELE2 = "tumor_seq_allele2"

DEFAULT_RETAIN_COLUMNS: Tuple[str, ...] = (
    "Center",
    "Verification_Status",
    "Validation_Status",
    "Mutation_Status",
    "Sequencing_Phase",
    "Sequence_Source",
    "Validation_Method",
    "Score",
    "BAM_file",
    "Sequencer",
    "Tumor_Sample_UUID",
    "Matched_Norm_Sample_UUID",
)

# Results of reannotation; never overwritten with values from the input MAF.
PROTECTED_COLUMNS: FrozenSet[str] = frozenset(
    c.lower()
    for c in """
    Hugo_Symbol Entrez_Gene_Id NCBI_Build Chromosome Start_Position End_Position Strand
    Variant_Classification Variant_Type Reference_Allele Tumor_Seq_Allele1 Tumor_Seq_Allele2
    Tumor_Sample_Barcode Matched_Norm_Sample_Barcode Match_Norm_Seq_Allele1 Match_Norm_Seq_Allele2
    Tumor_Validation_Allele1 Tumor_Validation_Allele2 Match_Norm_Validation_Allele1
    Match_Norm_Validation_Allele2 HGVSc HGVSp HGVSp_Short Transcript_ID Exon_Number t_depth
    t_ref_count t_alt_count n_depth n_ref_count n_alt_count all_effects Allele Gene Feature
    Feature_type Consequence cDNA_position CDS_position Protein_position Amino_acids Codons
    Existing_variation ALLELE_NUM DISTANCE STRAND SYMBOL SYMBOL_SOURCE HGNC_ID BIOTYPE CANONICAL
    CCDS ENSP SWISSPROT TREMBL UNIPARC RefSeq SIFT PolyPhen EXON INTRON DOMAINS GMAF AFR_MAF
    AMR_MAF ASN_MAF EAS_MAF EUR_MAF SAS_MAF AA_MAF EA_MAF CLIN_SIG SOMATIC PUBMED MOTIF_NAME
    MOTIF_POS HIGH_INF_POS MOTIF_SCORE_CHANGE IMPACT PICK VARIANT_CLASS TSL HGVS_OFFSET PHENO
    """.split()
)
