#!/usr/bin/env python3
"""
End-to-end TSS/TSR analysis from a sample sheet.

Steps:
1. Load TSS (and optional TSR) tables listed in the sample sheet
2. Cluster TSSs into TSRs when no TSR tables are given
3. Annotate TSSs and TSRs against the GTF
4. Build count matrices and TMM-normalize
5. Dominant TSS per gene, genomic distribution, detected features
6. Differential TSRs between two conditions (when requested)

Outputs tables and figures under --outdir.

Example:
    python scripts/run_tsr_analysis.py --samples samples.tsv --gtf genes.gtf \\
        --outdir results --compare ctrl ko
"""

import argparse
import logging
import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt

# Add src to path
BASE_PATH = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(BASE_PATH / "src"))

import tsr_explorer as te

logger = logging.getLogger("run_tsr_analysis")


def parse_args(argv=None):
    p = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    p.add_argument("--samples", required=True, help="Sample sheet (csv, tsv or xlsx)")
    p.add_argument("--gtf", required=True, help="GTF/GFF gene annotation")
    p.add_argument("--outdir", default="results", help="Output directory")
    p.add_argument("--genome", default=None, help="Genome FASTA for sequence analysis")
    p.add_argument("--feature-type", default="gene", choices=["gene", "transcript"])
    p.add_argument("--upstream", type=int, default=1000)
    p.add_argument("--downstream", type=int, default=100)
    p.add_argument("--threshold", type=float, default=1.0, help="Minimum TSS score")
    p.add_argument("--cluster-distance", type=int, default=25, help="Max gap between clustered TSSs")
    p.add_argument("--compare", nargs=2, metavar=("GROUP1", "GROUP2"), default=None,
                   help="Conditions to compare (log2FC = GROUP2 - GROUP1)")
    p.add_argument("--log2fc-cutoff", type=float, default=1.0)
    p.add_argument("--fdr-cutoff", type=float, default=0.05)
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    outdir = Path(args.outdir)
    (outdir / "figures").mkdir(parents=True, exist_ok=True)

    # =========================================================================
    # Load
    # =========================================================================
    exp = te.TSRExperiment.from_sample_sheet(args.samples)
    model = te.read_annotation(args.gtf)
    if not exp.tsr:
        te.tss_to_tsr(exp, max_distance=args.cluster_distance, threshold=args.threshold)

    # =========================================================================
    # Annotation and normalization
    # =========================================================================
    for data_type in ("tss", "tsr"):
        te.annotate_features(exp, model, data_type=data_type, feature_type=args.feature_type,
                             upstream=args.upstream, downstream=args.downstream)
        te.count_matrix(exp, data_type)
        te.tmm_normalize(exp, data_type, threshold=args.threshold)

    exp.get_matrix("tsr").to_csv(outdir / "tsr_counts.tsv", sep="\t")
    exp.get_matrix("tsr", "tmm").to_csv(outdir / "tsr_tmm_cpm.tsv", sep="\t")
    te.library_summary(exp.get_matrix("tss")).to_csv(outdir / "library_summary.tsv", sep="\t")

    dist = te.genomic_distribution(exp, "tss", threshold=args.threshold)
    te.write_table(dist, outdir / "genomic_distribution.tsv")
    te.plot_genomic_distribution(dist, outpath=outdir / "figures" / "genomic_distribution.png")

    detected = te.detect_features(exp, "tss", threshold=args.threshold)
    detected.to_csv(outdir / "detected_features.tsv", sep="\t")
    te.plot_detected_features(detected, outpath=outdir / "figures" / "detected_features.png")

    if len(exp.samples("tss")) > 1:
        te.plot_correlation(exp, "tss", outpath=outdir / "figures" / "tss_correlation.png")
    te.plot_average(exp, threshold=args.threshold, outpath=outdir / "figures" / "tss_average.png")
    plt.close("all")

    # =========================================================================
    # Dominant TSSs
    # =========================================================================
    dominant = te.dominant_tss(exp, feature_type=args.feature_type, threshold=args.threshold,
                               upstream=args.upstream, downstream=args.downstream)
    for sample, df in dominant.items():
        te.write_table(df, outdir / "dominant" / f"{sample}_dominant_tss.tsv")

    # =========================================================================
    # Sequences
    # =========================================================================
    if args.genome:
        genome = te.load_genome(args.genome)
        seqs = te.tss_sequences(exp, genome, distance=10, threshold=args.threshold)
        freqs = te.dinucleotide_frequencies(seqs)
        te.write_table(freqs, outdir / "dinucleotide_frequencies.tsv")
        te.plot_dinucleotide_frequencies(freqs, outpath=outdir / "figures" / "dinucleotides.png")
        te.plot_sequence_logo(seqs, outpath=outdir / "figures" / "tss_logo.png")
        plt.close("all")

    # =========================================================================
    # Differential TSRs
    # =========================================================================
    if args.compare:
        g1, g2 = args.compare
        sheet = exp.sample_sheet
        if sheet is None or "condition" not in sheet.columns:
            raise SystemExit("--compare needs a 'condition' column in the sample sheet.")
        selected = sheet[sheet["condition"].astype(str).isin([g1, g2])]
        samples = [s for s in selected.index if s in exp.samples("tsr")]
        groups = selected.loc[samples, "condition"].astype(str).tolist()

        fit = te.fit_de_model(exp, "tsr", samples=samples, groups=groups)
        res = te.differential_expression(fit, "tsr", compare_groups=[g1, g2])
        res = te.annotate_differential_tsrs(res, model, feature_type=args.feature_type,
                                            upstream=args.upstream, downstream=args.downstream)
        res["change"] = te.classify_changes(res, args.log2fc_cutoff, args.fdr_cutoff)
        te.write_table(res, outdir / f"differential_tsrs_{g2}_vs_{g1}.tsv")
        te.write_table(
            te.export_for_enrichment(res, args.log2fc_cutoff, args.fdr_cutoff),
            outdir / f"enrichment_{g2}_vs_{g1}.tsv",
        )
        te.volcano_plot(res, log2fc_cutoff=args.log2fc_cutoff, fdr_cutoff=args.fdr_cutoff,
                        title=f"{g2} vs {g1}", outpath=outdir / "figures" / f"volcano_{g2}_vs_{g1}.png")
        plt.close("all")

    logger.info(f"Results in: {outdir}")


if __name__ == "__main__":
    main()
