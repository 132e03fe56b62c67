#!/usr/bin/env python3
"""
Build a sparse gene x cell count matrix from pseudoalignment records
"""
import sys
import os
import time

from ec_count import (
    preprocessing,
    argsparser,
    processing,
    io,
    constants,
)
from ec_count.exceptions import MalformedRecordError, UnknownECError, UnsortedInputError


def main(argv=None):
    """Main"""
    start_time = time.time()
    parser = argsparser.get_args()
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        parser.print_help(file=sys.stderr)
        sys.exit(2)

    # Parse arguments.
    args = parser.parse_args(argv)
    # Check a few path before doing anything
    if not os.access(os.path.dirname(os.path.abspath(args.outfolder)), os.W_OK):
        sys.exit(
            f"Output folder: {args.outfolder} is not writeable."
            f"Please check permissions and/or change output folder."
        )
    preprocessing.pre_run_checks(args)

    if args.whitelist_path:
        print("Loading whitelist")
        whitelist = preprocessing.parse_whitelist(args.whitelist_path)
        print(f"{len(whitelist):,} whitelisted barcodes")
    else:
        whitelist = None

    print("Loading EC to genes table")
    ec_to_genes = preprocessing.parse_ec_genes(args.ec_genes_path)
    print(f"{len(ec_to_genes):,} equivalence classes")

    print("Counting UMIs")
    try:
        counts = processing.convert(
            input_path=args.input_path,
            ec_to_genes=ec_to_genes,
            whitelist=whitelist,
            est_ncells=args.expected_cells,
            est_ngenes=args.expected_genes,
            show_progress=args.show_progress,
            progress_interval=args.progress_interval,
        )
    except (MalformedRecordError, UnknownECError, UnsortedInputError) as error:
        sys.exit(f"[ERROR] {error}\nExiting the application.\n")
    print(
        f"Done counting: {counts.n_cells:,} cells, {counts.n_genes:,} genes, "
        f"{counts.nnz:,} non zero entries"
    )

    prefix = io.write_data_to_mtx(counts=counts, outfolder=args.outfolder)
    print(f"Matrix written to {prefix}")
    if args.dense:
        print("Writing dense format output")
        io.write_dense(
            counts=counts,
            outfolder=args.outfolder,
            filename=constants.DENSE_FILENAME,
        )

    # Create report and write it to disk
    io.create_report(
        counts=counts,
        version=argsparser.get_package_version(),
        start_time=start_time,
        args=args,
        outfolder=args.outfolder,
    )


if __name__ == "__main__":
    main()
