"""Functions for argument parsing
"""

from argparse import ArgumentParser, ArgumentTypeError, RawTextHelpFormatter
from importlib.metadata import version, PackageNotFoundError

from ec_count.constants import (
    DEFAULT_EXPECTED_CELLS,
    DEFAULT_EXPECTED_GENES,
    PROGRESS_INTERVAL,
)


def get_package_version():
    """Return package version

    Returns:
        str: Package version as string
    """
    try:
        return version("EC-Count")
    except PackageNotFoundError:
        return "unknown"


def positive_int(value: str) -> int:
    """Validates arguments that must be strictly positive integers"""
    max_size = 2147483647
    try:
        int_value = int(value)
    except ValueError:
        raise ArgumentTypeError(f"{value} is not an integer") from None
    if int_value < 1 or int_value > max_size:
        raise ArgumentTypeError(
            "Argument must be < " + str(max_size) + " and > " + str(0)
        )
    return int_value


def get_args() -> ArgumentParser:
    """
    Get args.
    """

    parser = ArgumentParser(
        prog="EC-Count",
        formatter_class=RawTextHelpFormatter,
        description=(
            "This package builds a sparse gene x cell UMI count matrix from "
            "barcode sorted pseudoalignment records. Version {}".format(
                get_package_version()
            )
        ),
    )

    # REQUIRED INPUTS group.
    inputs = parser.add_argument_group("Inputs", description="Required input files.")
    inputs.add_argument(
        "-i",
        "--input",
        dest="input_path",
        required=True,
        help=(
            "The path to the records file, plain text or gz format.\n"
            "One record per line, sorted by barcode:\n\n"
            "\tbarcode\tUMI\tEC_index\n"
            "\tAAACCTGAGAAACCAT\tAAACCTGAGA\t12"
        ),
    )
    inputs.add_argument(
        "-e",
        "--ec_genes",
        dest="ec_genes_path",
        required=True,
        help=(
            "The path to the tab separated file linking every EC index\n"
            "to its comma separated genes. No header.\n\n"
            "Example:\n\n"
            "\t0\tENSG00000243485\n"
            "\t1\tENSG00000243485,ENSG00000237613"
        ),
    )
    # BARCODES group.
    barcodes = parser.add_argument_group(
        "Barcodes", description=("Cell barcode filtering and capacity hints.")
    )
    barcodes.add_argument(
        "-wl",
        "--whitelist",
        dest="whitelist_path",
        required=False,
        type=str,
        default=None,
        help=(
            "A file with one barcode per line. Records from other barcodes\n"
            "are dropped. All barcodes are kept when not given."
        ),
    )
    barcodes.add_argument(
        "-n_cells",
        "--expected_cells",
        dest="expected_cells",
        type=positive_int,
        default=DEFAULT_EXPECTED_CELLS,
        help=("Number of expected cells from your run. Only used to size buffers."),
    )
    barcodes.add_argument(
        "-n_genes",
        "--expected_genes",
        dest="expected_genes",
        type=positive_int,
        default=DEFAULT_EXPECTED_GENES,
        help=("Number of expected genes. Only used to size buffers."),
    )

    # Global group
    parser.add_argument(
        "-o",
        "--output",
        required=False,
        type=str,
        default="results",
        dest="outfolder",
        help=("Results will be written to this folder"),
    )
    parser.add_argument(
        "--dense",
        required=False,
        action="store_true",
        default=False,
        dest="dense",
        help=("Add a dense output to the results folder"),
    )
    parser.add_argument(
        "--no-progress",
        required=False,
        action="store_false",
        default=True,
        dest="show_progress",
        help=("Do not print progress while reading records"),
    )
    parser.add_argument(
        "--progress_interval",
        required=False,
        type=positive_int,
        default=PROGRESS_INTERVAL,
        dest="progress_interval",
        help=("Number of records between two progress messages"),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"EC-Count v{get_package_version()}",
        help="Print version number.",
    )
    return parser
