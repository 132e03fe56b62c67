"""Sets of functions to load and validate the inputs before counting"""

import gzip
from argparse import Namespace

import polars as pl

from ec_count.io import check_file
from ec_count.constants import (
    BARCODE_COLUMN,
    EC_COLUMN,
    GENES_COLUMN,
    GENES_SEPARATOR,
    BARCODE_PATTERN,
    STRIP_CHARS,
    TENX_SUFFIX_PATTERN,
)


def read_table(file_path, **kwargs) -> pl.DataFrame:
    """Read a plain or gzipped delimited file with polars.

    Raises:
        SystemExit: If the file is empty or has unexpected columns
    """
    try:
        if str(file_path).endswith(".gz"):
            with gzip.open(file_path, "rb") as gz_file:
                return pl.read_csv(gz_file.read(), **kwargs)
        return pl.read_csv(file_path, **kwargs)
    except pl.exceptions.NoDataError:
        raise SystemExit(f"File {file_path} is empty. Exiting") from None
    except (pl.exceptions.SchemaError, pl.exceptions.ComputeError) as error:
        raise SystemExit(
            f"File {file_path} does not have the expected columns: {error}. Exiting"
        ) from None


def check_equi_length(df: pl.DataFrame, column_name: str):
    """Check that all the barcodes in the specified column of a polars DataFrame are the same length.

    Args:
        df (pl.DataFrame): The DataFrame containing the barcodes.
        column_name (str): The name of the column containing the barcodes.

    Raises:
        ValueError: If the barcodes have different lengths.

    """
    barcode_lengths = df[column_name].str.len_chars().unique()
    if len(barcode_lengths) > 1:
        raise ValueError(f"Barcodes in {column_name} column have different lengths.")


def check_sequence_pattern(
    df: pl.DataFrame,
    pattern: str,
    column_name: str,
    file_type: str,
    expected_pattern: str,
    filename: str,
) -> None:
    """Check that a column of a polars df matches a given pattern and exit if not

    Args:
        df (pl.DataFrame): Df holding the info to be tested
        pattern (str): Regex pattern to be tested
        column_name (str): Which column to test
        file_type (str): File type for the error raised
        expected_pattern (str): Human readable pattern to be raised
        filename (str): File the df was read from

    Raises:
        SystemExit: Exits if some patterns don't match
    """
    regex_test = df.with_columns(
        pl.col(column_name).str.contains(pattern).fill_null(False).alias("regex")
    )
    if not regex_test.get_column("regex").all():
        sequences = (
            regex_test.filter(~pl.col("regex")).get_column(column_name).to_list()
        )
        sequences_str = "\n".join(str(sequence) for sequence in sequences)
        raise SystemExit(
            f"Some sequences in the {file_type} file are not only composed "
            f"of {expected_pattern} in the column: {column_name}. "
            f"Here are the sequences: {sequences_str}. Filepath: {filename}"
        )


def parse_whitelist(filename: str) -> set:
    """Reads the barcode whitelist, one barcode per line without header.

    The function accepts plain barcodes or 10X style barcodes with the
    `-1` at the end of each barcode.

    Args:
        filename (str): Whitelist file, plain or gzipped

    Returns:
        set: The set of whitelisted barcodes
    """
    file_path = check_file(filename)
    barcodes_df = read_table(
        file_path, has_header=False, schema={BARCODE_COLUMN: pl.String}
    ).with_columns(
        pl.col(BARCODE_COLUMN)
        .str.strip_chars(STRIP_CHARS)
        .str.replace(TENX_SUFFIX_PATTERN, "")
    ).filter(
        pl.col(BARCODE_COLUMN).is_not_null() & (pl.col(BARCODE_COLUMN) != "")
    )
    if barcodes_df.is_empty():
        raise SystemExit(f"Whitelist {filename} holds no barcode. Exiting")

    check_sequence_pattern(
        df=barcodes_df,
        pattern=BARCODE_PATTERN,
        column_name=BARCODE_COLUMN,
        file_type="Whitelist",
        expected_pattern="ACGTN",
        filename=filename,
    )
    try:
        check_equi_length(df=barcodes_df, column_name=BARCODE_COLUMN)
    except ValueError as error:
        raise SystemExit(f"{error} Filepath: {filename}") from None

    return set(barcodes_df.get_column(BARCODE_COLUMN).to_list())


def parse_ec_genes(filename: str) -> dict:
    """Reads the EC to genes table.

    The expected file format is tab separated, without header. The first
    column is the EC index, the second one the comma separated gene ids.
    An empty second column is an EC that maps to no gene.
    e.g. file content
        0	ENSG00000243485
        1	ENSG00000243485,ENSG00000237613
        2

    Args:
        filename (str): file path as a string

    Returns:
        dict: EC index to list of gene ids
    """
    file_path = check_file(filename)
    ec_df = read_table(
        file_path,
        separator="\t",
        has_header=False,
        quote_char=None,
        schema={EC_COLUMN: pl.String, GENES_COLUMN: pl.String},
    ).with_columns(
        pl.col(EC_COLUMN).str.strip_chars().cast(pl.Int64, strict=False).alias("ec_index"),
        pl.col(GENES_COLUMN).fill_null(""),
    )

    not_integers = ec_df.filter(pl.col("ec_index").is_null()).get_column(EC_COLUMN)
    if len(not_integers) != 0:
        not_integers_str = ",".join(str(ec) for ec in not_integers.to_list())
        raise SystemExit(
            f"The EC to genes table at {file_path} has EC indexes that are not "
            f"integers: {not_integers_str}. Exiting"
        )
    duplicated = (
        ec_df.filter(pl.col("ec_index").is_duplicated()).get_column("ec_index").unique()
    )
    if len(duplicated) != 0:
        duplicated_str = ",".join(str(ec) for ec in sorted(duplicated.to_list()))
        raise SystemExit(
            f"The EC to genes table at {file_path} has duplicated EC indexes: "
            f"{duplicated_str}. Exiting"
        )

    ec_to_genes = {}
    for ec_index, genes in ec_df.select("ec_index", GENES_COLUMN).iter_rows():
        ec_to_genes[ec_index] = [
            gene.strip() for gene in genes.split(GENES_SEPARATOR) if gene.strip()
        ]
    return ec_to_genes


def pre_run_checks(arguments: Namespace) -> None:
    """Checks that the inputs exist and the capacity hints make sense

    Args:
        arguments (Namespace): Parsed arguments

    Raises:
        SystemExit: If a file is missing or a hint is not positive
    """
    check_file(arguments.input_path)
    check_file(arguments.ec_genes_path)
    if arguments.whitelist_path:
        check_file(arguments.whitelist_path)
    if arguments.expected_cells < 1 or arguments.expected_genes < 1:
        raise SystemExit(
            "[ERROR] Expected cells and expected genes must be positive integers.\n"
            "Exiting the application.\n"
        )
