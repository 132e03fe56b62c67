import os
import gzip
import shutil
import time
from pathlib import Path

import pandas as pd
import yaml

from scipy import io

from ec_count.constants import (
    N_RECORD_FIELDS,
    MTX_FIELD,
    MTX_COMMENT,
    COUNT_FOLDER,
    FEATURES_MTX,
    BARCODE_MTX,
    MATRIX_MTX,
    TEMP_MTX,
    REPORT_FILENAME,
    FEATURE_TYPE,
)
from ec_count.exceptions import MalformedRecordError


def open_binary(file_path):
    """Open a plain or gzipped file for reading bytes"""
    if str(file_path).endswith(".gz"):
        return gzip.open(file_path, "rb")
    return open(file_path, "rb")


def check_file(file_str) -> Path:
    """Check that a file exists and return it as a Path

    Args:
        file_str (str): Path to the file

    Raises:
        SystemExit: If the file cannot be found

    Returns:
        Path: Path of the file
    """
    file_path = Path(file_str)
    if not file_path.is_file():
        raise SystemExit(f"File {file_path} does not exist. Exiting")
    return file_path


def parse_record_line(line: str, line_number: int, source="input") -> tuple[str, str, int]:
    """Split one record line into barcode, UMI and EC index.

    Args:
        line (str): Line holding three whitespace delimited fields
        line_number (int): 1-based position of the line, used in errors
        source (str): Name of the file, used in errors

    Raises:
        MalformedRecordError: Wrong number of fields or non-integer EC index

    Returns:
        tuple[str, str, int]: barcode, umi, ec index
    """
    fields = line.split()
    if len(fields) != N_RECORD_FIELDS:
        raise MalformedRecordError(
            f"{source}, line {line_number}: expected {N_RECORD_FIELDS} fields "
            f"(barcode, UMI, EC index), found {len(fields)}: {line.rstrip()!r}"
        )
    barcode, umi, ec_field = fields
    try:
        ec_index = int(ec_field)
    except ValueError:
        raise MalformedRecordError(
            f"{source}, line {line_number}: EC index {ec_field!r} is not an integer"
        ) from None
    return barcode, umi, ec_index


def iter_records(file_path):
    """Yield (line_number, barcode, umi, ec_index) for every line of a records file"""
    with open_binary(file_path) as records_file:
        for line_number, raw_line in enumerate(records_file, start=1):
            try:
                line = raw_line.decode("utf-8")
            except UnicodeDecodeError:
                raise MalformedRecordError(
                    f"{file_path}, line {line_number}: not valid UTF-8 text: {raw_line!r}"
                ) from None
            barcode, umi, ec_index = parse_record_line(line, line_number, file_path)
            yield line_number, barcode, umi, ec_index


def write_data_to_mtx(counts, outfolder: str) -> str:
    """Write the fractional UMI counts in gzipped mtx format.

    Genes are rows and barcodes are columns, as Cell Ranger lays them out.

    Args:
        counts (SparseCounts): Results of the conversion
        outfolder (str): Path to the output folder

    Returns:
        str: Folder holding the three files
    """
    prefix = os.path.join(outfolder, COUNT_FOLDER)
    os.makedirs(prefix, exist_ok=True)
    temp_mtx = os.path.join(prefix, TEMP_MTX)
    io.mmwrite(temp_mtx, counts.to_csc(), comment=MTX_COMMENT, field=MTX_FIELD)
    with gzip.open(os.path.join(prefix, BARCODE_MTX), "wb") as barcode_file:
        for barcode in counts.barcodes:
            barcode_file.write(f"{barcode}\n".encode())
    with gzip.open(os.path.join(prefix, FEATURES_MTX), "wb") as feature_file:
        for gene in counts.genes:
            feature_file.write(f"{gene}\t{gene}\t{FEATURE_TYPE}\n".encode())
    with open(temp_mtx, "rb") as mtx_in:
        with gzip.open(os.path.join(prefix, MATRIX_MTX), "wb") as mtx_gz:
            shutil.copyfileobj(mtx_in, mtx_gz)
    os.remove(temp_mtx)
    return prefix


def write_dense(counts, outfolder: str, filename: str) -> None:
    """
    Writes the counts as a dense tab separated table

    Args:
       counts (SparseCounts): Results of the conversion
       outfolder (str): Output folder
       filename (str): Filename
    """
    os.makedirs(outfolder, exist_ok=True)
    pandas_dense = pd.DataFrame(
        counts.to_csc().toarray(), index=counts.genes, columns=counts.barcodes
    )
    pandas_dense.to_csv(os.path.join(outfolder, filename), sep="\t")


def format_duration(seconds: float) -> str:
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(int(minutes), 60)
    return f"{hours}h {minutes}m {seconds:.2f}s"


def create_report(counts, version: str, start_time: float, args, outfolder: str) -> dict:
    """Write a yaml summary of the run next to the matrices

    Args:
        counts (SparseCounts): Results of the conversion
        version (str): Package version
        start_time (float): Time the run started at
        args (Namespace): Parsed arguments
        outfolder (str): Output folder

    Returns:
        dict: The report content
    """
    stats = counts.stats
    report = {
        "Date": time.strftime("%Y-%m-%d"),
        "Running time": format_duration(time.time() - start_time),
        "EC-Count Version": version,
        "Inputs": {
            "Records": str(args.input_path),
            "EC to genes": str(args.ec_genes_path),
            "Whitelist": str(args.whitelist_path) if args.whitelist_path else None,
            "Expected cells": args.expected_cells,
            "Expected genes": args.expected_genes,
        },
        "Records": {
            "Total": stats.total_records,
            "Whitelisted": stats.whitelisted_records,
            "Filtered out": stats.filtered_records,
        },
        "UMIs": {
            "Total": stats.n_umis,
            "Single EC": stats.single_ec_umis,
            "Resolved by intersection": stats.intersection_umis,
            "Union fallback": stats.union_fallback_umis,
            "Skipped (no genes)": stats.skipped_umis,
        },
        "Matrix": {
            "Cells": counts.n_cells,
            "Genes": counts.n_genes,
            "Non zero entries": counts.nnz,
            "Empty cells": stats.empty_columns,
        },
    }
    os.makedirs(outfolder, exist_ok=True)
    with open(os.path.join(outfolder, REPORT_FILENAME), "w", encoding="utf-8") as report_file:
        yaml.safe_dump(report, report_file, sort_keys=False)
    return report
