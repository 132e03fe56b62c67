"""Streaming conversion of (barcode, UMI, EC) records into a sparse gene x cell matrix"""
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field

import numpy as np
from scipy import sparse

from ec_count import io
from ec_count.constants import (
    DEFAULT_EXPECTED_CELLS,
    DEFAULT_EXPECTED_GENES,
    NNZ_DENSITY_HINT,
    MIN_CAPACITY,
    PROGRESS_INTERVAL,
    SINGLE_EC,
    INTERSECTION,
    UNION_FALLBACK,
    NO_GENES,
)
from ec_count.exceptions import UnsortedInputError
from ec_count.mapping import prepare_ec_table, get_ec_genes, resolve_candidate_genes


class GrowableArray:
    """Append-only numpy buffer that doubles its capacity when full."""

    def __init__(self, capacity: int, dtype):
        self._data = np.empty(max(int(capacity), 1), dtype=dtype)
        self._size = 0

    def __len__(self) -> int:
        return self._size

    @property
    def capacity(self) -> int:
        return self._data.shape[0]

    def append(self, value) -> None:
        if self._size == self._data.shape[0]:
            self._grow(self._size + 1)
        self._data[self._size] = value
        self._size += 1

    def extend(self, values) -> None:
        values = np.asarray(values, dtype=self._data.dtype)
        end = self._size + values.shape[0]
        if end > self._data.shape[0]:
            self._grow(end)
        self._data[self._size : end] = values
        self._size = end

    def _grow(self, required: int) -> None:
        new_capacity = self._data.shape[0]
        while new_capacity < required:
            new_capacity *= 2
        grown = np.empty(new_capacity, dtype=self._data.dtype)
        grown[: self._size] = self._data[: self._size]
        self._data = grown

    def to_array(self) -> np.ndarray:
        """Copy of the filled part of the buffer"""
        return self._data[: self._size].copy()


class IndexDictionary:
    """Assigns 0-based indexes to keys in first-seen order."""

    def __init__(self):
        self._index = {}
        self._keys = []

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key) -> bool:
        return key in self._index

    def get(self, key):
        return self._index.get(key)

    def get_or_insert(self, key) -> int:
        index = self._index.get(key)
        if index is None:
            index = len(self._keys)
            self._index[key] = index
            self._keys.append(key)
        return index

    @property
    def keys(self) -> list:
        return list(self._keys)


class SparseMatrixBuilder:
    """Builds a CSC triplet one column at a time.

    Row index and value buffers are pre-sized from the expected number of cells
    and genes and grow by doubling when the estimate is too small.
    """

    def __init__(
        self,
        est_ncells: int = DEFAULT_EXPECTED_CELLS,
        est_ngenes: int = DEFAULT_EXPECTED_GENES,
    ):
        est_nnz = max(int(est_ncells * est_ngenes * NNZ_DENSITY_HINT), MIN_CAPACITY)
        self.row_indices = GrowableArray(est_nnz, np.int32)
        self.values = GrowableArray(est_nnz, np.float64)
        self.column_pointers = GrowableArray(max(est_ncells, 1) + 1, np.int64)
        self.column_pointers.append(0)

    @property
    def n_columns(self) -> int:
        return len(self.column_pointers) - 1

    def append(self, row: int, value: float) -> None:
        self.row_indices.append(row)
        self.values.append(value)

    def close_column(self) -> None:
        self.column_pointers.append(len(self.row_indices))

    def finish(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Returns row indices, column pointers and values"""
        return (
            self.row_indices.to_array(),
            self.column_pointers.to_array(),
            self.values.to_array(),
        )


class CellGeneAccumulator:
    """Fractional counts per gene index for the barcode being processed."""

    def __init__(self):
        self._counts = {}

    def __len__(self) -> int:
        return len(self._counts)

    def add(self, gene_index: int, weight: float) -> None:
        self._counts[gene_index] = self._counts.get(gene_index, 0.0) + weight

    def get(self, gene_index: int) -> float:
        return self._counts.get(gene_index, 0.0)

    def flush_into(self, builder: SparseMatrixBuilder) -> int:
        """Write positive counts as one column of the builder, then reset.

        Rows are written in ascending gene index order.

        Args:
            builder (SparseMatrixBuilder): Matrix receiving the column

        Returns:
            int: Number of entries written
        """
        rows = sorted(gene for gene, count in self._counts.items() if count > 0)
        builder.row_indices.extend(rows)
        builder.values.extend([self._counts[gene] for gene in rows])
        builder.close_column()
        self._counts.clear()
        return len(rows)


@dataclass
class ConversionStats:
    total_records: int = 0
    whitelisted_records: int = 0
    filtered_records: int = 0
    n_umis: int = 0
    single_ec_umis: int = 0
    intersection_umis: int = 0
    union_fallback_umis: int = 0
    skipped_umis: int = 0
    empty_columns: int = 0

    def count_resolution(self, kind: str) -> None:
        self.n_umis += 1
        if kind == SINGLE_EC:
            self.single_ec_umis += 1
        elif kind == INTERSECTION:
            self.intersection_umis += 1
        elif kind == UNION_FALLBACK:
            self.union_fallback_umis += 1
        elif kind == NO_GENES:
            self.skipped_umis += 1

    @property
    def contributing_umis(self) -> int:
        return self.n_umis - self.skipped_umis


class UmiAggregator:
    """Collects the ECs seen for every UMI of one barcode and turns them into
    fractional gene counts.
    """

    def __init__(self, ec_table: dict):
        self.ec_table = ec_table
        self._umis = {}

    def __len__(self) -> int:
        return len(self._umis)

    def add(self, umi: str, ec_index: int, line_number: int) -> None:
        genes = get_ec_genes(self.ec_table, ec_index, line_number)
        self._umis.setdefault(umi, []).append(genes)

    def resolve(
        self,
        genes: IndexDictionary,
        accumulator: CellGeneAccumulator,
        stats: ConversionStats,
    ) -> None:
        """Split one count per UMI across its candidate genes, then reset.

        Args:
            genes (IndexDictionary): Gene dictionary giving row indexes
            accumulator (CellGeneAccumulator): Counts of the current barcode
            stats (ConversionStats): Counters updated per UMI
        """
        for gene_sets in self._umis.values():
            candidates, kind = resolve_candidate_genes(gene_sets)
            stats.count_resolution(kind)
            if not candidates:
                continue
            weight = 1.0 / len(candidates)
            for gene in candidates:
                accumulator.add(genes.get_or_insert(gene), weight)
        self._umis.clear()


class ProgressPrinter:
    """Default progress callback printing throughput to the console"""

    def __init__(self):
        self.last = time.time()
        self.last_records = 0

    def __call__(self, n_records: int, n_cells: int) -> None:
        now = time.time()
        print(
            f"Processed {n_records - self.last_records:,} records in "
            f"{now - self.last:.3} seconds. Total records processed: "
            f"{n_records:,}, cells: {n_cells:,}"
        )
        self.last = now
        self.last_records = n_records


@dataclass
class SparseCounts:
    """CSC triplet with its row (gene) and column (barcode) labels"""

    row_indices: np.ndarray
    column_pointers: np.ndarray
    values: np.ndarray
    barcodes: list
    genes: list
    stats: ConversionStats = field(default_factory=ConversionStats)

    @property
    def n_cells(self) -> int:
        return len(self.barcodes)

    @property
    def n_genes(self) -> int:
        return len(self.genes)

    @property
    def nnz(self) -> int:
        return int(self.column_pointers[-1])

    def to_csc(self) -> sparse.csc_matrix:
        return sparse.csc_matrix(
            (self.values, self.row_indices, self.column_pointers),
            shape=(self.n_genes, self.n_cells),
        )


def count_records(
    records: Iterable[tuple[int, str, str, int]],
    ec_to_genes: Mapping,
    whitelist: set | None,
    est_ncells: int = DEFAULT_EXPECTED_CELLS,
    est_ngenes: int = DEFAULT_EXPECTED_GENES,
    show_progress: bool = False,
    progress_callback: Callable[[int, int], None] | None = None,
    progress_interval: int = PROGRESS_INTERVAL,
) -> SparseCounts:
    """Aggregate barcode sorted records into fractional UMI counts per gene and cell.

    Records of barcodes missing from the whitelist are dropped. Every other
    barcode becomes one column, even when none of its UMIs reach a gene.

    Args:
        records (Iterable): (line_number, barcode, umi, ec_index) tuples sorted by barcode
        ec_to_genes (Mapping): EC index to gene ids
        whitelist (set | None): Accepted barcodes. None accepts every barcode
        est_ncells (int): Expected number of cells, used to size buffers
        est_ngenes (int): Expected number of genes, used to size buffers
        show_progress (bool): Report progress every progress_interval records
        progress_callback (Callable, optional): Called with (n_records, n_cells).
            Defaults to a console printer when show_progress is set.
        progress_interval (int): Records between two progress reports

    Raises:
        MalformedRecordError: A record line could not be parsed
        UnknownECError: A whitelisted record uses an EC missing from the table
        UnsortedInputError: A barcode appears in two separate runs

    Returns:
        SparseCounts: Matrix triplet, barcodes, genes and run statistics
    """
    ec_table = prepare_ec_table(ec_to_genes)
    if whitelist is not None and not isinstance(whitelist, (set, frozenset)):
        whitelist = set(whitelist)
    if show_progress and progress_callback is None:
        progress_callback = ProgressPrinter()
    if not show_progress:
        progress_callback = None

    builder = SparseMatrixBuilder(est_ncells=est_ncells, est_ngenes=est_ngenes)
    barcodes = IndexDictionary()
    genes = IndexDictionary()
    accumulator = CellGeneAccumulator()
    umis = UmiAggregator(ec_table)
    stats = ConversionStats()

    def close_barcode():
        umis.resolve(genes, accumulator, stats)
        if accumulator.flush_into(builder) == 0:
            stats.empty_columns += 1

    current_barcode = None
    for line_number, barcode, umi, ec_index in records:
        stats.total_records += 1
        if progress_callback is not None and stats.total_records % progress_interval == 0:
            progress_callback(stats.total_records, len(barcodes))
        if whitelist is not None and barcode not in whitelist:
            stats.filtered_records += 1
            continue
        stats.whitelisted_records += 1
        if barcode != current_barcode:
            if barcode in barcodes:
                raise UnsortedInputError(
                    f"Line {line_number}: barcode {barcode} was already closed. "
                    f"Records must be sorted by barcode."
                )
            if current_barcode is not None:
                close_barcode()
            barcodes.get_or_insert(barcode)
            current_barcode = barcode
        umis.add(umi, ec_index, line_number)
    if current_barcode is not None:
        close_barcode()

    row_indices, column_pointers, values = builder.finish()
    return SparseCounts(
        row_indices=row_indices,
        column_pointers=column_pointers,
        values=values,
        barcodes=barcodes.keys,
        genes=genes.keys,
        stats=stats,
    )


def convert(
    input_path,
    ec_to_genes: Mapping,
    whitelist: set | None,
    est_ncells: int = DEFAULT_EXPECTED_CELLS,
    est_ngenes: int = DEFAULT_EXPECTED_GENES,
    show_progress: bool = False,
    progress_callback: Callable[[int, int], None] | None = None,
    progress_interval: int = PROGRESS_INTERVAL,
) -> SparseCounts:
    """Stream a barcode sorted records file into a sparse gene x cell matrix.

    See count_records for the arguments. The input is read line by line and
    may be gzipped.
    """
    return count_records(
        records=io.iter_records(input_path),
        ec_to_genes=ec_to_genes,
        whitelist=whitelist,
        est_ncells=est_ncells,
        est_ngenes=est_ngenes,
        show_progress=show_progress,
        progress_callback=progress_callback,
        progress_interval=progress_interval,
    )
