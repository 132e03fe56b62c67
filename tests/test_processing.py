import gzip
import os
import random
from collections import defaultdict

import numpy as np
import pytest

from ec_count import processing
from ec_count.exceptions import UnknownECError, UnsortedInputError, MalformedRecordError

TEST_DATA = os.path.join(os.path.dirname(__file__), "test_data")


@pytest.fixture
def ec_to_genes():
    return {
        0: ["G1", "G2"],
        1: ["G2", "G3"],
        2: ["G2"],
        3: ["G4"],
        4: ["G5"],
        5: [],
        6: ["G1", "G3"],
    }


@pytest.fixture
def whitelist():
    return {"AAAA", "GGGG", "TTTT"}


@pytest.fixture
def sorted_records():
    return os.path.join(TEST_DATA, "records", "sorted.txt")


def as_records(rows):
    return [(number, *row) for number, row in enumerate(rows, start=1)]


def column(counts, barcode):
    """Gene to value dict of one barcode"""
    index = counts.barcodes.index(barcode)
    start, end = counts.column_pointers[index], counts.column_pointers[index + 1]
    return {
        counts.genes[row]: value
        for row, value in zip(counts.row_indices[start:end], counts.values[start:end])
    }


def test_growable_array_doubles():
    array = processing.GrowableArray(2, np.int32)
    for value in range(5):
        array.append(value)
    assert len(array) == 5
    assert array.capacity == 8
    array.extend([5, 6, 7, 8])
    assert array.capacity == 16
    np.testing.assert_array_equal(array.to_array(), np.arange(9, dtype=np.int32))


def test_growable_array_extend_empty():
    array = processing.GrowableArray(1, np.float64)
    array.extend([])
    assert len(array) == 0
    assert array.to_array().shape == (0,)


def test_index_dictionary():
    dictionary = processing.IndexDictionary()
    assert dictionary.get_or_insert("G2") == 0
    assert dictionary.get_or_insert("G1") == 1
    assert dictionary.get_or_insert("G2") == 0
    assert len(dictionary) == 2
    assert "G1" in dictionary
    assert dictionary.get("G3") is None
    assert dictionary.keys == ["G2", "G1"]


def test_sparse_matrix_builder_grows_past_estimates():
    builder = processing.SparseMatrixBuilder(est_ncells=1, est_ngenes=1)
    for col in range(3000):
        builder.append(col % 7, 1.0)
        builder.append(7, 0.5)
        builder.close_column()
    row_indices, column_pointers, values = builder.finish()
    assert builder.n_columns == 3000
    assert len(column_pointers) == 3001
    assert column_pointers[0] == 0
    assert column_pointers[-1] == len(row_indices) == len(values) == 6000
    assert values.sum() == pytest.approx(4500.0)


def test_accumulator_flush_sorts_rows_and_resets():
    builder = processing.SparseMatrixBuilder(est_ncells=2, est_ngenes=2)
    accumulator = processing.CellGeneAccumulator()
    accumulator.add(3, 0.5)
    accumulator.add(1, 1.0)
    accumulator.add(3, 0.25)
    assert accumulator.get(3) == pytest.approx(0.75)
    assert accumulator.flush_into(builder) == 2
    assert len(accumulator) == 0
    assert accumulator.flush_into(builder) == 0
    row_indices, column_pointers, values = builder.finish()
    np.testing.assert_array_equal(row_indices, [1, 3])
    np.testing.assert_array_equal(column_pointers, [0, 2, 2])
    np.testing.assert_allclose(values, [1.0, 0.75])


def test_umi_aggregator():
    ec_table = {0: ("G1", "G2"), 1: ("G2", "G3"), 2: ("G2",)}
    aggregator = processing.UmiAggregator(ec_table)
    genes = processing.IndexDictionary()
    accumulator = processing.CellGeneAccumulator()
    stats = processing.ConversionStats()
    aggregator.add("UMI1", 0, 1)
    aggregator.add("UMI2", 1, 2)
    aggregator.add("UMI2", 2, 3)
    assert len(aggregator) == 2
    aggregator.resolve(genes, accumulator, stats)
    assert len(aggregator) == 0
    assert genes.keys == ["G1", "G2"]
    assert accumulator.get(0) == pytest.approx(0.5)
    assert accumulator.get(1) == pytest.approx(1.5)
    assert stats.single_ec_umis == 1
    assert stats.intersection_umis == 1


def test_convert_sorted_records(sorted_records, ec_to_genes, whitelist):
    counts = processing.convert(sorted_records, ec_to_genes, whitelist, 2, 5)

    assert counts.barcodes == ["AAAA", "GGGG", "TTTT"]
    assert counts.genes == ["G1", "G2", "G4", "G5"]
    np.testing.assert_array_equal(counts.row_indices, [0, 1, 2, 3])
    np.testing.assert_array_equal(counts.column_pointers, [0, 2, 4, 4])
    np.testing.assert_allclose(counts.values, [0.5, 1.5, 0.5, 0.5])

    stats = counts.stats
    assert stats.total_records == 9
    assert stats.filtered_records == 2
    assert stats.whitelisted_records == 7
    assert stats.n_umis == 5
    assert stats.single_ec_umis == 1
    assert stats.intersection_umis == 1
    assert stats.union_fallback_umis == 1
    assert stats.skipped_umis == 2
    assert stats.empty_columns == 1


def test_two_umis_scenario(ec_to_genes):
    # UMI2 is seen with {G2, G3} and {G2}, only G2 gets it
    records = as_records(
        [("AAAA", "UMI1", 0), ("AAAA", "UMI2", 1), ("AAAA", "UMI2", 2)]
    )
    counts = processing.count_records(records, ec_to_genes, {"AAAA"})
    result = column(counts, "AAAA")
    assert result == {"G1": pytest.approx(0.5), "G2": pytest.approx(1.5)}
    assert "G3" not in result


def test_barcode_not_in_whitelist_is_dropped(ec_to_genes):
    records = as_records(
        [("AAAA", "UMI1", 0)]
        + [("CCCC", f"UMI{index}", index % 5) for index in range(50)]
        + [("GGGG", "UMI1", 3)]
    )
    counts = processing.count_records(records, ec_to_genes, {"AAAA", "GGGG"})
    assert counts.barcodes == ["AAAA", "GGGG"]
    assert len(counts.column_pointers) == 3
    assert counts.stats.filtered_records == 50


def test_unknown_ec_in_dropped_barcode_is_ignored(ec_to_genes):
    records = as_records([("CCCC", "UMI1", 99), ("GGGG", "UMI1", 3)])
    counts = processing.count_records(records, ec_to_genes, {"GGGG"})
    assert counts.barcodes == ["GGGG"]


def test_no_whitelist_keeps_every_barcode(ec_to_genes):
    records = as_records([("AAAA", "UMI1", 0), ("CCCC", "UMI1", 3)])
    counts = processing.count_records(records, ec_to_genes, None)
    assert counts.barcodes == ["AAAA", "CCCC"]


def test_whitelist_as_list(ec_to_genes):
    records = as_records([("AAAA", "UMI1", 0), ("CCCC", "UMI1", 3)])
    counts = processing.count_records(records, ec_to_genes, ["CCCC"])
    assert counts.barcodes == ["CCCC"]


def test_union_fallback_sums_to_one(ec_to_genes):
    records = as_records([("AAAA", "UMI1", 3), ("AAAA", "UMI1", 4), ("AAAA", "UMI1", 6)])
    counts = processing.count_records(records, ec_to_genes, None)
    result = column(counts, "AAAA")
    assert set(result) == {"G1", "G3", "G4", "G5"}
    assert sum(result.values()) == pytest.approx(1.0)
    assert all(value == pytest.approx(0.25) for value in result.values())


def test_empty_input(ec_to_genes):
    counts = processing.count_records([], ec_to_genes, None)
    assert counts.barcodes == []
    assert counts.genes == []
    np.testing.assert_array_equal(counts.column_pointers, [0])
    assert counts.nnz == 0
    assert counts.to_csc().shape == (0, 0)


def test_unknown_ec(ec_to_genes):
    with pytest.raises(UnknownECError, match="Line 2"):
        processing.convert(
            os.path.join(TEST_DATA, "records", "unknown_ec.txt"), ec_to_genes, None
        )


def test_malformed_record(ec_to_genes):
    with pytest.raises(MalformedRecordError, match="line 2"):
        processing.convert(
            os.path.join(TEST_DATA, "records", "missing_field.txt"), ec_to_genes, None
        )


def test_gzipped_records_not_utf8(ec_to_genes, tmp_path):
    records = tmp_path / "records.txt.gz"
    with gzip.open(records, "wb") as gz_file:
        gz_file.write(b"AAAA\tU1\t0\nAAAA\tU\xe92\t1\n")
    with pytest.raises(MalformedRecordError, match="line 2"):
        processing.convert(str(records), ec_to_genes, None)


def test_unsorted_records(ec_to_genes):
    with pytest.raises(UnsortedInputError, match="AAAA"):
        processing.convert(
            os.path.join(TEST_DATA, "records", "unsorted.txt"), ec_to_genes, None
        )


def test_progress_callback(ec_to_genes):
    calls = []
    records = as_records([(f"B{index // 3:03d}", f"U{index}", 0) for index in range(10)])
    processing.count_records(
        records,
        ec_to_genes,
        None,
        show_progress=True,
        progress_callback=lambda n_records, n_cells: calls.append((n_records, n_cells)),
        progress_interval=4,
    )
    assert calls == [(4, 1), (8, 2)]


def test_progress_disabled(ec_to_genes):
    calls = []
    processing.count_records(
        as_records([("AAAA", "UMI1", 0)]),
        ec_to_genes,
        None,
        show_progress=False,
        progress_callback=lambda *args: calls.append(args),
        progress_interval=1,
    )
    assert calls == []


def test_default_progress_printer(ec_to_genes, capsys):
    processing.count_records(
        as_records([("AAAA", "UMI1", 0), ("AAAA", "UMI2", 0)]),
        ec_to_genes,
        None,
        show_progress=True,
        progress_interval=2,
    )
    assert "Total records processed: 2" in capsys.readouterr().out


def expected_counts(records, ec_to_genes, whitelist):
    """Straightforward (barcode, gene) totals computed without the streaming code"""
    observations = defaultdict(lambda: defaultdict(list))
    for _, barcode, umi, ec in records:
        if barcode in whitelist:
            observations[barcode][umi].append(set(ec_to_genes[ec]))
    totals = defaultdict(float)
    contributing = 0
    for barcode, umis in observations.items():
        for gene_sets in umis.values():
            candidates = set.intersection(*gene_sets) or set.union(*gene_sets)
            if not candidates:
                continue
            contributing += 1
            for gene in candidates:
                totals[(barcode, gene)] += 1.0 / len(candidates)
    return totals, contributing


@pytest.fixture
def random_records(ec_to_genes):
    rng = random.Random(42)
    barcodes = sorted({"".join(rng.choices("ACGT", k=6)) for _ in range(40)})
    records = []
    for barcode in barcodes:
        for _ in range(rng.randint(1, 30)):
            records.append((barcode, "".join(rng.choices("ACGT", k=3)), rng.choice(list(ec_to_genes))))
    whitelist = set(rng.sample(barcodes, 25))
    return as_records(records), whitelist


def test_matches_independent_totals(random_records, ec_to_genes):
    records, whitelist = random_records
    counts = processing.count_records(records, ec_to_genes, whitelist, est_ncells=2, est_ngenes=2)
    totals, contributing = expected_counts(records, ec_to_genes, whitelist)

    dense = counts.to_csc().toarray()
    assert set(counts.barcodes) == {barcode for _, barcode, _, _ in records} & whitelist
    assert counts.stats.contributing_umis == contributing
    assert dense.sum() == pytest.approx(contributing)
    assert (counts.values > 0).all()
    assert len(counts.column_pointers) == counts.n_cells + 1
    assert counts.column_pointers[-1] == len(counts.row_indices) == len(counts.values)
    for gene_index, gene in enumerate(counts.genes):
        for cell_index, barcode in enumerate(counts.barcodes):
            assert dense[gene_index, cell_index] == pytest.approx(totals.get((barcode, gene), 0.0))
    # Row and column sums
    for cell_index, barcode in enumerate(counts.barcodes):
        expected = sum(value for (bc, _), value in totals.items() if bc == barcode)
        assert dense[:, cell_index].sum() == pytest.approx(expected)
    for gene_index, gene in enumerate(counts.genes):
        expected = sum(value for (_, g), value in totals.items() if g == gene)
        assert dense[gene_index, :].sum() == pytest.approx(expected)


def test_no_duplicate_rows_in_columns(random_records, ec_to_genes):
    records, whitelist = random_records
    counts = processing.count_records(records, ec_to_genes, whitelist)
    for index in range(counts.n_cells):
        rows = counts.row_indices[counts.column_pointers[index] : counts.column_pointers[index + 1]]
        assert len(set(rows.tolist())) == len(rows)
        assert (np.diff(rows) > 0).all()
