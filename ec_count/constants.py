# Records input
BARCODE_COLUMN = "barcode"
EC_COLUMN = "ec"
N_RECORD_FIELDS = 3

# EC to genes input
GENES_COLUMN = "genes"
GENES_SEPARATOR = ","

# Whitelist input
BARCODE_PATTERN = "^[ACGTN]+$"
STRIP_CHARS = '" \t\n'
TENX_SUFFIX_PATTERN = r"-\d+$"

# Capacity hints
DEFAULT_EXPECTED_CELLS = 5000
DEFAULT_EXPECTED_GENES = 30000
NNZ_DENSITY_HINT = 0.01
MIN_CAPACITY = 1024
PROGRESS_INTERVAL = 1_000_000

# UMI resolution kinds
SINGLE_EC = "single"
INTERSECTION = "intersection"
UNION_FALLBACK = "union"
NO_GENES = "empty"

# MTX format
MTX_FIELD = "real"
MTX_COMMENT = "EC-Count fractional UMI counts"
COUNT_FOLDER = "umi_count"
FEATURES_MTX = "features.tsv.gz"
BARCODE_MTX = "barcodes.tsv.gz"
MATRIX_MTX = "matrix.mtx.gz"
TEMP_MTX = "matrix.mtx"
FEATURE_TYPE = "Gene Expression"
DENSE_FILENAME = "dense_umis.tsv"
REPORT_FILENAME = "run_report.yaml"
