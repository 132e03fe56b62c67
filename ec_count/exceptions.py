"""Errors raised while streaming records into the count matrix."""


class MalformedRecordError(ValueError):
    """A record line does not hold a barcode, a UMI and an integer EC index."""


class UnknownECError(ValueError):
    """A record points to an EC index missing from the EC to genes table."""


class UnsortedInputError(ValueError):
    """A barcode shows up again after its run of records was closed."""
