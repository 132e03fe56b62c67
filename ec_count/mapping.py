"""Mapping module. Holds all code related to mapping equivalence classes to genes
"""
from collections.abc import Iterable, Mapping

from ec_count.constants import SINGLE_EC, INTERSECTION, UNION_FALLBACK, NO_GENES
from ec_count.exceptions import UnknownECError


def unique_genes(genes: Iterable[str]) -> tuple[str, ...]:
    """Drop duplicated gene ids while keeping a deterministic order.

    Unordered collections are sorted, sequences keep their first-seen order.

    Args:
        genes (Iterable[str]): Gene ids of one equivalence class

    Returns:
        tuple[str, ...]: Unique gene ids
    """
    if isinstance(genes, (set, frozenset)):
        return tuple(sorted(genes))
    return tuple(dict.fromkeys(genes))


def prepare_ec_table(ec_to_genes: Mapping[int, Iterable[str]]) -> dict:
    """Normalise an EC to genes mapping into int keys and tuples of unique genes.

    Args:
        ec_to_genes (Mapping[int, Iterable[str]]): EC index to gene ids

    Returns:
        dict: EC index to a tuple of unique gene ids
    """
    return {int(ec): unique_genes(genes) for ec, genes in ec_to_genes.items()}


def get_ec_genes(ec_table: dict, ec_index: int, line_number: int) -> tuple:
    try:
        return ec_table[ec_index]
    except KeyError:
        raise UnknownECError(
            f"Line {line_number}: EC index {ec_index} is not in the EC to genes table"
        ) from None


def resolve_candidate_genes(gene_sets: list) -> tuple[tuple[str, ...], str]:
    """Find the genes a UMI can be assigned to from all the ECs it was seen with.

    One EC gives its genes. Several ECs give the intersection of their genes,
    or the union when the intersection is empty. The intersection follows the
    order of the first EC, the union follows first-seen order.

    Args:
        gene_sets (list): Gene tuples of every EC observed for the UMI, in read order

    Returns:
        tuple[tuple[str, ...], str]: Candidate genes and how they were resolved
    """
    if len(gene_sets) == 1:
        candidates = gene_sets[0]
        return candidates, SINGLE_EC if candidates else NO_GENES

    shared = set(gene_sets[0])
    for genes in gene_sets[1:]:
        shared.intersection_update(genes)
    if shared:
        return tuple(gene for gene in gene_sets[0] if gene in shared), INTERSECTION

    union = tuple(dict.fromkeys(gene for genes in gene_sets for gene in genes))
    if not union:
        return union, NO_GENES
    return union, UNION_FALLBACK
