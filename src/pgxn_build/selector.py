"""Resolve distribution metadata into exactly one build pipeline.

Selection is a pure function of the metadata: marker files and
capabilities are whatever the metadata provider declared, and the source
tree is never inspected here.
"""

from __future__ import annotations

import logging
from typing import Iterable

from pgxn_build.errors import AmbiguousPipeline, NoSupportedPipeline, UnknownPipeline
from pgxn_build.models import DistributionMetadata, Pipeline, PipelineCandidate
from pgxn_build.pipelines.base import PipelineFamily
from pgxn_build.pipelines.registry import get_family, list_families

LOGGER = logging.getLogger(__name__)

NEGATED_PREFIX = "!"


def _split_requires(requires: Iterable[str]) -> tuple[set[str], set[str]]:
    """Split candidate requirements into present and absent marker sets."""
    present: set[str] = set()
    absent: set[str] = set()
    for marker in requires:
        if marker.startswith(NEGATED_PREFIX):
            absent.add(marker[len(NEGATED_PREFIX) :])
        else:
            present.add(marker)
    return present, absent


def _check_consistency(metadata: DistributionMetadata) -> None:
    for candidate in metadata.candidates:
        present, absent = _split_requires(candidate.requires)
        conflict = sorted(present & absent)
        if conflict:
            raise AmbiguousPipeline(
                str(metadata.identity),
                f"{candidate.family} candidate both requires and excludes {', '.join(conflict)}",
            )


def _unsatisfied(
    family: PipelineFamily, candidate: PipelineCandidate, markers: frozenset[str]
) -> list[str]:
    """Return human readable reasons a candidate does not match, if any."""
    reasons: list[str] = []
    if not family.matches(markers):
        reasons.append(f"one of {', '.join(family.spec().markers)}")
    present, absent = _split_requires(candidate.requires)
    reasons.extend(sorted(present - markers))
    reasons.extend(f"no {marker}" for marker in sorted(absent & markers))
    return reasons


def _pipeline_for(
    family: PipelineFamily, candidate: PipelineCandidate, metadata: DistributionMetadata
) -> Pipeline:
    steps = candidate.steps if candidate.steps else family.steps(metadata.markers)
    artifacts = candidate.artifacts or metadata.artifacts
    pipeline = Pipeline(family=family.spec().name, steps=tuple(steps), artifacts=tuple(artifacts))
    LOGGER.debug(
        "Selected %s pipeline for %s: %s",
        pipeline.family,
        metadata.identity,
        ", ".join(pipeline.step_names),
    )
    return pipeline


def _select_explicit(metadata: DistributionMetadata, name: str) -> Pipeline:
    """Select the pipeline the metadata names explicitly."""
    family = get_family(name)
    candidates = [candidate for candidate in metadata.candidates if candidate.family == name]
    if not candidates:
        others = sorted({candidate.family for candidate in metadata.candidates})
        if others:
            raise AmbiguousPipeline(
                str(metadata.identity),
                f"declares pipeline '{name}' but only describes {', '.join(others)}",
            )
        candidates = [PipelineCandidate(family=name)]
    missing: list[str] = []
    for candidate in candidates:
        reasons = _unsatisfied(family, candidate, metadata.markers)
        if not reasons:
            return _pipeline_for(family, candidate, metadata)
        missing.extend(reason for reason in reasons if reason not in missing)
    raise AmbiguousPipeline(
        str(metadata.identity),
        f"declares pipeline '{name}' without its required markers ({', '.join(missing)})",
    )


def _ranked_candidates(
    metadata: DistributionMetadata,
) -> list[tuple[PipelineFamily, PipelineCandidate]]:
    """Return declared candidates in priority order, ties by declaration order."""
    ranked: list[tuple[int, int, PipelineFamily, PipelineCandidate]] = []
    for index, candidate in enumerate(metadata.candidates):
        try:
            family = get_family(candidate.family)
        except UnknownPipeline:
            LOGGER.debug("Ignoring candidate for unregistered family '%s'.", candidate.family)
            continue
        ranked.append((family.spec().priority, index, family, candidate))
    ranked.sort(key=lambda item: (item[0], item[1]))
    return [(family, candidate) for _, _, family, candidate in ranked]


def select(metadata: DistributionMetadata) -> Pipeline:
    """Return the pipeline for a distribution or raise a selection error.

    Precedence: an explicitly declared pipeline family, then declared
    candidates ranked by family priority (pgrx, pgxs, configure) and
    declaration order, then, when no candidates are declared, every
    registered family against the declared markers.
    """
    _check_consistency(metadata)
    if metadata.pipeline:
        return _select_explicit(metadata, metadata.pipeline)

    if metadata.candidates:
        for family, candidate in _ranked_candidates(metadata):
            if not _unsatisfied(family, candidate, metadata.markers):
                return _pipeline_for(family, candidate, metadata)
        raise NoSupportedPipeline(
            str(metadata.identity),
            [candidate.family for candidate in metadata.candidates],
        )

    for family in list_families():
        if family.matches(metadata.markers):
            return _pipeline_for(family, PipelineCandidate(family=family.spec().name), metadata)
    raise NoSupportedPipeline(str(metadata.identity))
