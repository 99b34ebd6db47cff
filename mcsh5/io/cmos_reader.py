"""
Reader for the CMOS-MEA layout.

The root of a CMOS-MEA file holds one group per data source (filter tool,
spike sorter, ...). Inside a source, datasets and groups are found by
their `ID.TypeID` attribute; identifiers not in the registry are skipped.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

import numpy as np

from mcsh5.core.cmos import (
    FILTER_PIPELINE_TYPE_ID,
    FILTER_SETTINGS_TYPE_ID,
    PROJECTION_MATRIX_TYPE_ID,
    SPIKE_SORTER_SETTINGS_TYPE_IDS,
    UNIT_INFO_TYPE_ID,
    UNIT_TYPE_ID,
    CmosFilterSource,
    CmosGenericSource,
    CmosRecording,
    CmosSource,
    CmosSpikeSorterSource,
    CmosSpikeSorterUnit,
    FilterRecord,
)
from mcsh5.core.exceptions import InvalidPayload, McsError
from mcsh5.core.lazy import LazyPayload
from mcsh5.core.metadata import rows_to_columns
from mcsh5.io.attributes import get_attribute, read_attributes, type_id
from mcsh5.io.backend import NodeInfo, ReadContext
from mcsh5.io.compound import (
    read_compound,
    read_compound_columns,
    sanitize_field_name,
    structured_to_columns,
)


logger = logging.getLogger(__name__)


def _with_type(nodes: Sequence[NodeInfo], *type_ids: str) -> list[NodeInfo]:
    wanted = {t.lower() for t in type_ids}
    return [n for n in nodes if type_id(n) in wanted]


def _compound_value(rows: list[dict[str, Any]]) -> dict[str, Any]:
    """Single-row records as a plain dict, multi-row records as columns."""
    if len(rows) == 1:
        return rows[0]
    return rows_to_columns(rows)


def _label(node: NodeInfo) -> str:
    label = get_attribute(node, "ID.Instance")
    return node.name if label is None else str(label)


def _dataset_loader(context: ReadContext, nodes: Sequence[NodeInfo], name: str) -> LazyPayload[dict[str, Any]]:
    """Lazy composite read of `nodes`; compound datasets become column mappings."""
    backend = context.backend
    widen = context.config.widen_int64_fields
    nodes = list(nodes)

    def _loader() -> dict[str, Any]:
        logger.debug(f"Reading {len(nodes)} datasets of {name}")
        arrays = backend.read_datasets([n.path for n in nodes])
        out: dict[str, Any] = {}
        for node, arr in zip(nodes, arrays):
            key = sanitize_field_name(node.name)
            if node.is_compound:
                out[key] = structured_to_columns(arr, widen_int64=widen)
            else:
                out[key] = context.storage_order(arr)
        return out

    return LazyPayload(_loader, name=name)


# ----------------------------------------------------------------------
# Filter tool
# ----------------------------------------------------------------------
def read_pipeline(context: ReadContext, node: NodeInfo) -> tuple[FilterRecord, ...]:
    groups = _with_type(node.groups, FILTER_PIPELINE_TYPE_ID)
    if not groups:
        return ()
    pipeline: list[FilterRecord] = []
    for ds in groups[0].datasets:
        rows = read_compound(context.backend, ds.path, widen_int64=context.config.widen_int64_fields)
        pipeline.append(
            FilterRecord(
                name=get_attribute(ds, "ID.Instance"),
                type=get_attribute(ds, "ID.Type"),
                fields=_compound_value(rows),
            )
        )
    return tuple(pipeline)


def build_filter_source(context: ReadContext, node: NodeInfo) -> CmosFilterSource:
    settings = None
    for ds in _with_type(node.datasets, FILTER_SETTINGS_TYPE_ID):
        settings = _compound_value(
            read_compound(context.backend, ds.path, widen_int64=context.config.widen_int64_fields)
        )
    return CmosFilterSource(
        path=node.path,
        label=_label(node),
        info=read_attributes(node),
        pipeline=read_pipeline(context, node),
        settings=settings,
    )


# ----------------------------------------------------------------------
# Spike sorter
# ----------------------------------------------------------------------
def read_projection_matrix(context: ReadContext, node: NodeInfo) -> np.ndarray | None:
    """Embedding x Units x Channels projection matrix, or None."""
    matrix = None
    for ds in _with_type(node.datasets, PROJECTION_MATRIX_TYPE_ID):
        stored = context.storage_order(context.backend.read_dataset(ds.path))
        if stored.ndim != 3:
            raise InvalidPayload(f"{ds.path} must be 3-D, got shape {stored.shape}")
        matrix = stored
    return matrix


def build_spike_sorter_unit(context: ReadContext, node: NodeInfo) -> CmosSpikeSorterUnit:
    return CmosSpikeSorterUnit(
        path=node.path,
        payload=_dataset_loader(context, node.datasets, node.path),
        label=_label(node),
        info=read_attributes(node),
    )


def build_spike_sorter_source(context: ReadContext, node: NodeInfo) -> CmosSpikeSorterSource:
    widen = context.config.widen_int64_fields

    settings: dict[str, Any] = {}
    for ds in _with_type(node.datasets, *SPIKE_SORTER_SETTINGS_TYPE_IDS):
        settings[sanitize_field_name(ds.name)] = _compound_value(
            read_compound(context.backend, ds.path, widen_int64=widen)
        )

    unit_infos: dict[str, np.ndarray] = {}
    for ds in _with_type(node.datasets, UNIT_INFO_TYPE_ID):
        unit_infos.update(read_compound_columns(context.backend, ds.path, widen_int64=widen))

    units: list[CmosSpikeSorterUnit] = []
    failures: dict[str, McsError] = {}
    for group in _with_type(node.groups, UNIT_TYPE_ID):
        try:
            units.append(build_spike_sorter_unit(context, group))
        except McsError as e:
            logger.warning(f"Could not read unit {group.path}: {e}")
            failures[group.path] = e

    return CmosSpikeSorterSource(
        path=node.path,
        label=_label(node),
        info=read_attributes(node),
        settings=settings,
        unit_infos=unit_infos,
        projection_matrix=read_projection_matrix(context, node),
        units=tuple(units),
        failures=failures,
    )


# ----------------------------------------------------------------------
# Recording
# ----------------------------------------------------------------------
def build_generic_source(context: ReadContext, node: NodeInfo) -> CmosGenericSource:
    return CmosGenericSource(
        path=node.path,
        payload=_dataset_loader(context, node.datasets, node.path),
        label=_label(node),
        type=get_attribute(node, "ID.Type"),
        info=read_attributes(node),
    )


_SOURCE_BUILDERS: dict[str, Callable[[ReadContext, NodeInfo], CmosSource]] = {
    "filtertool": build_filter_source,
    "spikesorter": build_spike_sorter_source,
}


def _source_kind(node: NodeInfo) -> str | None:
    for candidate in (get_attribute(node, "ID.Type"), node.name):
        if isinstance(candidate, str):
            key = candidate.replace(" ", "").lower()
            if key in _SOURCE_BUILDERS:
                return key
    return None


def build_cmos_recording(context: ReadContext, root: NodeInfo) -> CmosRecording:
    sources: list[CmosSource] = []
    failures: dict[str, McsError] = {}
    for group in root.groups:
        kind = _source_kind(group)
        if kind is None and not context.config.read_unknown_cmos_sources:
            logger.debug(f"Skipping CMOS-MEA source of unknown type: {group.path}")
            continue
        builder = _SOURCE_BUILDERS.get(kind, build_generic_source)
        try:
            sources.append(builder(context, group))
        except McsError as e:
            logger.warning(f"Could not read CMOS-MEA source {group.path}: {e}")
            failures[group.path] = e
    return CmosRecording(path=root.path, sources=tuple(sources), failures=failures)
