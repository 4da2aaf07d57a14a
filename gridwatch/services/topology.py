from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from pathlib import Path

import httpx

from gridwatch.core.errors import ConfigurationError
from gridwatch.models.topology import (
    PHASES,
    ChannelIds,
    Location,
    MeasurementPoint,
    PhaseChannels,
    Topology,
    VoltageChannels,
    WebServiceConfig,
)

logger = logging.getLogger(__name__)

SOURCE_TIMEOUT_SECONDS = 10.0


def read_topology_source(source: str, *, timeout_seconds: float = SOURCE_TIMEOUT_SECONDS) -> str:
    """Return the raw topology document from a file path or an http(s) URL."""
    if source.startswith(("http://", "https://")):
        try:
            resp = httpx.get(source, timeout=timeout_seconds)
            resp.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ConfigurationError(f"Topology source {source} unreachable: {e}") from e
        return resp.text

    try:
        return Path(source).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Topology source {source} unreadable: {e}") from e


def parse_topology(xml_text: str) -> Topology:
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ConfigurationError(f"Topology document is not valid XML: {e}") from e

    config = WebServiceConfig(
        address=_text(root, "address"),
        user=_optional_text(root, "user"),
        password=_optional_text(root, "pswd"),
    )

    points: list[MeasurementPoint] = []
    seen: set[str] = set()
    for elem in root.iter("pmu"):
        point = _parse_point(elem)
        if point is None:
            continue
        if point.id in seen:
            logger.warning("Duplicate PMU id %s in topology, keeping the first", point.id)
            continue
        seen.add(point.id)
        points.append(point)

    return Topology(config=config, points=tuple(points))


def load_topology(source: str) -> Topology:
    """Read and parse the topology, degrading to an empty one on any failure."""
    try:
        topology = parse_topology(read_topology_source(source))
    except ConfigurationError as e:
        logger.error("Topology load failed, nothing will be polled: %s", e)
        return Topology(config=WebServiceConfig(), points=(), error=str(e))

    logger.info(
        "Loaded %d PMUs from %s (historian %s)",
        len(topology.points),
        source,
        topology.config.address or "<unset>",
    )
    return topology


def _parse_point(elem: ET.Element) -> MeasurementPoint | None:
    pmu_id = _text(elem, "idName")
    full_name = _text(elem, "fullName")
    if not pmu_id or not full_name:
        logger.warning("Skipping PMU entry without idName/fullName (idName=%r)", pmu_id)
        return None

    return MeasurementPoint(
        id=pmu_id,
        display_name=full_name,
        location=Location(
            lat=_float(_text(elem, "lat")),
            lon=_float(_text(elem, "lon")),
            station=_text(elem, "station"),
            state=_text(elem, "state"),
            area=_text(elem, "area"),
        ),
        voltage_base_kv=_float(_text(elem, "voltLevel")),
        channels=ChannelIds(
            frequency=_int(_text(elem, "fId")),
            rocof=_int(_text(elem, "dfId")),
            voltage=_parse_voltage_channels(elem),
        ),
    )


def _parse_voltage_channels(elem: ET.Element) -> VoltageChannels:
    phases: dict[str, PhaseChannels] = {}
    for phasor in elem.iter("phasor"):
        if _text(phasor, "pType") != "Voltage":
            continue
        phase = _text(phasor, "pPhase")
        if phase not in PHASES:
            continue
        phases[phase] = PhaseChannels(
            magnitude=_int(_text(phasor, "modId")),
            angle=_int(_text(phasor, "angId")),
        )
    return VoltageChannels(**phases)


def _text(elem: ET.Element, tag: str) -> str:
    found = elem.find(f".//{tag}")
    if found is None or found.text is None:
        return ""
    return found.text.strip()


def _optional_text(elem: ET.Element, tag: str) -> str | None:
    found = elem.find(f".//{tag}")
    if found is None:
        return None
    return (found.text or "").strip()


def _int(v: str) -> int:
    # Channel ids are positive; anything else means "not configured".
    try:
        value = int(v)
    except ValueError:
        return 0
    return value if value > 0 else 0


def _float(v: str) -> float:
    try:
        return float(v)
    except ValueError:
        return 0.0
