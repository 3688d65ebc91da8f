"""
Geography join functions.
Matches rows of an uploaded CSV to geographic features by a code column
(INSEE code, EPCI SIREN, department number) and merges their properties.
"""

import logging

from .errors import JoinError

logger = logging.getLogger("mapgen")

# Column names offered for Excel files, which are not parsed server-side
EXCEL_PLACEHOLDER_COLUMNS = ['Colonne1', 'Colonne2', 'Code', 'Nom', 'Valeur']


def _clean_cell(value: str) -> str:
    return value.strip().replace('"', '')


def parse_csv(text: str):
    """
    Parse comma-separated text into (headers, rows).

    Deliberately naive: first non-blank line is the header, cells are split
    on every comma, surrounding whitespace and all double quotes are
    removed. Quoted cells containing commas are NOT supported.
    """
    lines = [line for line in text.split('\n') if line.strip()]
    if not lines:
        return [], []

    headers = [_clean_cell(h) for h in lines[0].split(',')]
    rows = []
    for line in lines[1:]:
        values = [_clean_cell(v) for v in line.split(',')]
        rows.append({
            header: values[i] if i < len(values) else ''
            for i, header in enumerate(headers)
        })
    return headers, rows


def analyze_csv_structure(filename: str, text: str = "", size: int = 0) -> dict:
    """
    Describe an uploaded tabular file: its column names, name and size.
    Excel files get a placeholder column list.
    """
    name = (filename or "").lower()
    columns = []

    if name.endswith('.csv'):
        first_line = text.split('\n', 1)[0] if text else ''
        columns = [_clean_cell(c) for c in first_line.split(',')] if first_line else []
    elif name.endswith('.xlsx') or name.endswith('.xls'):
        columns = list(EXCEL_PLACEHOLDER_COLUMNS)

    return {
        "columns": [c for c in columns if c],
        "fileName": filename,
        "size": size,
    }


def _key_text(value):
    """Join keys compare as trimmed strings; missing values never match."""
    if value is None:
        return None
    return str(value).strip()


def get_geo_key(feature: dict, geo_join_key: str, alt_geo_key: str = "code_insee"):
    properties = feature.get("properties") or {}
    value = properties.get(geo_join_key)
    if value in (None, "") and alt_geo_key:
        value = properties.get(alt_geo_key)
    return _key_text(value)


def get_geometry(feature: dict):
    """Geometry of a GeoJSON feature, or of an EPCI row's inline GeoJSON."""
    geometry = feature.get("geometry")
    if geometry:
        return geometry
    inline = feature.get("geojson_data") or {}
    if isinstance(inline, dict):
        if inline.get("type") == "Feature":
            return inline.get("geometry")
        if inline.get("type") == "FeatureCollection" and inline.get("features"):
            return inline["features"][0].get("geometry")
        return inline.get("geometry")
    return None


def compute_join_stats(total_rows: int, total_features: int, joined: int) -> dict:
    """
    Join statistics. The percentage is relative to the data rows (not the
    geographic features) and is 0 when there are no rows.
    """
    if total_rows:
        # half-up rounding, Python's round() would round 12.5 to 12
        percentage = int(100 * joined / total_rows + 0.5)
    else:
        percentage = 0

    return {
        "totalDataRows": total_rows,
        "totalGeoFeatures": total_features,
        "joinedFeatures": joined,
        "joinedPercentage": percentage,
    }


def join(geo_features, data_rows, geo_join_key: str, data_join_key: str,
         alt_geo_key: str = "code_insee") -> dict:
    """
    Join data rows onto geographic features.

    Every feature is matched to the FIRST row whose data_join_key value
    equals the feature's key (both trimmed, compared as strings, case
    sensitive). Matched features keep their geometry and get the row's
    columns merged over their properties; unmatched features are dropped.

    Args:
        geo_features: GeoJSON features (or EPCI rows with properties/geojson_data)
        data_rows: list of dicts (parsed CSV)
        geo_join_key: feature property holding the key (e.g. "code")
        data_join_key: row column holding the key (e.g. "insee")
        alt_geo_key: feature property tried when geo_join_key is absent

    Returns:
        {"features": [...], "stats": {...}}
    """
    geo_features = list(geo_features or [])
    data_rows = list(data_rows or [])
    features = []

    for geo_feature in geo_features:
        geo_key = get_geo_key(geo_feature, geo_join_key, alt_geo_key)
        if geo_key is None:
            continue

        match = None
        for row in data_rows:
            if _key_text(row.get(data_join_key)) == geo_key:
                match = row
                break

        if match is not None:
            features.append({
                "type": "Feature",
                "geometry": get_geometry(geo_feature),
                "properties": {
                    **(geo_feature.get("properties") or {}),
                    **match,
                },
            })

    stats = compute_join_stats(len(data_rows), len(geo_features), len(features))
    logger.info(
        f"Joined {stats['joinedFeatures']} features from {stats['totalDataRows']} data rows "
        f"and {stats['totalGeoFeatures']} geographic features"
    )
    return {"features": features, "stats": stats}


def join_csv_with_geography(csv_text: str, geo_level: str, join_column: str,
                            load_features, geo_join_key: str = "code") -> dict:
    """
    Parse an uploaded CSV and join it to the boundaries of geo_level.

    Args:
        csv_text: uploaded file content
        geo_level: "communes", "departements" or "epci"
        join_column: CSV column holding the geographic code
        load_features: callable(geo_level) -> list of features
        geo_join_key: feature property holding the code

    Returns:
        {"geojson": FeatureCollection, "stats": {...}}
    """
    if not csv_text or not geo_level or not join_column:
        raise JoinError("Missing required parameters")

    headers, rows = parse_csv(csv_text)
    if join_column not in headers:
        raise JoinError("Join column not found in file")

    geo_features = load_features(geo_level)
    result = join(geo_features, rows, geo_join_key, join_column)

    return {
        "geojson": {"type": "FeatureCollection", "features": result["features"]},
        "stats": result["stats"],
    }


def epci_to_feature(row: dict) -> dict:
    """Feature for an EPCI table row (inline geojson_data)."""
    return {
        "type": "Feature",
        "geometry": get_geometry(row),
        "properties": {
            "code": row.get("code"),
            "name": row.get("name"),
            "description": row.get("description"),
            "population": row.get("population"),
            "area_km2": row.get("area_km2"),
        },
    }
