"""Administrative boundary providers.

Pipelines ask a `GeometryProvider` for `(country, level)` boundaries so the
network service can be swapped for local fixture files in tests and offline
builds.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Mapping, Protocol

import geopandas as gpd
import requests

from .config import GeometryConfig
from .errors import GeometryFetchError, LoadError
from .loader import DEFAULT_CRS, clean_geometry, load_geometry

_RETRYABLE_HTTP_STATUS = {429, 500, 502, 503, 504}

_LOGGER = logging.getLogger("reportmaps.geometry")


class GeometryProvider(Protocol):
    def boundaries(self, country: str, level: str) -> gpd.GeoDataFrame:
        ...


def resolve_country_code(country: str, codes: Mapping[str, str]) -> str:
    """Map a country name to ISO3 via the configured table; ISO3 passes through."""
    stripped = country.strip()
    if len(stripped) == 3 and stripped.isalpha() and stripped.isupper():
        return stripped
    by_name = {name.casefold(): code for name, code in codes.items()}
    code = by_name.get(stripped.casefold())
    if code is None:
        raise GeometryFetchError(
            "no ISO3 code configured in geometry.country_codes",
            source=country,
        )
    return code


def boundary_filename(iso3: str, level: str) -> str:
    return f"{iso3}_{level.upper()}.geojson"


class FileGeometryProvider:
    """Serve boundaries from `<ISO3>_<LEVEL>.geojson` files in one directory."""

    def __init__(self, directory: Path, *, country_codes: Mapping[str, str] | None = None) -> None:
        self.directory = directory
        self.country_codes = dict(country_codes or {})

    def boundaries(self, country: str, level: str) -> gpd.GeoDataFrame:
        iso3 = resolve_country_code(country, self.country_codes)
        path = self.directory / boundary_filename(iso3, level)
        try:
            return load_geometry(path)
        except LoadError as exc:
            raise GeometryFetchError(exc.message, source=str(path)) from exc


class GeoBoundariesProvider:
    """Fetch open administrative boundaries from the geoBoundaries API.

    Responses are cached on disk as GeoJSON keyed by ISO3 and level, so a
    rebuild only touches the network for boundaries it has never seen. Every
    request carries an explicit timeout; an expired timeout is fatal for the
    requesting visualization.
    """

    def __init__(
        self,
        cfg: GeometryConfig,
        *,
        cache_dir: Path | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.cfg = cfg
        self.cache_dir = cache_dir
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": cfg.user_agent})
        self._max_retries = max(int(cfg.max_retries), 0)
        self._retry_backoff_s = max(float(cfg.retry_backoff_s), 0.01)

    def boundaries(self, country: str, level: str) -> gpd.GeoDataFrame:
        iso3 = resolve_country_code(country, self.cfg.country_codes)
        level = level.upper()
        cached = self._cache_path(iso3, level)
        if cached is not None and cached.exists():
            try:
                frame = load_geometry(cached)
            except LoadError as exc:
                _LOGGER.warning("Discarding unreadable boundary cache %s: %s", cached, exc.message)
                cached.unlink(missing_ok=True)
            else:
                _LOGGER.info("Using cached boundaries %s", cached)
                return frame

        source = f"{iso3}/{level}"
        meta_url = f"{self.cfg.base_url}/{iso3}/{level}/"
        try:
            meta = self._request_get(meta_url).json()
        except ValueError as exc:
            raise GeometryFetchError(f"metadata response is not JSON: {exc}", source=source) from exc
        download_url = _download_url_from_meta(meta)
        if download_url is None:
            raise GeometryFetchError("metadata has no gjDownloadURL", source=source)

        response = self._request_get(download_url)
        try:
            payload = response.json()
        except ValueError as exc:
            raise GeometryFetchError(f"boundary download is not GeoJSON: {exc}", source=source) from exc
        features = payload.get("features") if isinstance(payload, dict) else None
        if not isinstance(features, list) or not features:
            raise GeometryFetchError("boundary download has no features", source=source)

        frame = gpd.GeoDataFrame.from_features(features, crs=DEFAULT_CRS)
        frame = clean_geometry(frame, key_column=None, source=source)
        if cached is not None:
            cached.parent.mkdir(parents=True, exist_ok=True)
            cached.write_text(json.dumps(payload), encoding="utf-8")
            _LOGGER.info("Cached boundaries to %s", cached)
        return frame

    def _cache_path(self, iso3: str, level: str) -> Path | None:
        if self.cache_dir is None:
            return None
        return self.cache_dir / boundary_filename(iso3, level)

    def _request_get(self, url: str) -> requests.Response:
        attempts = self._max_retries + 1
        for attempt in range(attempts):
            try:
                response = self._session.get(url, timeout=self.cfg.request_timeout_s)
            except requests.Timeout as exc:
                raise GeometryFetchError(
                    f"request timed out after {self.cfg.request_timeout_s:.0f}s",
                    source=url,
                ) from exc
            except requests.RequestException as exc:
                raise GeometryFetchError(f"request failed: {exc}", source=url) from exc

            if response.status_code not in _RETRYABLE_HTTP_STATUS:
                _raise_for_status(response, url)
                return response
            if attempt >= self._max_retries:
                _raise_for_status(response, url)
            delay_s = min(self._retry_backoff_s * (2**attempt), 60.0)
            _LOGGER.warning(
                "Retryable response %s for %s; retrying in %.1fs (%d/%d)",
                response.status_code,
                url,
                delay_s,
                attempt + 1,
                self._max_retries,
            )
            response.close()
            time.sleep(delay_s)
        raise GeometryFetchError("retry loop exhausted", source=url)


def _raise_for_status(response: requests.Response, url: str) -> None:
    try:
        response.raise_for_status()
    except requests.HTTPError as exc:
        raise GeometryFetchError(f"HTTP {response.status_code}", source=url) from exc


def _download_url_from_meta(meta: Any) -> str | None:
    # "ALL" queries return a list of metadata records
    if isinstance(meta, list):
        meta = meta[0] if meta else None
    if not isinstance(meta, dict):
        return None
    url = meta.get("gjDownloadURL")
    if isinstance(url, str) and url.strip():
        return url.strip()
    return None


def build_provider(cfg: GeometryConfig, *, cache_dir: Path | None = None) -> GeometryProvider:
    if cfg.provider == "file":
        if cfg.fixtures_dir is None:
            raise ValueError("geometry.fixtures_dir is required for the file provider")
        return FileGeometryProvider(cfg.fixtures_dir, country_codes=cfg.country_codes)
    return GeoBoundariesProvider(cfg, cache_dir=cache_dir)
