"""
Named template package storage.

Templates are raw ``.docx`` bytes fetched from a fixed root that is
provisioned outside this service: either a local directory or an
http(s) base URL. Loaded bytes are cached by name for the lifetime of
the store. The cache is read-mostly; two concurrent first loads of the
same name may both fetch, which is harmless because they yield
identical bytes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict

from assembler.app.engine.errors import TemplateNotFound

logger = logging.getLogger(__name__)


class TemplateResource(BaseModel):
    """
    A named template package. Immutable once created.
    """

    name: str
    data: bytes

    model_config = ConfigDict(frozen=True)


def _is_bare_name(name: str) -> bool:
    return bool(name) and "/" not in name and "\\" not in name and name not in {".", ".."}


class TemplateStore:
    """
    Loads and caches template packages by name.

    Owned by the composition root and injected into the resolver; it is
    never consulted as ambient global state.
    """

    def __init__(
        self,
        root: str | Path,
        *,
        timeout_seconds: float = 10.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        raw = str(root)
        self._is_remote = raw.startswith(("http://", "https://"))
        self._base_url = raw.rstrip("/") if self._is_remote else None
        self._root = None if self._is_remote else Path(raw).expanduser().resolve()
        self._timeout = timeout_seconds
        self._http_client = http_client
        self._cache: Dict[str, TemplateResource] = {}

    @property
    def root(self) -> str:
        return self._base_url if self._is_remote else str(self._root)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load(self, name: str) -> bytes:
        """
        Return the bytes of the named template, fetching on first use.

        Raises TemplateNotFound if the template is absent or unreadable.
        """
        return self.load_resource(name).data

    def load_resource(self, name: str) -> TemplateResource:
        cached = self._cache.get(name)
        if cached is not None:
            return cached

        if not _is_bare_name(name):
            raise TemplateNotFound(name, "not a bare file name")

        if self._is_remote:
            data = self._fetch_remote(name)
        else:
            data = self._read_local(name)

        resource = TemplateResource(name=name, data=data)
        self._cache[name] = resource
        logger.debug("Cached template '%s' (%d bytes)", name, len(data))
        return resource

    def clear(self) -> None:
        """Drop every cached template."""
        self._cache.clear()

    def cached_names(self) -> List[str]:
        return sorted(self._cache)

    def available(self) -> List[str]:
        """
        List template names present in a directory root.

        Remote roots cannot be enumerated; only cached names are reported.
        """
        if self._is_remote:
            return self.cached_names()
        if not self._root.is_dir():
            return []
        return sorted(
            p.name for p in self._root.iterdir()
            if p.is_file() and p.suffix.lower() in {".docx", ".dotx"}
        )

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def _read_local(self, name: str) -> bytes:
        path = self._root / name
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise TemplateNotFound(name, f"no such file in {self._root}") from None
        except OSError as exc:
            raise TemplateNotFound(name, str(exc)) from exc

    def _fetch_remote(self, name: str) -> bytes:
        url = f"{self._base_url}/{quote(name)}"
        client = self._http_client or httpx.Client(timeout=self._timeout)
        try:
            response = client.get(url, timeout=self._timeout)
            response.raise_for_status()
            return response.content
        except httpx.HTTPStatusError as exc:
            raise TemplateNotFound(
                name, f"HTTP {exc.response.status_code} from {url}"
            ) from exc
        except httpx.RequestError as exc:
            raise TemplateNotFound(name, f"request to {url} failed: {exc}") from exc
        finally:
            if self._http_client is None:
                client.close()
