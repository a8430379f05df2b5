"""Asynchronous, memoized asset resolution.

Concurrent requests for the same reference share one in-flight load.
Successful loads are cached so later requests resolve immediately; failed
loads are not cached so a later request retries.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable, Iterable

import trimesh

from ..core.errors import AssetLoadError
from .loader import load_mesh

logger = logging.getLogger(__name__)

LoadFn = Callable[[str], trimesh.Trimesh]


class AssetResolver:
    """Resolves asset references to meshes."""

    def __init__(self, asset_root: str | Path | None = None, load_fn: LoadFn | None = None):
        """
        Args:
            asset_root: Directory relative references are resolved against
            load_fn: Blocking loader taking a reference; defaults to loading
                the file at asset_root / reference with trimesh
        """
        self.asset_root = Path(asset_root) if asset_root is not None else None
        self._load_fn = load_fn or self._load_file
        self._cache: dict[str, trimesh.Trimesh] = {}
        self._inflight: dict[str, asyncio.Future[trimesh.Trimesh]] = {}
        self.load_count = 0

    def _load_file(self, reference: str) -> trimesh.Trimesh:
        path = Path(reference)
        if not path.is_absolute() and self.asset_root is not None:
            path = self.asset_root / path
        return load_mesh(path)

    def cached(self, reference: str) -> trimesh.Trimesh | None:
        return self._cache.get(reference)

    def clear(self) -> None:
        self._cache.clear()

    async def resolve(self, reference: str) -> trimesh.Trimesh:
        """Load the mesh for reference, sharing work with concurrent callers.

        Raises:
            AssetLoadError: If the underlying load fails
        """
        if reference in self._cache:
            return self._cache[reference]

        pending = self._inflight.get(reference)
        if pending is not None:
            return await asyncio.shield(pending)

        future: asyncio.Future[trimesh.Trimesh] = asyncio.get_running_loop().create_future()
        self._inflight[reference] = future
        self.load_count += 1
        try:
            mesh = await asyncio.to_thread(self._load_fn, reference)
        except Exception as e:
            error = e if isinstance(e, AssetLoadError) else AssetLoadError(reference, str(e))
            future.set_exception(error)
            # Mark retrieved so an unawaited failure is not reported at shutdown
            future.exception()
            logger.warning(f"Asset load failed for '{reference}': {error.reason}")
            if error is e:
                raise
            raise error from e
        else:
            self._cache[reference] = mesh
            future.set_result(mesh)
            logger.debug(f"Loaded asset '{reference}'")
            return mesh
        finally:
            self._inflight.pop(reference, None)

    async def resolve_many(
        self,
        references: Iterable[str],
    ) -> dict[str, trimesh.Trimesh | AssetLoadError]:
        """Resolve several references; failures are returned, not raised."""
        unique = list(dict.fromkeys(references))
        results = await asyncio.gather(
            *(self.resolve(ref) for ref in unique),
            return_exceptions=True,
        )
        settled: dict[str, trimesh.Trimesh | AssetLoadError] = {}
        for ref, result in zip(unique, results):
            if isinstance(result, AssetLoadError):
                settled[ref] = result
            elif isinstance(result, BaseException):
                raise result
            else:
                settled[ref] = result
        return settled
