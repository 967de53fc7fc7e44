"""Run every shot of a job, isolating per-shot failures."""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Sequence

from painter.config import StorageConfig
from painter.errors import PainterError
from painter.schemas import GenerationParams, Shot, ShotResult
from painter.services.key_pool import CredentialLeases, KeyPool
from painter.services.painter_client import PainterClient
from painter.services.storage import StorageUploader, store_generated_image

logger = logging.getLogger(__name__)


class ShotState(str, Enum):
    PENDING = "PENDING"
    GENERATING = "GENERATING"
    UPLOADING = "UPLOADING"
    DONE = "DONE"
    FAILED = "FAILED"


class ShotBatchRunner:
    """Generate and store one image per shot.

    Shots run one at a time unless ``max_workers`` is raised; with several
    workers each credential is still used by at most one in-flight attempt.
    Results always come back in input order, one per shot.
    """

    def __init__(
        self,
        client: PainterClient,
        uploader: StorageUploader,
        storage_config: StorageConfig,
        *,
        max_workers: int = 1,
    ) -> None:
        self.client = client
        self.uploader = uploader
        self.storage_config = storage_config
        self.max_workers = max(int(max_workers), 1)
        if self.max_workers > 1 and self.client.leases is None:
            self.client.leases = CredentialLeases()

    async def run(
        self,
        shots: Sequence[Shot],
        pool: KeyPool,
        *,
        job_params: GenerationParams | None = None,
    ) -> list[ShotResult]:
        logger.info("batch.start shots=%s workers=%s keys=%s", len(shots), self.max_workers, len(pool))
        if self.max_workers == 1:
            results = [
                await self.run_shot(index, shot, pool, job_params=job_params)
                for index, shot in enumerate(shots)
            ]
        else:
            semaphore = asyncio.Semaphore(self.max_workers)

            async def _bounded(index: int, shot: Shot) -> ShotResult:
                async with semaphore:
                    return await self.run_shot(index, shot, pool, job_params=job_params)

            results = list(
                await asyncio.gather(*(_bounded(index, shot) for index, shot in enumerate(shots)))
            )

        succeeded = sum(1 for result in results if result.success)
        logger.info("batch.done ok=%s failed=%s", succeeded, len(results) - succeeded)
        return results

    async def run_shot(
        self,
        index: int,
        shot: Shot,
        pool: KeyPool,
        *,
        job_params: GenerationParams | None = None,
    ) -> ShotResult:
        shot_id = shot.shot_id
        state = ShotState.PENDING
        try:
            state = self._advance(shot_id, state, ShotState.GENERATING)
            outcome = await self.client.generate(shot, pool, job_params=job_params, start=index)

            state = self._advance(shot_id, state, ShotState.UPLOADING)
            image_url = await store_generated_image(
                self.uploader,
                self.storage_config,
                shot_id=shot_id,
                data=outcome.image_bytes,
                mime_type=outcome.mime_type,
            )
        except PainterError as exc:
            self._advance(shot_id, state, ShotState.FAILED, error=exc)
            return ShotResult.failed(shot_id, str(exc))
        except Exception as exc:  # noqa: BLE001 - one shot must never sink its siblings
            logger.exception("shot %s crashed during %s", shot_id, state.value)
            self._advance(shot_id, state, ShotState.FAILED, error=exc)
            return ShotResult.failed(shot_id, f"Unexpected error: {exc}")

        self._advance(shot_id, state, ShotState.DONE)
        return ShotResult.ok(shot_id, image_url, outcome.shoot_log_text)

    @staticmethod
    def _advance(
        shot_id: str,
        current: ShotState,
        target: ShotState,
        *,
        error: BaseException | None = None,
    ) -> ShotState:
        if error is not None:
            logger.warning("shot %s %s -> %s: %s", shot_id, current.value, target.value, error)
        else:
            logger.info("shot %s %s -> %s", shot_id, current.value, target.value)
        return target


__all__ = ["ShotBatchRunner", "ShotState"]
