"""Import pass: completed downloads in, canonical library volumes out."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession as SQLModelAsyncSession

from mangashelf.core.config import Settings
from mangashelf.core.database import retry_db_operation
from mangashelf.core.importing.assignment import assign_volume_numbers
from mangashelf.core.importing.downloads import DownloadClient, DownloadClientError
from mangashelf.core.importing.errors import NoVolumeFoldersDetected
from mangashelf.core.importing.extractor import ExtractionResult, extract_if_needed
from mangashelf.core.importing.folders import find_volume_folders
from mangashelf.core.importing.importer import import_volume, volume_numbers_on_disk
from mangashelf.core.importing.models import (
    AssignedVolume,
    ImportHeuristics,
    ImportOutcome,
    ImportPassResult,
)
from mangashelf.core.importing.store import (
    clear_batch_marker,
    display_title,
    get_imported_volume_numbers,
    list_batches_awaiting_import,
    list_downloading_volumes,
    list_pending_batches,
    list_volumes_awaiting_import,
    upsert_volume_status,
)
from mangashelf.core.importing.tree import snapshot_tree
from mangashelf.core.metrics import (
    import_pass_duration_seconds,
    volumes_already_imported_total,
    volumes_failed_total,
    volumes_imported_total,
)
from mangashelf.db.models import ManagedManga, ManagedVolume

logger = structlog.get_logger("mangashelf.importing.orchestrator")

CatalogRefresher = Callable[[], Awaitable[None]]

MISSING_FROM_BUNDLE = "volume not found in bundled download"


class ImportOrchestrator:
    """Runs one import pass over every completed download.

    Downloads are processed one at a time. A failure is recorded against the
    smallest unit that failed (one volume or one batch) and the pass moves on.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[SQLModelAsyncSession],
        settings: Settings,
        download_client: DownloadClient | None = None,
        catalog_refresher: CatalogRefresher | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings
        self.download_client = download_client
        self.catalog_refresher = catalog_refresher
        self.heuristics = ImportHeuristics(
            duplicate_page_tolerance=settings.duplicate_page_tolerance,
            spread_max_gap=settings.spread_max_gap,
            unparseable_page_ratio=settings.unparseable_page_ratio,
        )

    def resolve_download_path(self, download_path: str) -> Path:
        """Relative download paths are relative to the downloads root."""
        path = Path(download_path)
        if not path.is_absolute():
            path = self.settings.downloads_dir / path
        return path

    async def run_pass(self) -> ImportPassResult:
        """Run one full import pass.

        1. Ask the download client (if any) which downloads have completed.
        2. Import completed batch downloads.
        3. Import completed single-volume downloads.
        4. Refresh the reader catalog when anything was imported.
        """
        started = time.monotonic()
        result = ImportPassResult()

        async with self.session_factory() as session:
            if self.download_client is not None:
                await self._poll_download_client(session)
            batch_ids = [manga.id for manga in await list_batches_awaiting_import(session)]
            volume_ids = [volume.id for volume, _ in await list_volumes_awaiting_import(session)]

        # One session per download so a rollback never touches another download
        for manga_id in batch_ids:
            async with self.session_factory() as session:
                manga = await session.get(ManagedManga, manga_id)
                if manga is None or manga.bulk_download_path is None:
                    continue
                result.merge(await self._run_batch(session, manga))

        for volume_id in volume_ids:
            async with self.session_factory() as session:
                volume = await session.get(ManagedVolume, volume_id)
                # A bundle earlier in this pass may already have handled it
                if volume is None or volume.status != "downloaded":
                    continue
                manga = await session.get(ManagedManga, volume.managed_manga_id)
                if manga is None:
                    continue
                result.merge(await self._run_single(session, volume, manga))

        if result.imported > 0 and self.catalog_refresher is not None:
            try:
                await self.catalog_refresher()
            except Exception:
                logger.exception("Catalog refresh failed", imported=result.imported)

        result.duration_seconds = time.monotonic() - started
        import_pass_duration_seconds.observe(result.duration_seconds)
        logger.info(
            "Import pass finished",
            imported=result.imported,
            failed=result.failed,
            skipped=result.skipped,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    async def _commit(self, session: SQLModelAsyncSession) -> None:
        await retry_db_operation(
            lambda: session.commit(),
            session=session,
            operation_type="commit",
        )

    async def _poll_download_client(self, session: SQLModelAsyncSession) -> None:
        assert self.download_client is not None
        client = self.download_client

        for volume in await list_downloading_volumes(session):
            try:
                status = await client.get_status(volume.torrent_id or "")
            except DownloadClientError as exc:
                logger.warning(
                    "Download status unavailable",
                    torrent_id=volume.torrent_id,
                    error=str(exc),
                )
                continue
            if status is None or not status.is_complete:
                continue
            volume.status = "downloaded"
            volume.download_path = str(status.content_path)
            volume.download_name = status.name
            volume.updated_at = int(time.time())
            session.add(volume)
            logger.info(
                "Download completed",
                managed_manga_id=volume.managed_manga_id,
                volume_number=volume.volume_number,
                path=volume.download_path,
            )

        for manga in await list_pending_batches(session):
            try:
                status = await client.get_status(manga.bulk_torrent_id or "")
            except DownloadClientError as exc:
                logger.warning(
                    "Download status unavailable",
                    torrent_id=manga.bulk_torrent_id,
                    error=str(exc),
                )
                continue
            if status is None or not status.is_complete:
                continue
            manga.bulk_download_path = str(status.content_path)
            manga.bulk_download_name = status.name
            manga.updated_at = int(time.time())
            session.add(manga)
            logger.info(
                "Batch download completed",
                anilist_id=manga.anilist_id,
                path=manga.bulk_download_path,
            )

        await self._commit(session)

    async def _existing_numbers(
        self,
        session: SQLModelAsyncSession,
        manga: ManagedManga,
        title: str,
    ) -> set[int]:
        persisted = await get_imported_volume_numbers(session, manga.id)
        on_disk = await asyncio.to_thread(
            volume_numbers_on_disk, self.settings.manga_dir, title, manga.anilist_id
        )
        return persisted | on_disk

    async def _extract(self, source: Path) -> ExtractionResult:
        return await asyncio.to_thread(
            extract_if_needed,
            source,
            self.settings.extract_dir,
            self.settings.archiver_timeout_seconds,
        )

    async def _import_one(
        self,
        manga: ManagedManga,
        title: str,
        volume_number: int,
        source: Path,
        recursive: bool = True,
    ) -> ImportOutcome:
        return await asyncio.to_thread(
            import_volume,
            source,
            title,
            manga.anilist_id,
            volume_number,
            self.settings.manga_dir,
            recursive,
            self.heuristics.spread_max_gap,
            self.heuristics.unparseable_page_ratio,
        )

    async def _record_outcome(
        self,
        session: SQLModelAsyncSession,
        manga: ManagedManga,
        outcome: ImportOutcome,
        mode: str,
        result: ImportPassResult,
    ) -> None:
        if outcome.status == "failed":
            await upsert_volume_status(
                session, manga.id, outcome.volume_number, "failed", error_message=outcome.reason
            )
            result.failed += 1
            result.errors.append(f"{manga.anilist_id} v{outcome.volume_number}: {outcome.reason}")
            volumes_failed_total.labels(
                reason="no_images" if outcome.page_count == 0 else "copy"
            ).inc()
        else:
            await upsert_volume_status(session, manga.id, outcome.volume_number, "imported")
            if outcome.status == "imported":
                result.imported += 1
                volumes_imported_total.labels(mode=mode).inc()
            else:
                result.skipped += 1
                volumes_already_imported_total.inc()
        await self._commit(session)

        logger.info(
            "Volume import outcome",
            anilist_id=manga.anilist_id,
            volume_number=outcome.volume_number,
            status=outcome.status,
            pages=outcome.page_count,
            reason=outcome.reason,
            mode=mode,
        )

    async def _import_assigned(
        self,
        session: SQLModelAsyncSession,
        manga: ManagedManga,
        title: str,
        volumes: list[AssignedVolume],
        mode: str,
        result: ImportPassResult,
    ) -> list[ImportOutcome]:
        outcomes: list[ImportOutcome] = []
        for assigned in volumes:
            await upsert_volume_status(session, manga.id, assigned.volume_number, "downloaded")
            await self._commit(session)
            outcome = await self._import_one(
                manga,
                title,
                assigned.volume_number,
                assigned.path,
                recursive=not assigned.loose_pages,
            )
            await self._record_outcome(session, manga, outcome, mode, result)
            outcomes.append(outcome)
        return outcomes

    async def _assign_and_import(
        self,
        session: SQLModelAsyncSession,
        manga: ManagedManga,
        title: str,
        extraction: ExtractionResult,
        mode: str,
    ) -> tuple[ImportPassResult, set[int], set[int]]:
        """Per-volume batch logic over an extracted download.

        Returns:
            (pass result, volume numbers already present before the import,
            volume numbers attempted from this download)
        """
        result = ImportPassResult()
        tree = await asyncio.to_thread(
            snapshot_tree, extraction.import_path, extraction.label
        )
        folders = find_volume_folders(tree)
        if not folders:
            raise NoVolumeFoldersDetected(extraction.import_path)

        existing = await self._existing_numbers(session, manga, title)
        assignment = assign_volume_numbers(
            folders,
            existing,
            duplicate_page_tolerance=self.heuristics.duplicate_page_tolerance,
        )
        result.skipped += len(assignment.already_present)
        volumes_already_imported_total.inc(len(assignment.already_present))

        outcomes = await self._import_assigned(
            session, manga, title, assignment.volumes, mode, result
        )

        present = existing | set(assignment.already_present)
        attempted = {outcome.volume_number for outcome in outcomes}
        return result, present, attempted

    async def _run_batch(
        self,
        session: SQLModelAsyncSession,
        manga: ManagedManga,
    ) -> ImportPassResult:
        """Import a batch download, then clear the batch marker whatever happened."""
        result = ImportPassResult()
        manga_id, anilist_id = manga.id, manga.anilist_id
        title = display_title(manga)
        source = self.resolve_download_path(manga.bulk_download_path or "")
        log = logger.bind(anilist_id=anilist_id, title=title, source=str(source))
        log.info("Importing batch download")

        extraction: ExtractionResult | None = None
        try:
            extraction = await self._extract(source)
            if extraction.label is None and manga.bulk_download_name:
                extraction.label = manga.bulk_download_name
            if not extraction.ok:
                result.failed += 1
                result.errors.append(f"{anilist_id}: {extraction.error}")
                volumes_failed_total.labels(reason="extraction").inc()
                log.error("Batch extraction failed", error=extraction.error)
            else:
                batch_result, _, _ = await self._assign_and_import(
                    session, manga, title, extraction, mode="batch"
                )
                result.merge(batch_result)
        except NoVolumeFoldersDetected as exc:
            result.failed += 1
            result.errors.append(f"{anilist_id}: {exc}")
            volumes_failed_total.labels(reason="no_volume_folders").inc()
            log.error("Batch has no volume folders", error=str(exc))
        except Exception as exc:
            await session.rollback()
            result.failed += 1
            result.errors.append(f"{anilist_id}: {exc}")
            volumes_failed_total.labels(reason="error").inc()
            log.exception("Batch import crashed")
        finally:
            if extraction is not None:
                await asyncio.to_thread(extraction.cleanup)

        # Reload: a rollback above expires every loaded instance
        reloaded = await session.get(ManagedManga, manga_id)
        if reloaded is not None:
            clear_batch_marker(session, reloaded)
            await self._commit(session)
        log.info(
            "Batch download processed",
            imported=result.imported,
            failed=result.failed,
            skipped=result.skipped,
        )
        return result

    async def _fail_volume(
        self,
        session: SQLModelAsyncSession,
        manga_id: str,
        anilist_id: int,
        volume_number: int,
        reason: str,
        metric_reason: str,
        result: ImportPassResult,
    ) -> None:
        await upsert_volume_status(
            session, manga_id, volume_number, "failed", error_message=reason
        )
        await self._commit(session)
        result.failed += 1
        result.errors.append(f"{anilist_id} v{volume_number}: {reason}")
        volumes_failed_total.labels(reason=metric_reason).inc()
        logger.error(
            "Volume import failed",
            anilist_id=anilist_id,
            volume_number=volume_number,
            reason=reason,
        )

    async def _run_single(
        self,
        session: SQLModelAsyncSession,
        volume: ManagedVolume,
        manga: ManagedManga,
    ) -> ImportPassResult:
        """Import a single-volume download.

        A download that turns out to hold several volume folders is handled
        with the batch logic; its own volume must be among them.
        """
        result = ImportPassResult()
        manga_id, anilist_id = manga.id, manga.anilist_id
        volume_number = volume.volume_number
        title = display_title(manga)
        source = self.resolve_download_path(volume.download_path or "")
        log = logger.bind(anilist_id=anilist_id, volume_number=volume_number, source=str(source))
        log.info("Importing volume download")

        extraction: ExtractionResult | None = None
        try:
            extraction = await self._extract(source)
            if extraction.label is None and volume.download_name:
                extraction.label = volume.download_name
            if not extraction.ok:
                await self._fail_volume(
                    session,
                    manga_id,
                    anilist_id,
                    volume_number,
                    extraction.error or "extraction failed",
                    "extraction",
                    result,
                )
                return result

            tree = await asyncio.to_thread(
                snapshot_tree, extraction.import_path, extraction.label
            )
            folders = find_volume_folders(tree)

            if len(folders) > 1:
                log.info("Download bundles several volumes", folders=len(folders))
                bundle_result, present, attempted = await self._assign_and_import(
                    session, manga, title, extraction, mode="single"
                )
                result.merge(bundle_result)
                if volume_number in attempted:
                    return result
                if volume_number in present:
                    # Outcome rows were written for attempted volumes only
                    await upsert_volume_status(session, manga_id, volume_number, "imported")
                    await self._commit(session)
                    log.info("Bundled volume already in library")
                else:
                    await self._fail_volume(
                        session,
                        manga_id,
                        anilist_id,
                        volume_number,
                        MISSING_FROM_BUNDLE,
                        "missing_from_bundle",
                        result,
                    )
                return result

            outcome = await self._import_one(manga, title, volume_number, extraction.import_path)
            await self._record_outcome(session, manga, outcome, "single", result)
        except Exception as exc:
            await session.rollback()
            log.exception("Volume import crashed")
            await self._fail_volume(
                session, manga_id, anilist_id, volume_number, str(exc), "error", result
            )
        finally:
            if extraction is not None:
                await asyncio.to_thread(extraction.cleanup)

        return result
