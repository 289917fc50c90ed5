from typing import Any

from sqlalchemy import select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from shared.helper.HelperConfig import HelperConfig
from shared.stores.meta.MetaStoreInterface import MetaStoreInterface
from shared.stores.meta.models.DocumentDigest import DocumentDigest
from shared.stores.meta.models.KnowledgeStore import KnowledgeStore
from shared.stores.meta.models.StagedUpload import REHYDRATABLE_STATUSES, StagedUpload
from shared.stores.meta.sql.tables import Base, DocumentDigestRow, KnowledgeStoreRow, StagedUploadRow

_STAGED_FIELDS = set(StagedUpload.model_fields) - {"id"}


class MetaStoreSql(MetaStoreInterface):
    """Metadata store on any SQLAlchemy async URL (sqlite+aiosqlite by default)."""

    def __init__(self, helper_config: HelperConfig, url: str | None = None):
        super().__init__(helper_config=helper_config)
        self._url = url or self.get_config_val("URL", default="sqlite+aiosqlite:///./knowledge_base.db")
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    def _get_engine_name(self) -> str:
        return "Sql"

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self) -> None:
        self._engine = create_async_engine(self._url, echo=False)
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False, class_=AsyncSession, autoflush=False)
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.logging.info("Metadata store ready (%s).", self._engine.url.render_as_string(hide_password=True))

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessions = None

    async def do_healthcheck(self) -> bool:
        async with self._session() as session:
            await session.execute(text("SELECT 1"))
        return True

    def _session(self) -> AsyncSession:
        if self._sessions is None:
            raise RuntimeError("Metadata store not initialised. Call boot() before use.")
        return self._sessions()

    ##########################################
    ############ KNOWLEDGE STORES ############
    ##########################################

    async def do_ensure_store(self, owner_id: str, store_ref: str, now: int) -> tuple[KnowledgeStore, bool]:
        async with self._session() as session:
            row = await session.get(KnowledgeStoreRow, owner_id)
            if row is not None:
                return KnowledgeStore.model_validate(row, from_attributes=True), False
            row = KnowledgeStoreRow(owner_id=owner_id, store_ref=store_ref, created_at=now)
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                # created concurrently
                await session.rollback()
                row = await session.get(KnowledgeStoreRow, owner_id)
                return KnowledgeStore.model_validate(row, from_attributes=True), False
            return KnowledgeStore.model_validate(row, from_attributes=True), True

    async def do_get_store(self, owner_id: str) -> KnowledgeStore | None:
        async with self._session() as session:
            row = await session.get(KnowledgeStoreRow, owner_id)
            return KnowledgeStore.model_validate(row, from_attributes=True) if row else None

    ##########################################
    ################ DIGESTS #################
    ##########################################

    async def do_insert_digest_if_absent(self, digest: DocumentDigest) -> bool:
        async with self._session() as session:
            result = await session.execute(
                select(DocumentDigestRow).where(
                    DocumentDigestRow.owner_id == digest.owner_id,
                    DocumentDigestRow.document_ref == digest.document_ref,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                session.add(DocumentDigestRow(**digest.model_dump()))
            elif row.status == "deleted":
                # document re-ingested after a delete: revive the row
                for field, value in digest.model_dump().items():
                    setattr(row, field, value)
            else:
                return False
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                self.logging.info("Digest for '%s' lost the insert race.", digest.display_name)
                return False
            return True

    async def do_upsert_digest(self, digest: DocumentDigest) -> None:
        async with self._session() as session:
            result = await session.execute(
                select(DocumentDigestRow).where(
                    DocumentDigestRow.owner_id == digest.owner_id,
                    DocumentDigestRow.document_ref == digest.document_ref,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                session.add(DocumentDigestRow(**digest.model_dump()))
            else:
                for field, value in digest.model_dump().items():
                    setattr(row, field, value)
            await session.commit()

    async def do_list_digests(self, owner_id: str, include_deleted: bool = False) -> list[DocumentDigest]:
        query = select(DocumentDigestRow).where(DocumentDigestRow.owner_id == owner_id)
        if not include_deleted:
            query = query.where(DocumentDigestRow.status == "active")
        query = query.order_by(DocumentDigestRow.display_name, DocumentDigestRow.id)
        async with self._session() as session:
            rows = (await session.execute(query)).scalars().all()
        return [DocumentDigest.model_validate(row, from_attributes=True) for row in rows]

    async def do_get_active_digest_by_name(self, owner_id: str, normalized_name: str) -> DocumentDigest | None:
        async with self._session() as session:
            result = await session.execute(
                select(DocumentDigestRow).where(
                    DocumentDigestRow.owner_id == owner_id,
                    DocumentDigestRow.normalized_name == normalized_name,
                    DocumentDigestRow.status == "active",
                )
            )
            row = result.scalars().first()
        return DocumentDigest.model_validate(row, from_attributes=True) if row else None

    async def do_get_digest(self, owner_id: str, document_ref: str) -> DocumentDigest | None:
        async with self._session() as session:
            result = await session.execute(
                select(DocumentDigestRow).where(
                    DocumentDigestRow.owner_id == owner_id,
                    DocumentDigestRow.document_ref == document_ref,
                )
            )
            row = result.scalar_one_or_none()
        return DocumentDigest.model_validate(row, from_attributes=True) if row else None

    async def do_mark_digest_deleted(self, owner_id: str, document_ref: str, now: int) -> bool:
        async with self._session() as session:
            result = await session.execute(
                update(DocumentDigestRow)
                .where(
                    DocumentDigestRow.owner_id == owner_id,
                    DocumentDigestRow.document_ref == document_ref,
                    DocumentDigestRow.status == "active",
                )
                .values(status="deleted", deleted_at=now, updated_at=now)
            )
            await session.commit()
            return result.rowcount > 0

    ##########################################
    ############ STAGED UPLOADS ##############
    ##########################################

    async def do_create_staged(self, upload: StagedUpload) -> StagedUpload:
        async with self._session() as session:
            session.add(StagedUploadRow(**upload.model_dump()))
            await session.commit()
        return upload

    async def do_update_staged(self, upload_id: str, **changes: Any) -> StagedUpload:
        unknown = set(changes) - _STAGED_FIELDS
        if unknown:
            raise ValueError(f"Unknown staged upload fields: {sorted(unknown)}")
        async with self._session() as session:
            row = await session.get(StagedUploadRow, upload_id)
            if row is None:
                raise KeyError(upload_id)
            for field, value in changes.items():
                setattr(row, field, value)
            await session.commit()
            return StagedUpload.model_validate(row, from_attributes=True)

    async def _list_staged(self, *conditions) -> list[StagedUpload]:
        query = select(StagedUploadRow).where(*conditions).order_by(StagedUploadRow.created_at, StagedUploadRow.id)
        async with self._session() as session:
            rows = (await session.execute(query)).scalars().all()
        return [StagedUpload.model_validate(row, from_attributes=True) for row in rows]

    async def do_list_staged(self, owner_id: str) -> list[StagedUpload]:
        return await self._list_staged(StagedUploadRow.owner_id == owner_id)

    async def do_list_staged_by_document(self, owner_id: str, document_ref: str) -> list[StagedUpload]:
        return await self._list_staged(
            StagedUploadRow.owner_id == owner_id,
            StagedUploadRow.document_ref == document_ref,
        )

    async def do_list_expired(self, now: int, owner_id: str | None = None) -> list[StagedUpload]:
        conditions = [StagedUploadRow.status != "purged", StagedUploadRow.expires_at <= now]
        if owner_id is not None:
            conditions.append(StagedUploadRow.owner_id == owner_id)
        return await self._list_staged(*conditions)

    async def do_list_rehydratable(self, owner_id: str) -> list[StagedUpload]:
        return await self._list_staged(
            StagedUploadRow.owner_id == owner_id,
            StagedUploadRow.status.in_(REHYDRATABLE_STATUSES),
            StagedUploadRow.deleted_at.is_(None),
        )

    async def do_mark_purged(self, upload_ids: list[str], now: int) -> int:
        if not upload_ids:
            return 0
        async with self._session() as session:
            result = await session.execute(
                update(StagedUploadRow)
                .where(StagedUploadRow.id.in_(upload_ids), StagedUploadRow.status != "purged")
                .values(status="purged", deleted_at=now, ingest_error=None)
            )
            await session.commit()
            return result.rowcount
