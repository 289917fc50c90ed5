from sqlalchemy import JSON, BigInteger, Index, String, Text, UniqueConstraint, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class KnowledgeStoreRow(Base):
    __tablename__ = "knowledge_stores"
    owner_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    store_ref: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[int] = mapped_column(BigInteger)


class DocumentDigestRow(Base):
    __tablename__ = "document_digests"
    __table_args__ = (
        UniqueConstraint("owner_id", "document_ref", name="uq_digest_document"),
        # at most one active digest per name; the compare-and-swap relies on it
        Index(
            "uq_digest_active_name",
            "owner_id",
            "normalized_name",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(255), index=True)
    document_ref: Mapped[str] = mapped_column(String(512))
    display_name: Mapped[str] = mapped_column(String(512))
    normalized_name: Mapped[str] = mapped_column(String(512))
    blob_ref: Mapped[str | None] = mapped_column(String(512), nullable=True)
    topics: Mapped[list] = mapped_column(JSON, default=list)
    entities: Mapped[list] = mapped_column(JSON, default=list)
    lexical_anchors: Mapped[list] = mapped_column(JSON, default=list)
    style_anchors: Mapped[list] = mapped_column(JSON, default=list)
    summary: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(16), default="active")
    updated_at: Mapped[int] = mapped_column(BigInteger)
    deleted_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class StagedUploadRow(Base):
    __tablename__ = "staged_uploads"
    __table_args__ = (
        Index("ix_staged_owner_created", "owner_id", "created_at"),
        Index("ix_staged_expires", "status", "expires_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(255))
    blob_ref: Mapped[str] = mapped_column(String(512))
    display_name: Mapped[str] = mapped_column(String(512))
    mime_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    size_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    store_ref: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(32), default="staged")
    document_ref: Mapped[str | None] = mapped_column(String(512), nullable=True)
    ingest_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger)
    ingested_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    expires_at: Mapped[int] = mapped_column(BigInteger)
    deleted_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
