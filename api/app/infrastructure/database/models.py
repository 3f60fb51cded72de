"""
Modelos de base de datos (ORM).
"""
from sqlalchemy import (
    Column,
    String,
    Integer,
    DateTime,
    Text,
    Enum as SQLEnum,
    JSON,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from app.infrastructure.database.session import Base
from app.shared.constants.sync_constants import (
    DateFilter,
    JobStatus,
    JobType,
    ExecutionStatus,
    PageStatus,
    TriggerType,
)


class SyncJobModel(Base):
    """
    Modelo de base de datos para jobs de sincronizacion.

    Los contadores solo se modifican con UPDATE atomicos (col = col + n);
    `version` y `lock_owner` protegen contra dos invocaciones simultaneas.
    """

    __tablename__ = "sync_jobs"

    id = Column(String(36), primary_key=True)
    job_type = Column(SQLEnum(JobType, native_enum=False, length=32), nullable=False, index=True)
    account_id = Column(String(255), nullable=False, index=True)
    status = Column(
        SQLEnum(JobStatus, native_enum=False, length=32),
        nullable=False,
        default=JobStatus.INITIALIZED,
        index=True,
    )

    total_records = Column(Integer, nullable=False, default=0)
    total_pages = Column(Integer, nullable=False, default=0)
    page_size = Column(Integer, nullable=False, default=100)
    batch_size = Column(Integer, nullable=False, default=10)
    current_page = Column(Integer, nullable=False, default=0)
    completed_pages = Column(Integer, nullable=False, default=0)
    failed_pages = Column(Integer, nullable=False, default=0)

    records_processed = Column(Integer, nullable=False, default=0)
    new_count = Column(Integer, nullable=False, default=0)
    updated_count = Column(Integer, nullable=False, default=0)
    skipped_count = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)

    query_params = Column(JSON, nullable=True)
    date_filter = Column(SQLEnum(DateFilter, native_enum=False, length=16), nullable=True)
    created_by = Column(String(255), nullable=True)
    last_error = Column(Text, nullable=True)

    # Control de concurrencia
    version = Column(Integer, nullable=False, default=0)
    lock_owner = Column(String(36), nullable=True)
    locked_at = Column(DateTime(timezone=True), nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=True)
    last_processed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<SyncJob(id={self.id}, type={self.job_type}, status={self.status})>"


class SyncJobPageModel(Base):
    """
    Ultimo resultado de cada pagina de un job.

    completed_pages/failed_pages del job se recalculan desde esta tabla: una
    pagina cuenta una sola vez y un reintento exitoso reemplaza a su fallo.
    """

    __tablename__ = "sync_job_pages"

    job_id = Column(String(36), ForeignKey("sync_jobs.id", ondelete="CASCADE"), primary_key=True)
    page = Column(Integer, primary_key=True)
    status = Column(SQLEnum(PageStatus, native_enum=False, length=16), nullable=False)
    records = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<SyncJobPage(job={self.job_id}, page={self.page}, status={self.status})>"


class ExecutionLogModel(Base):
    """
    Modelo de base de datos para el log de ejecuciones.
    Una fila por invocacion (initialize / execute), independiente del job.
    """

    __tablename__ = "execution_logs"

    execution_id = Column(String(36), primary_key=True)
    job_ref = Column(String(36), nullable=True, index=True)
    job_name = Column(String(255), nullable=False)
    account_id = Column(String(255), nullable=True, index=True)
    trigger_type = Column(SQLEnum(TriggerType, native_enum=False, length=16), nullable=False)
    trigger_source = Column(String(255), nullable=True)
    api_source = Column(String(100), nullable=True)
    status = Column(
        SQLEnum(ExecutionStatus, native_enum=False, length=16),
        nullable=False,
        default=ExecutionStatus.RUNNING,
        index=True,
    )

    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True), nullable=True)
    duration_ms = Column(Integer, nullable=True)

    total_pages = Column(Integer, nullable=False, default=0)
    items_processed = Column(Integer, nullable=False, default=0)
    total_reads = Column(Integer, nullable=False, default=0)
    total_writes = Column(Integer, nullable=False, default=0)

    message = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)
    error_details = Column(JSON, nullable=True)
    environment = Column(String(50), nullable=True)
    version = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_execution_logs_account_start", "account_id", "start_time"),
    )

    def __repr__(self):
        return f"<ExecutionLog(id={self.execution_id}, job={self.job_name}, status={self.status})>"


class DocumentModel(Base):
    """
    Documento del store: un dict JSON por entidad sincronizada.
    Los campos derivados viven en el mismo documento y el motor no los toca.
    """

    __tablename__ = "store_documents"

    collection = Column(String(100), primary_key=True)
    document_id = Column(String(255), primary_key=True)
    account_id = Column(String(255), nullable=True, index=True)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Document(collection={self.collection}, id={self.document_id})>"


class DocumentKeyModel(Base):
    """
    Indice de campos consultables de cada documento (claves de identidad).
    Permite `query(field, op, value)` sin depender de operadores JSON del motor SQL.
    """

    __tablename__ = "store_document_keys"

    id = Column(Integer, primary_key=True, autoincrement=True)
    collection = Column(String(100), nullable=False)
    document_id = Column(String(255), nullable=False)
    field = Column(String(100), nullable=False)
    value = Column(String(512), nullable=False)

    __table_args__ = (
        UniqueConstraint("collection", "document_id", "field", name="uq_document_key_field"),
        Index("ix_document_keys_lookup", "collection", "field", "value"),
    )

    def __repr__(self):
        return f"<DocumentKey({self.collection}.{self.field}={self.value} -> {self.document_id})>"
