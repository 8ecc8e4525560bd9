"""SQLAlchemy graph store (SQLite by default, any SQLAlchemy URL works).

Replace operations run inside one transaction, so readers never observe a
half-written strength table or a cluster set mixing two runs.
"""

import json
import logging
import uuid
from dataclasses import asdict
from datetime import datetime
from pathlib import Path

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    select,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import InternalError, ValidationError
from ..models import (
    AccessLogEntry,
    Article,
    ArticleRef,
    ClusterAssignment,
    ClusterResult,
    ContentSecret,
    LinkStrength,
    StoredLink,
    metadata_from_dict,
)
from .base import GraphStoreBase

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


def _new_id() -> str:
    return str(uuid.uuid4())


class ArticleRow(Base):
    __tablename__ = "articles"
    __table_args__ = (UniqueConstraint("source_type", "full_path"),)

    source_type: Mapped[str] = mapped_column(String(16), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(200))
    full_path: Mapped[str] = mapped_column(String(512))
    classification_level: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(16), default="draft")
    content: Mapped[str] = mapped_column(Text, default="")
    # JSON fields stored as text
    tags: Mapped[str] = mapped_column(Text, default="[]")
    metadata_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class SecretRow(Base):
    __tablename__ = "article_content_secrets"
    __table_args__ = (UniqueConstraint("article_source_type", "article_id", "secret_key"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    article_source_type: Mapped[str] = mapped_column(String(16), index=True)
    article_id: Mapped[str] = mapped_column(String(64), index=True)
    secret_key: Mapped[str] = mapped_column(String(100))
    classification_level: Mapped[int] = mapped_column(Integer)
    content: Mapped[str] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class LinkRow(Base):
    __tablename__ = "article_links"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    source_article_type: Mapped[str] = mapped_column(String(16), index=True)
    source_article_id: Mapped[str] = mapped_column(String(64), index=True)
    target_article_type: Mapped[str] = mapped_column(String(16), index=True)
    target_article_id: Mapped[str] = mapped_column(String(64), index=True)
    link_text: Mapped[str] = mapped_column(Text)
    link_type: Mapped[str] = mapped_column(String(16), default="wiki")
    context_snippet: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class StrengthRow(Base):
    __tablename__ = "article_link_strength"

    link_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    source_article_type: Mapped[str] = mapped_column(String(16))
    source_article_id: Mapped[str] = mapped_column(String(64))
    target_article_type: Mapped[str] = mapped_column(String(16))
    target_article_id: Mapped[str] = mapped_column(String(64))
    base_strength: Mapped[float] = mapped_column(Float, default=1.0)
    shared_tags_score: Mapped[float] = mapped_column(Float, default=0.0)
    recency_score: Mapped[float] = mapped_column(Float, default=0.0)
    bidirectional_score: Mapped[float] = mapped_column(Float, default=0.0)
    link_count_score: Mapped[float] = mapped_column(Float, default=0.0)
    total_strength: Mapped[float] = mapped_column(Float, default=1.0)
    normalized_strength: Mapped[float] = mapped_column(Float, default=0.5)
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class ClusterRow(Base):
    __tablename__ = "cluster_metadata"
    __table_args__ = (UniqueConstraint("cluster_id", "algorithm"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    cluster_id: Mapped[int] = mapped_column(Integer)
    algorithm: Mapped[str] = mapped_column(String(50), index=True)
    size: Mapped[int] = mapped_column(Integer, default=0)
    density: Mapped[float] = mapped_column(Float, default=0.0)
    label: Mapped[str] = mapped_column(String(255), default="")
    representative_article_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
    representative_article_id: Mapped[str | None] = mapped_column(String(64), nullable=True)


class AssignmentRow(Base):
    __tablename__ = "article_clusters"
    __table_args__ = (UniqueConstraint("article_source_type", "article_id", "algorithm"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    article_source_type: Mapped[str] = mapped_column(String(16))
    article_id: Mapped[str] = mapped_column(String(64))
    cluster_id: Mapped[int] = mapped_column(Integer)
    cluster_label: Mapped[str] = mapped_column(String(255), default="")
    centrality_score: Mapped[float] = mapped_column(Float, default=0.0)
    algorithm: Mapped[str] = mapped_column(String(50), index=True)
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class AccessLogRow(Base):
    __tablename__ = "article_secret_access_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    article_source_type: Mapped[str] = mapped_column(String(16), index=True)
    article_id: Mapped[str] = mapped_column(String(64), index=True)
    secret_key: Mapped[str] = mapped_column(String(100))
    requester_id: Mapped[str] = mapped_column(String(64))
    access_granted: Mapped[bool] = mapped_column(Boolean)
    user_classification_level: Mapped[int] = mapped_column(Integer)
    required_classification_level: Mapped[int] = mapped_column(Integer)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    accessed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


def _to_article(row: ArticleRow) -> Article:
    return Article(
        source_type=row.source_type,
        id=row.id,
        title=row.title,
        full_path=row.full_path,
        classification_level=row.classification_level,
        content=row.content,
        status=row.status,
        tags=set(json.loads(row.tags or "[]")),
        metadata=metadata_from_dict(row.source_type, json.loads(row.metadata_json or "{}")),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_link(row: LinkRow) -> StoredLink:
    return StoredLink(
        id=row.id,
        source=ArticleRef(row.source_article_type, row.source_article_id),
        target=ArticleRef(row.target_article_type, row.target_article_id),
        link_text=row.link_text,
        link_type=row.link_type,
        context_snippet=row.context_snippet,
        created_at=row.created_at,
    )


class SQLGraphStore(GraphStoreBase):
    """SQLAlchemy-backed persistent store."""

    def __init__(self, database_url: str):
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, so the audit pool sees the same database
            self.engine = create_engine(
                database_url, connect_args={"check_same_thread": False}, poolclass=StaticPool
            )
        else:
            if database_url.startswith("sqlite:///"):
                Path(database_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(database_url)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(self.engine, expire_on_commit=False)

    def put_article(self, article: Article) -> None:
        metadata = asdict(article.metadata) if article.metadata else {}
        with self.Session.begin() as session:
            session.merge(ArticleRow(
                source_type=article.source_type,
                id=article.id,
                title=article.title,
                full_path=article.full_path,
                classification_level=article.classification_level,
                status=article.status,
                content=article.content,
                tags=json.dumps(sorted(article.tags)),
                metadata_json=json.dumps(metadata),
                created_at=article.created_at,
                updated_at=article.updated_at,
            ))

    def get_article(self, ref: ArticleRef) -> Article | None:
        with self.Session() as session:
            row = session.get(ArticleRow, (ref.source_type, ref.id))
            return _to_article(row) if row else None

    def list_articles(self) -> list[Article]:
        with self.Session() as session:
            rows = session.scalars(select(ArticleRow).order_by(ArticleRow.source_type, ArticleRow.id))
            return [_to_article(r) for r in rows]

    def find_article(self, source_type: str, path_or_title: str) -> Article | None:
        with self.Session() as session:
            row = session.scalars(
                select(ArticleRow).where(
                    ArticleRow.source_type == source_type, ArticleRow.full_path == path_or_title
                )
            ).first()
            if row is None:
                row = session.scalars(
                    select(ArticleRow)
                    .where(ArticleRow.source_type == source_type, ArticleRow.title == path_or_title)
                    .order_by(ArticleRow.id)
                ).first()
            return _to_article(row) if row else None

    def add_secrets(self, secrets: list[ContentSecret]) -> None:
        try:
            with self.Session.begin() as session:
                session.add_all([
                    SecretRow(
                        article_source_type=s.article.source_type,
                        article_id=s.article.id,
                        secret_key=s.key,
                        classification_level=s.classification_level,
                        content=s.content,
                        description=s.description,
                        created_by=s.created_by,
                        created_at=s.created_at,
                    )
                    for s in secrets
                ])
        except IntegrityError as e:
            raise ValidationError(f"Duplicate secret key: {e.orig}") from e

    def get_secrets(self, ref: ArticleRef) -> list[ContentSecret]:
        with self.Session() as session:
            rows = session.scalars(
                select(SecretRow)
                .where(SecretRow.article_source_type == ref.source_type, SecretRow.article_id == ref.id)
                .order_by(SecretRow.secret_key)
            )
            return [
                ContentSecret(
                    article=ref,
                    key=r.secret_key,
                    classification_level=r.classification_level,
                    content=r.content,
                    description=r.description,
                    created_by=r.created_by,
                    created_at=r.created_at,
                )
                for r in rows
            ]

    def replace_links(self, source: ArticleRef, links: list[StoredLink]) -> None:
        with self.Session.begin() as session:
            session.execute(delete(LinkRow).where(
                LinkRow.source_article_type == source.source_type,
                LinkRow.source_article_id == source.id,
            ))
            session.add_all([
                LinkRow(
                    id=link.id,
                    source_article_type=link.source.source_type,
                    source_article_id=link.source.id,
                    target_article_type=link.target.source_type,
                    target_article_id=link.target.id,
                    link_text=link.link_text,
                    link_type=link.link_type,
                    context_snippet=link.context_snippet,
                    created_at=link.created_at,
                )
                for link in links
            ])

    def list_links(self) -> list[StoredLink]:
        with self.Session() as session:
            rows = session.scalars(select(LinkRow).order_by(
                LinkRow.source_article_type, LinkRow.source_article_id, LinkRow.id
            ))
            return [_to_link(r) for r in rows]

    def replace_strengths(self, strengths: list[LinkStrength]) -> None:
        try:
            with self.Session.begin() as session:
                session.execute(delete(StrengthRow))
                session.add_all([
                    StrengthRow(
                        link_id=s.link_id,
                        source_article_type=s.source.source_type,
                        source_article_id=s.source.id,
                        target_article_type=s.target.source_type,
                        target_article_id=s.target.id,
                        base_strength=s.base,
                        shared_tags_score=s.shared_tags_score,
                        recency_score=s.recency_score,
                        bidirectional_score=s.bidirectional_score,
                        link_count_score=s.link_count_score,
                        total_strength=s.total_strength,
                        normalized_strength=s.normalized_strength,
                        calculated_at=s.calculated_at,
                    )
                    for s in strengths
                ])
        except SQLAlchemyError as e:
            raise InternalError(f"Failed to persist link strengths: {e}") from e

    def get_strengths(self) -> dict[str, LinkStrength]:
        with self.Session() as session:
            rows = session.scalars(select(StrengthRow))
            return {
                r.link_id: LinkStrength(
                    link_id=r.link_id,
                    source=ArticleRef(r.source_article_type, r.source_article_id),
                    target=ArticleRef(r.target_article_type, r.target_article_id),
                    base=r.base_strength,
                    shared_tags_score=r.shared_tags_score,
                    recency_score=r.recency_score,
                    bidirectional_score=r.bidirectional_score,
                    link_count_score=r.link_count_score,
                    normalized_strength=r.normalized_strength,
                    calculated_at=r.calculated_at,
                )
                for r in rows
            }

    def replace_clusters(
        self,
        algorithm: str,
        clusters: list[ClusterResult],
        assignments: list[ClusterAssignment],
    ) -> None:
        try:
            with self.Session.begin() as session:
                session.execute(delete(AssignmentRow).where(AssignmentRow.algorithm == algorithm))
                session.execute(delete(ClusterRow).where(ClusterRow.algorithm == algorithm))
                for cluster in clusters:
                    rep = cluster.representative
                    session.add(ClusterRow(
                        cluster_id=cluster.cluster_id,
                        algorithm=algorithm,
                        size=cluster.size,
                        density=cluster.density,
                        label=cluster.label,
                        representative_article_type=rep.source_type if rep else None,
                        representative_article_id=rep.id if rep else None,
                    ))
                session.add_all([
                    AssignmentRow(
                        article_source_type=a.article.source_type,
                        article_id=a.article.id,
                        cluster_id=a.cluster_id,
                        cluster_label=a.cluster_label,
                        centrality_score=a.centrality_score,
                        algorithm=algorithm,
                        calculated_at=a.calculated_at,
                    )
                    for a in assignments
                ])
        except SQLAlchemyError as e:
            raise InternalError(f"Failed to persist clusters for '{algorithm}': {e}") from e

    def get_clusters(self, algorithm: str) -> list[ClusterResult]:
        with self.Session() as session:
            cluster_rows = list(session.scalars(
                select(ClusterRow).where(ClusterRow.algorithm == algorithm).order_by(ClusterRow.cluster_id)
            ))
            assignment_rows = list(session.scalars(
                select(AssignmentRow)
                .where(AssignmentRow.algorithm == algorithm)
                .order_by(AssignmentRow.article_source_type, AssignmentRow.article_id)
            ))

        members: dict[int, dict[ArticleRef, float]] = {}
        for a in assignment_rows:
            members.setdefault(a.cluster_id, {})[ArticleRef(a.article_source_type, a.article_id)] = a.centrality_score

        results = []
        for row in cluster_rows:
            centrality = members.get(row.cluster_id, {})
            rep = None
            if row.representative_article_type and row.representative_article_id:
                rep = ArticleRef(row.representative_article_type, row.representative_article_id)
            results.append(ClusterResult(
                cluster_id=row.cluster_id,
                algorithm=algorithm,
                members=list(centrality),
                centrality=centrality,
                density=row.density,
                label=row.label,
                representative=rep,
            ))
        return results

    def get_assignment(self, ref: ArticleRef, algorithm: str) -> ClusterAssignment | None:
        with self.Session() as session:
            row = session.scalars(select(AssignmentRow).where(
                AssignmentRow.article_source_type == ref.source_type,
                AssignmentRow.article_id == ref.id,
                AssignmentRow.algorithm == algorithm,
            )).first()
            if row is None:
                return None
            return ClusterAssignment(
                article=ref,
                algorithm=algorithm,
                cluster_id=row.cluster_id,
                cluster_label=row.cluster_label,
                centrality_score=row.centrality_score,
                calculated_at=row.calculated_at,
            )

    def append_access_log(self, entry: AccessLogEntry) -> None:
        with self.Session.begin() as session:
            session.add(AccessLogRow(
                article_source_type=entry.article.source_type,
                article_id=entry.article.id,
                secret_key=entry.secret_key,
                requester_id=entry.requester_id,
                access_granted=entry.granted,
                user_classification_level=entry.user_level,
                required_classification_level=entry.required_level,
                ip_address=entry.ip_address,
                user_agent=entry.user_agent,
                accessed_at=entry.accessed_at,
            ))

    def list_access_log(self, ref: ArticleRef | None = None) -> list[AccessLogEntry]:
        query = select(AccessLogRow).order_by(AccessLogRow.accessed_at)
        if ref is not None:
            query = query.where(
                AccessLogRow.article_source_type == ref.source_type,
                AccessLogRow.article_id == ref.id,
            )
        with self.Session() as session:
            return [
                AccessLogEntry(
                    article=ArticleRef(r.article_source_type, r.article_id),
                    secret_key=r.secret_key,
                    requester_id=r.requester_id,
                    user_level=r.user_classification_level,
                    required_level=r.required_classification_level,
                    granted=r.access_granted,
                    ip_address=r.ip_address,
                    user_agent=r.user_agent,
                    accessed_at=r.accessed_at,
                )
                for r in session.scalars(query)
            ]
