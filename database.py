"""Database configuration and the metadata store."""
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Optional

from sqlalchemy import delete, func, inspect, text
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine, select

from models import Image, ImageTagLink, Meta, Tag

logger = logging.getLogger(__name__)


def create_db_engine(db_path: Path) -> Engine:
    """Create the SQLite engine, creating the parent directory if needed."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(
        f"sqlite:///{db_path}", connect_args={"check_same_thread": False}
    )


def init_db(engine: Engine) -> None:
    """Initialize database tables."""
    SQLModel.metadata.create_all(engine)

    # Older indexes predate soft deletion
    columns = {col["name"] for col in inspect(engine).get_columns("image")}
    if "deleted" not in columns:
        logger.info("Adding 'deleted' column to image table")
        with engine.begin() as conn:
            conn.execute(
                text("ALTER TABLE image ADD COLUMN deleted BOOLEAN NOT NULL DEFAULT 0")
            )


def clear_index(engine: Engine, hard: bool = False, images_only: bool = False) -> None:
    """Empty the index.

    ``images_only`` keeps tags and meta. ``hard`` drops and recreates every
    table instead of deleting rows. Ids restart from 1 afterwards, so cached
    thumbnails keyed by id must be cleared along with the index.
    """
    if hard:
        SQLModel.metadata.drop_all(engine)
        init_db(engine)
        logger.info("Dropped and recreated all tables")
        return

    tables = [ImageTagLink, Image] if images_only else [ImageTagLink, Image, Tag, Meta]
    with engine.begin() as conn:
        for table in tables:
            conn.execute(delete(table))
    # VACUUM cannot run inside a transaction
    with engine.connect() as conn:
        conn.execution_options(isolation_level="AUTOCOMMIT").execute(text("VACUUM"))
    logger.info("Cleared %s", ", ".join(t.__table__.name for t in tables))


class MetadataStore:
    """Keyed record store over the image index."""

    def __init__(self, engine: Engine):
        self.engine = engine

    @contextmanager
    def session(self):
        """Get a database session context manager."""
        with Session(self.engine) as session:
            yield session

    # --- images ---

    def lookup_by_id(self, image_id: int) -> Optional[Image]:
        """Return the record for ``image_id`` whether or not it is deleted."""
        with self.session() as s:
            return s.get(Image, image_id)

    def get_image(self, image_id: int) -> Optional[Image]:
        img = self.lookup_by_id(image_id)
        if img is None or img.deleted:
            return None
        return img

    def list_images(self, limit: int, offset: int) -> list[Image]:
        with self.session() as s:
            stmt = (
                select(Image)
                .where(Image.deleted == False)  # noqa: E712
                .order_by(Image.id.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(s.exec(stmt).all())

    def load_images_map(self) -> dict[str, tuple[int, int, int]]:
        """Map rel_path -> (id, mtime, size) for every live record."""
        with self.session() as s:
            rows = s.exec(
                select(Image.id, Image.rel_path, Image.mtime, Image.size).where(
                    Image.deleted == False  # noqa: E712
                )
            ).all()
        return {rel: (image_id, mtime, size) for image_id, rel, mtime, size in rows}

    def upsert_image(
        self,
        rel_path: str,
        filename: str,
        ext: str,
        mtime: int,
        size: int,
        width: int = 0,
        height: int = 0,
    ) -> int:
        """Insert or update a record by path, reviving deleted rows. Returns the id."""
        with self.session() as s:
            img = s.exec(select(Image).where(Image.rel_path == rel_path)).first()
            if img is None:
                img = Image(rel_path=rel_path, filename=filename, ext=ext)
            img.mtime = mtime
            img.size = size
            img.width = width
            img.height = height
            img.deleted = False
            s.add(img)
            s.commit()
            s.refresh(img)
            return img.id

    def mark_deleted(self, rel_paths: Iterable[str]) -> list[int]:
        """Soft-delete records by path and return the ids that were affected."""
        rel_paths = list(rel_paths)
        if not rel_paths:
            return []
        with self.session() as s:
            rows = s.exec(select(Image).where(Image.rel_path.in_(rel_paths))).all()
            ids = []
            for img in rows:
                img.deleted = True
                s.add(img)
                ids.append(img.id)
            s.commit()
        return ids

    # --- meta ---

    def get_meta(self, key: str) -> Optional[str]:
        with self.session() as s:
            row = s.get(Meta, key)
            return row.value if row else None

    def set_meta(self, key: str, value: str) -> None:
        with self.session() as s:
            row = s.get(Meta, key)
            if row:
                row.value = value
            else:
                s.add(Meta(key=key, value=value))
            s.commit()

    # --- tags ---

    def get_tags_for_image(self, image_id: int) -> list[Tag]:
        with self.session() as s:
            stmt = (
                select(Tag)
                .join(ImageTagLink, Tag.id == ImageTagLink.tag_id)
                .where(ImageTagLink.image_id == image_id)
                .order_by(Tag.name)
            )
            return list(s.exec(stmt).all())

    def list_all_tags(self) -> list[dict]:
        """All tags ordered by name, with how many images use each."""
        with self.session() as s:
            stmt = (
                select(Tag.id, Tag.name, func.count(ImageTagLink.image_id))
                .join(ImageTagLink, Tag.id == ImageTagLink.tag_id, isouter=True)
                .group_by(Tag.id)
                .order_by(Tag.name)
            )
            return [
                {"id": tag_id, "name": name, "usage_count": count}
                for tag_id, name, count in s.exec(stmt).all()
            ]

    @staticmethod
    def _get_or_create_tag(session: Session, name: str) -> Tag:
        tag = session.exec(select(Tag).where(Tag.name == name)).first()
        if not tag:
            tag = Tag(name=name)
            session.add(tag)
            session.flush()
        return tag

    def ensure_tag(self, name: str) -> Tag:
        with self.session() as s:
            tag = self._get_or_create_tag(s, name.strip())
            s.commit()
            s.refresh(tag)
            return tag

    def set_tags_for_image(self, image_id: int, names: Iterable[str]) -> list[str]:
        """Replace the tags of an image. Returns the cleaned tag names."""
        cleaned = list(dict.fromkeys(n.strip() for n in names if n and n.strip()))
        with self.session() as s:
            for link in s.exec(
                select(ImageTagLink).where(ImageTagLink.image_id == image_id)
            ).all():
                s.delete(link)
            s.flush()
            for name in cleaned:
                tag = self._get_or_create_tag(s, name)
                s.add(ImageTagLink(image_id=image_id, tag_id=tag.id))
            s.commit()
        return cleaned
