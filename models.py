"""Database models for NAS Gallery."""
from typing import Optional

from sqlmodel import Field, SQLModel


class ImageTagLink(SQLModel, table=True):
    """Link table for many-to-many relationship between images and tags."""
    image_id: Optional[int] = Field(
        default=None, foreign_key="image.id", primary_key=True
    )
    tag_id: Optional[int] = Field(default=None, foreign_key="tag.id", primary_key=True)


class Tag(SQLModel, table=True):
    """User tag attached to images."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)


class Image(SQLModel, table=True):
    """Indexed source image, addressed by a path relative to the image root."""
    id: Optional[int] = Field(default=None, primary_key=True)
    rel_path: str = Field(index=True, unique=True, description="Path under image root")
    filename: str = Field(index=True)
    ext: str = ""
    mtime: int = Field(default=0, description="Modification time in milliseconds")
    size: int = 0
    width: int = 0
    height: int = 0
    deleted: bool = Field(default=False, index=True)


class Meta(SQLModel, table=True):
    """Key/value bookkeeping (last scan time etc.)."""
    key: str = Field(primary_key=True)
    value: str
