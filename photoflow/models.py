from datetime import datetime, timezone
from decimal import Decimal
from typing import Union

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(String(255), unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    # deleting a user orphans their photos but takes their ratings along
    photos: Mapped[list["Photo"]] = relationship(back_populates="user")
    ratings: Mapped[list["Rating"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class Photo(Base):
    __tablename__ = "photos"
    __table_args__ = (
        CheckConstraint(
            "(gps_latitude IS NULL) = (gps_longitude IS NULL)",
            name="photos_gps_pair_check",
        ),
        Index("photos_gps_idx", "gps_latitude", "gps_longitude"),
        Index("photos_taken_at_idx", "taken_at"),
        Index("photos_uploaded_at_idx", "uploaded_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[Union[int, None]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), index=True
    )

    filename: Mapped[str] = mapped_column(String(500), unique=True)
    original_filename: Mapped[str] = mapped_column(String(500))
    file_size: Mapped[int] = mapped_column()
    mime_type: Mapped[str] = mapped_column(String(100))
    thumbnail_filename: Mapped[Union[str, None]] = mapped_column(String(500))

    gps_latitude: Mapped[Union[Decimal, None]] = mapped_column(Numeric(10, 8))
    gps_longitude: Mapped[Union[Decimal, None]] = mapped_column(Numeric(11, 8))
    taken_at: Mapped[Union[datetime, None]] = mapped_column(DateTime())

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    user: Mapped[Union[User, None]] = relationship(back_populates="photos")
    ratings: Mapped[list["Rating"]] = relationship(
        back_populates="photo", cascade="all, delete-orphan", passive_deletes=True
    )


class Rating(Base):
    __tablename__ = "ratings"
    __table_args__ = (
        UniqueConstraint("photo_id", "user_id", name="ratings_photo_user_unique"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ratings_value_check"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    photo_id: Mapped[int] = mapped_column(
        ForeignKey("photos.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    value: Mapped[int] = mapped_column("rating")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow
    )

    photo: Mapped[Photo] = relationship(back_populates="ratings")
    user: Mapped[User] = relationship(back_populates="ratings")
