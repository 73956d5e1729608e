import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, Union

from sqlalchemy import Engine, create_engine, delete, event, func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from photoflow.classes import PhotoRecord, RatingRecord, StagedFile, UserRecord
from photoflow.exceptions import (
    PersistenceError,
    PhotoNotFoundError,
    RatingNotFoundError,
    UserNotFoundError,
)
from photoflow.models import Base, Photo, Rating, User


class CatalogWriter(ABC):
    """
    Persistence boundary of the processing core. Implementations own every
    Photo and Rating row; callers only ever get plain records back.
    """

    @abstractmethod
    def create_photo(self, staged: StagedFile) -> int: ...

    @abstractmethod
    def find_user_by_id(self, user_id: int) -> Union[UserRecord, None]: ...

    @abstractmethod
    def find_rating(self, photo_id: int, user_id: int) -> Union[RatingRecord, None]: ...

    @abstractmethod
    def upsert_rating(self, photo_id: int, user_id: int, value: int) -> None: ...

    @abstractmethod
    def delete_rating(self, photo_id: int, user_id: int) -> None: ...

    @abstractmethod
    def list_ratings(self, photo_id: int) -> list[tuple[int, int]]: ...

    @abstractmethod
    def get_photo(self, photo_id: int) -> Union[PhotoRecord, None]: ...

    @abstractmethod
    def delete_photo(self, photo_id: int) -> PhotoRecord: ...

    @abstractmethod
    def list_orphaned_photos(self) -> list[PhotoRecord]: ...

    @abstractmethod
    def assign_owner(self, photo_id: int, user_id: Union[int, None]) -> None: ...

    @abstractmethod
    def update_derivative(
        self, photo_id: int, thumbnail_filename: Union[str, None]
    ) -> None: ...


class SqlCatalogWriter(CatalogWriter):
    _logger: logging.Logger

    __engine: Engine = None
    __session_factory: sessionmaker = None

    # serializes find-or-create upserts on dialects without ON CONFLICT
    __upsert_lock: threading.Lock

    def __init__(self, *, connection_string: str = "sqlite:///"):
        self._logger = logging.getLogger(__name__)
        self._logger.info(
            f"Creating database engine with connection string '{connection_string}'"
        )

        # only echo SQL statements if we're logging at the debug level
        echo = self._logger.getEffectiveLevel() <= logging.DEBUG

        engine_kwargs = {}
        is_sqlite = connection_string.startswith("sqlite")
        if is_sqlite:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if connection_string in ("sqlite://", "sqlite:///", "sqlite:///:memory:"):
                # every pooled connection would otherwise get its own empty database
                engine_kwargs["poolclass"] = StaticPool

        self.__engine = create_engine(connection_string, echo=echo, **engine_kwargs)

        if is_sqlite:
            event.listen(self.__engine, "connect", self._enable_sqlite_foreign_keys)

        Base.metadata.create_all(self.__engine)
        self.__session_factory = sessionmaker(self.__engine, expire_on_commit=False)
        self.__upsert_lock = threading.Lock()

        assert self.__engine is not None
        assert self.__session_factory is not None

    @staticmethod
    def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @property
    def engine(self) -> Engine:
        return self.__engine

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with self.__session_factory() as session:
            with session.begin():
                yield session

    def create_photo(self, staged: StagedFile) -> int:
        metadata = staged.metadata
        latitude, longitude = (
            (metadata.latitude, metadata.longitude) if metadata.has_gps else (None, None)
        )

        photo = Photo(
            user_id=staged.owner_id,
            filename=staged.stored_filename,
            original_filename=staged.original_filename,
            file_size=staged.file_size,
            mime_type=staged.mime_type,
            thumbnail_filename=staged.thumbnail_filename,
            gps_latitude=latitude,
            gps_longitude=longitude,
            taken_at=metadata.taken_at,
        )

        try:
            with self._session() as session:
                session.add(photo)
                session.flush()
                photo_id = photo.id
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Could not store photo '{staged.stored_filename}': {e}"
            ) from e

        self._logger.debug(f"Stored photo id={photo_id} filename='{photo.filename}'")
        return photo_id

    def add_user(self, username: str, user_id: Union[int, None] = None) -> int:
        with self._session() as session:
            user = User(id=user_id, username=username)
            session.add(user)
            session.flush()
            return user.id

    def delete_user(self, user_id: int) -> None:
        with self._session() as session:
            user = session.get(User, user_id)
            if user is None:
                raise UserNotFoundError(f"User with id={user_id} not found")
            session.delete(user)

    def find_user_by_id(self, user_id: int) -> Union[UserRecord, None]:
        try:
            with self._session() as session:
                user = session.get(User, user_id)
                if user is None:
                    return None
                return UserRecord(id=user.id, username=user.username)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not look up user id={user_id}: {e}") from e

    def get_photo(self, photo_id: int) -> Union[PhotoRecord, None]:
        with self._session() as session:
            photo = session.get(Photo, photo_id)
            return self._to_record(photo) if photo else None

    def delete_photo(self, photo_id: int) -> PhotoRecord:
        with self._session() as session:
            photo = session.get(Photo, photo_id)
            if photo is None:
                raise PhotoNotFoundError(f"Photo with id={photo_id} not found")
            record = self._to_record(photo)
            session.delete(photo)

        self._logger.debug(f"Deleted photo id={photo_id} and its ratings")
        return record

    def list_orphaned_photos(self) -> list[PhotoRecord]:
        select_statement = (
            select(Photo).where(Photo.user_id.is_(None)).order_by(Photo.uploaded_at.desc())
        )
        with self._session() as session:
            return [self._to_record(p) for p in session.scalars(select_statement).all()]

    def assign_owner(self, photo_id: int, user_id: Union[int, None]) -> None:
        with self._session() as session:
            photo = session.get(Photo, photo_id)
            if photo is None:
                raise PhotoNotFoundError(f"Photo with id={photo_id} not found")
            if user_id is not None and session.get(User, user_id) is None:
                raise UserNotFoundError(f"User with id={user_id} not found")
            photo.user_id = user_id

    def update_derivative(
        self, photo_id: int, thumbnail_filename: Union[str, None]
    ) -> None:
        with self._session() as session:
            photo = session.get(Photo, photo_id)
            if photo is None:
                raise PhotoNotFoundError(f"Photo with id={photo_id} not found")
            photo.thumbnail_filename = thumbnail_filename

    def find_rating(self, photo_id: int, user_id: int) -> Union[RatingRecord, None]:
        select_statement = select(Rating).where(
            Rating.photo_id == photo_id, Rating.user_id == user_id
        )
        with self._session() as session:
            rating = session.scalars(select_statement).one_or_none()
            if rating is None:
                return None
            return RatingRecord(
                photo_id=rating.photo_id,
                user_id=rating.user_id,
                value=rating.value,
                created_at=rating.created_at,
            )

    def upsert_rating(self, photo_id: int, user_id: int, value: int) -> None:
        dialect = self.__engine.dialect.name

        if dialect in ("sqlite", "postgresql"):
            insert = sqlite_insert if dialect == "sqlite" else postgresql_insert
            table = Rating.__table__
            statement = insert(table).values(
                photo_id=photo_id,
                user_id=user_id,
                rating=value,
            )
            statement = statement.on_conflict_do_update(
                index_elements=[table.c.photo_id, table.c.user_id],
                set_={"rating": statement.excluded.rating},
            )
            with self._session() as session:
                session.execute(statement)
            return

        with self.__upsert_lock:
            with self._session() as session:
                rating = session.scalars(
                    select(Rating).where(
                        Rating.photo_id == photo_id, Rating.user_id == user_id
                    )
                ).one_or_none()
                if rating is None:
                    session.add(Rating(photo_id=photo_id, user_id=user_id, value=value))
                else:
                    rating.value = value

    def delete_rating(self, photo_id: int, user_id: int) -> None:
        delete_statement = delete(Rating).where(
            Rating.photo_id == photo_id, Rating.user_id == user_id
        )
        with self._session() as session:
            result = session.execute(delete_statement)
            if result.rowcount == 0:
                raise RatingNotFoundError(
                    f"No rating for photo id={photo_id} by user id={user_id}"
                )

    def list_ratings(self, photo_id: int) -> list[tuple[int, int]]:
        select_statement = (
            select(Rating.user_id, Rating.value)
            .where(Rating.photo_id == photo_id)
            .order_by(Rating.id)
        )
        with self._session() as session:
            return [(user_id, value) for user_id, value in session.execute(select_statement)]

    def get_total_photo_count(self) -> int:
        select_statement = select(func.count()).select_from(Photo)
        with self._session() as session:
            return session.execute(select_statement).scalar() or 0

    @staticmethod
    def _to_record(photo: Photo) -> PhotoRecord:
        return PhotoRecord(
            id=photo.id,
            filename=photo.filename,
            original_filename=photo.original_filename,
            file_size=photo.file_size,
            mime_type=photo.mime_type,
            thumbnail_filename=photo.thumbnail_filename,
            gps_latitude=photo.gps_latitude,
            gps_longitude=photo.gps_longitude,
            taken_at=photo.taken_at,
            uploaded_at=photo.uploaded_at,
            updated_at=photo.updated_at,
            user_id=photo.user_id,
        )
