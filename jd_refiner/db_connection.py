# jd_refiner/db_connection.py

import logging
import os
from typing import Callable

from google.auth import default as google_auth_default
from google.cloud import secretmanager
from google.oauth2 import service_account
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from jd_refiner import config
from jd_refiner.entities import Base

logger = logging.getLogger("jd_refiner.db")


class DbConnection:
    """
    Resolves the database URL (explicit DATABASE_URL, local SQLite, or
    Postgres with the password optionally pulled from Secret Manager) and
    hands out a process-wide SQLAlchemy session factory.
    """

    def __init__(self, database_url: str | None = None) -> None:
        self.DB_PASSWORD = config.DB_PASSWORD
        self.DATABASE_URL = database_url or config.DATABASE_URL
        if not self.DATABASE_URL:
            if config.IS_LOCAL_DB:
                self.DATABASE_URL = config.LOCAL_DB_URL
            else:
                self.DATABASE_URL = (
                    f"postgresql+pg8000://{config.DB_USER}:{self._get_db_password_lazy()}"
                    f"@{config.DB_HOST}:{config.DB_PORT}/{config.DB_NAME}"
                )
        self._engine: Engine | None = None
        self._sessionmaker: sessionmaker | None = None

    # -------- GCP auth / creds --------
    def _build_creds(self):
        key_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
        scopes = ["https://www.googleapis.com/auth/cloud-platform"]
        if key_path and os.path.exists(key_path):
            return service_account.Credentials.from_service_account_file(key_path, scopes=scopes)
        creds, _ = google_auth_default(scopes=scopes)
        return creds

    # -------- DB password (Secret Manager) --------
    def _get_db_password_lazy(self) -> str:
        if self.DB_PASSWORD:
            return self.DB_PASSWORD
        if config.DB_SECRET_ID:
            client = secretmanager.SecretManagerServiceClient(credentials=self._build_creds())
            name = client.secret_version_path(config.PROJECT_ID, config.DB_SECRET_ID, "latest")
            resp = client.access_secret_version(request={"name": name})
            self.DB_PASSWORD = resp.payload.data.decode("utf-8")
            return self.DB_PASSWORD
        raise RuntimeError("No DB_PASSWORD and no Secret Manager configured")

    def get_engine(self) -> Engine:
        if self._engine is None:
            if self.DATABASE_URL.startswith("sqlite"):
                logger.info(f"[DB] Using SQLite URL: {self.DATABASE_URL}")
                self._engine = create_engine(self.DATABASE_URL, future=True)
            else:
                logger.info(f"[DB] Connecting to {self.DATABASE_URL.split('@')[-1]}")
                # pg8000 supports 'timeout' in seconds
                self._engine = create_engine(
                    self.DATABASE_URL,
                    future=True,
                    pool_pre_ping=True,
                    connect_args={"timeout": 10},
                )
        return self._engine

    def create_schema(self) -> None:
        Base.metadata.create_all(self.get_engine())

    # -------- SQLAlchemy Session factory --------
    def build_db_session_factory(self) -> Callable[[], Session]:
        if self._sessionmaker is None:
            self._sessionmaker = sessionmaker(
                bind=self.get_engine(),
                autoflush=False,
                autocommit=False,
                future=True,
            )

        def _factory() -> Session:
            return self._sessionmaker()

        return _factory
