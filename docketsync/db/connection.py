"""
Database connection management.

Connects either through a plain database URL or through the Cloud SQL
Python Connector with IAM authentication, with SQLAlchemy connection pooling.
"""

from google.cloud.sql.connector import Connector
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

_NOT_INITIALIZED = "Database not initialized. Call DatabaseConnection.initialize() first."


class DatabaseConnection:
    """
    Class-level holder for the engine and session factory.

    Usage:
        # Initialize at app startup
        DatabaseConnection.initialize(database_url="postgresql+pg8000://...")
        # or, on Cloud Run
        DatabaseConnection.initialize(
            instance_connection_name="project:region:instance",
            db_name="docketsync",
            db_user="service-account@project.iam",
        )

        with UnitOfWork() as uow:
            ...

        # Close at app shutdown
        DatabaseConnection.close()
    """

    _engine: Engine | None = None
    _connector: Connector | None = None
    _session_factory: sessionmaker | None = None
    _initialized: bool = False

    @classmethod
    def initialize(
        cls,
        database_url: str | None = None,
        instance_connection_name: str | None = None,
        db_name: str | None = None,
        db_user: str | None = None,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_timeout: int = 30,
        pool_recycle: int = 1800,
    ):
        """
        Initialize the database connection pool.

        A database_url takes precedence over the Cloud SQL triple.

        Args:
            database_url: SQLAlchemy URL (e.g. postgresql+pg8000://user:pw@host/db)
            instance_connection_name: Cloud SQL instance (project:region:instance)
            db_name: Database name
            db_user: Database user (service account email for IAM auth)
            pool_size: Base connection pool size
            max_overflow: Additional connections allowed beyond pool_size
            pool_timeout: Seconds to wait for a connection
            pool_recycle: Recycle connections after this many seconds

        Raises:
            ValueError: If neither a URL nor a complete Cloud SQL config is given
        """
        if cls._initialized:
            return

        pool_options = {
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_timeout": pool_timeout,
            "pool_recycle": pool_recycle,
            "pool_pre_ping": True,  # Verify connections before use
        }

        if database_url:
            cls._engine = create_engine(database_url, **pool_options)
        else:
            cls._engine = cls._create_cloud_sql_engine(
                instance_connection_name, db_name, db_user, pool_options
            )

        cls._session_factory = sessionmaker(bind=cls._engine)
        cls._initialized = True

    @classmethod
    def _create_cloud_sql_engine(
        cls,
        instance_connection_name: str | None,
        db_name: str | None,
        db_user: str | None,
        pool_options: dict,
    ) -> Engine:
        if not instance_connection_name:
            raise ValueError(
                "DATABASE_URL or INSTANCE_CONNECTION_NAME is required. "
                "Format: project:region:instance"
            )

        if not db_user:
            raise ValueError(
                "DB_USER is required. Should be service account email for IAM auth."
            )

        cls._connector = Connector()

        def getconn():
            assert cls._connector is not None
            return cls._connector.connect(
                instance_connection_name,
                "pg8000",
                user=db_user,
                db=db_name,
                enable_iam_auth=True,
            )

        return create_engine("postgresql+pg8000://", creator=getconn, **pool_options)

    @classmethod
    def get_session(cls) -> Session:
        """
        Get a new database session.

        The caller is responsible for committing/rolling back and closing the session.
        """
        if not cls._initialized or cls._session_factory is None:
            raise RuntimeError(_NOT_INITIALIZED)
        return cls._session_factory()

    @classmethod
    def close(cls):
        """Close the connection pool and connector."""
        if cls._engine:
            cls._engine.dispose()
            cls._engine = None

        if cls._connector:
            cls._connector.close()
            cls._connector = None

        cls._session_factory = None
        cls._initialized = False

    @classmethod
    def is_initialized(cls) -> bool:
        """Check if the database connection is initialized."""
        return cls._initialized
