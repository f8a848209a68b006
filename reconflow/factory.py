"""Application factory for creating FastAPI instances."""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .api.endpoints import init_dependencies, router
from .config import AppConfig, get_config, validate_config
from .core.execution_engine import ExecutionEngine
from .core.graph_resolver import GraphResolver
from .core.logging import get_logger, setup_logging
from .core.middleware import ErrorHandlingMiddleware, RequestLoggingMiddleware
from .core.node_registry import NodeRegistry
from .core.workflow_manager import WorkflowManager
from .storage.database import configure_database, create_session, create_tables


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.node_registry: Optional[NodeRegistry] = None
        self.graph_resolver: Optional[GraphResolver] = None
        self.workflow_manager: Optional[WorkflowManager] = None
        self.execution_engine: Optional[ExecutionEngine] = None


# Global application state
app_state = ApplicationState()


def initialize_database(config: AppConfig, logger) -> None:
    """Bind the database engine and create the workflow tables."""
    try:
        configure_database(config.database_url, echo=config.database_echo)
        create_tables()
        logger.info("Database tables created")
    except SQLAlchemyError as e:
        logger.error(f"Database initialization failed: {e}")
        raise


def initialize_core_components(
    config: AppConfig,
    logger,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> tuple:
    """Initialize core application components."""
    node_registry = NodeRegistry()
    graph_resolver = GraphResolver()
    workflow_manager = WorkflowManager()
    execution_engine = ExecutionEngine(
        node_registry=node_registry,
        graph_resolver=graph_resolver,
        config=config,
        transport=transport
    )

    logger.info("Core components initialized")
    return node_registry, graph_resolver, workflow_manager, execution_engine


def create_lifespan_handler(config: AppConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
    """Create application lifespan handler."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.structured_logging,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger = get_logger(__name__)
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        initialize_database(config, logger)
        node_registry, graph_resolver, workflow_manager, execution_engine = initialize_core_components(
            config, logger, transport
        )

        app_state.config = config
        app_state.node_registry = node_registry
        app_state.graph_resolver = graph_resolver
        app_state.workflow_manager = workflow_manager
        app_state.execution_engine = execution_engine

        init_dependencies(
            node_registry=node_registry,
            graph_resolver=graph_resolver,
            workflow_manager=workflow_manager,
            execution_engine=execution_engine
        )
        logger.info("Application startup completed successfully")

        yield

        # Shutdown
        logger.info(f"Shutting down {config.app_name}")
        await execution_engine.shutdown()

    return lifespan


def create_app(
    config: Optional[AppConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> FastAPI:
    """Create and configure FastAPI application instance.

    Args:
        config: Application configuration, loaded from the environment when omitted
        transport: Optional httpx transport for all outbound requests of workflow runs
    """
    if config is None:
        config = get_config()

    validate_config(config)

    app = FastAPI(
        title=config.app_name,
        description="Visual workflow engine for orchestrating security reconnaissance tools",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config, transport)
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )

    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(router)
    add_health_endpoints(app, config)

    return app


def add_health_endpoints(app: FastAPI, config: AppConfig) -> None:
    """Add health check endpoints to the application."""
    service = config.app_name.lower().replace(" ", "-")

    @app.get("/")
    async def root():
        """Root endpoint for basic health check."""
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": service, "version": config.app_version}

    @app.get("/health/detailed")
    async def detailed_health_check():
        """Health of the database, the execution engine and the node registry."""
        checks = {}

        try:
            db = create_session()
            try:
                db.execute(text("SELECT 1"))
            finally:
                db.close()
            checks["database"] = {"status": "healthy", "message": "Database connection successful"}
        except SQLAlchemyError as e:
            get_logger(__name__).error(f"Database health check failed: {e}")
            checks["database"] = {"status": "unhealthy", "message": f"Database connection failed: {e}"}

        engine = app_state.execution_engine
        if engine is not None:
            checks["execution_engine"] = {
                "status": "healthy",
                "active_executions": sum(
                    1 for snapshot in engine.list_executions()
                    if engine.is_execution_active(snapshot.execution_id)
                ),
                "tracked_executions": len(engine.list_executions())
            }
        else:
            checks["execution_engine"] = {"status": "unhealthy", "message": "Execution engine not initialized"}

        registry = app_state.node_registry
        if registry is not None:
            checks["node_registry"] = {
                "status": "healthy",
                "registered_types": len(registry.get_available_types())
            }
        else:
            checks["node_registry"] = {"status": "unhealthy", "message": "Node registry not initialized"}

        healthy = all(check["status"] == "healthy" for check in checks.values())
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "service": service,
                "version": config.app_version,
                "overall_status": "healthy" if healthy else "unhealthy",
                "checks": checks,
                "timestamp": datetime.utcnow().isoformat()
            }
        )


def get_app_state() -> ApplicationState:
    """Get the current application state."""
    return app_state
