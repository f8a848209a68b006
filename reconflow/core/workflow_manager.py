"""Workflow Manager: persistence of workflow definitions."""

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.core import WorkflowGraph, WorkflowSummary
from ..storage.database import create_session
from ..storage.models import WorkflowModel
from .exceptions import GraphValidationError, StorageError, WorkflowNotFoundError
from .logging import get_logger
from .workflow_io import export_workflow, load_workflow

logger = get_logger(__name__)


class WorkflowManager:
    """Stores workflow definitions. Execution state is never persisted."""

    def __init__(self, db_session: Optional[Session] = None):
        """Initialize WorkflowManager with optional database session."""
        self._db_session = db_session

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if self._db_session is not None:
            yield self._db_session
            return
        db = create_session()
        try:
            yield db
        finally:
            db.close()

    @staticmethod
    def _summary(model: WorkflowModel) -> WorkflowSummary:
        definition = model.definition or {}
        return WorkflowSummary(
            id=model.id,
            name=model.name,
            description=model.description or "",
            node_count=len(definition.get("nodes", [])),
            connection_count=len(definition.get("connections", [])),
            created_at=model.created_at,
            updated_at=model.updated_at
        )

    def create_workflow(self, graph: WorkflowGraph) -> WorkflowSummary:
        """
        Store a new workflow.

        Args:
            graph: The workflow to store

        Returns:
            WorkflowSummary: Summary of the stored workflow

        Raises:
            GraphValidationError: If a workflow with the same ID exists
            StorageError: If storage operation fails
        """
        logger.info(f"Creating workflow: {graph.name}")
        with self._session() as db:
            try:
                if db.get(WorkflowModel, graph.id) is not None:
                    raise GraphValidationError(
                        f"Workflow with ID '{graph.id}' already exists",
                        workflow_id=graph.id
                    )

                model = WorkflowModel(
                    id=graph.id,
                    name=graph.name,
                    description=graph.description,
                    definition=export_workflow(graph),
                    created_at=datetime.utcnow(),
                    updated_at=datetime.utcnow()
                )
                db.add(model)
                db.commit()
                db.refresh(model)
                logger.info(f"Successfully created workflow '{graph.name}' with ID: {graph.id}")
                return self._summary(model)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Database error while creating workflow: {str(e)}")
                raise StorageError(f"Failed to store workflow: {str(e)}", operation="create_workflow")

    def get_workflow(self, workflow_id: str) -> WorkflowGraph:
        """
        Load a stored workflow.

        Raises:
            WorkflowNotFoundError: If no workflow has this ID
            StorageError: If storage operation fails
        """
        with self._session() as db:
            try:
                model = db.get(WorkflowModel, workflow_id)
            except SQLAlchemyError as e:
                logger.error(f"Database error while retrieving workflow: {str(e)}")
                raise StorageError(f"Failed to retrieve workflow: {str(e)}", operation="get_workflow")

            if model is None:
                raise WorkflowNotFoundError(workflow_id)
            return load_workflow(model.definition)

    def save_workflow(self, graph: WorkflowGraph) -> WorkflowSummary:
        """Store ``graph``, replacing the stored definition with the same ID."""
        with self._session() as db:
            try:
                model = db.get(WorkflowModel, graph.id)
                if model is None:
                    model = WorkflowModel(id=graph.id, created_at=datetime.utcnow())
                    db.add(model)

                model.name = graph.name
                model.description = graph.description
                model.definition = export_workflow(graph)
                model.updated_at = datetime.utcnow()
                db.commit()
                db.refresh(model)
                logger.debug(f"Saved workflow {graph.id}")
                return self._summary(model)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Database error while saving workflow: {str(e)}")
                raise StorageError(f"Failed to save workflow: {str(e)}", operation="save_workflow")

    def list_workflows(self) -> List[WorkflowSummary]:
        with self._session() as db:
            try:
                models = db.query(WorkflowModel).order_by(WorkflowModel.created_at).all()
            except SQLAlchemyError as e:
                logger.error(f"Database error while listing workflows: {str(e)}")
                raise StorageError(f"Failed to list workflows: {str(e)}", operation="list_workflows")
            return [self._summary(model) for model in models]

    def delete_workflow(self, workflow_id: str) -> bool:
        """
        Delete a stored workflow.

        Raises:
            WorkflowNotFoundError: If no workflow has this ID
        """
        with self._session() as db:
            try:
                model = db.get(WorkflowModel, workflow_id)
                if model is None:
                    raise WorkflowNotFoundError(workflow_id)
                db.delete(model)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Database error while deleting workflow: {str(e)}")
                raise StorageError(f"Failed to delete workflow: {str(e)}", operation="delete_workflow")

        logger.info(f"Deleted workflow {workflow_id}")
        return True
