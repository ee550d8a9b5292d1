"""Collaborator interfaces and the bundled JSON file model."""

from pipenet.collaborators.base import AuditSink, ModelCollaborator, StoreCollaborator
from pipenet.collaborators.json_model import JsonModelFile

__all__ = ["AuditSink", "ModelCollaborator", "StoreCollaborator", "JsonModelFile"]
