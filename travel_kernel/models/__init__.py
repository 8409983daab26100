"""ORM models for the travel kernel."""

from travel_kernel.models.execution import WorkflowExecutionModel
from travel_kernel.models.request import ApprovalStepModel, TravelRequestModel

__all__ = [
    "ApprovalStepModel",
    "TravelRequestModel",
    "WorkflowExecutionModel",
]
